"""Scheduler adapters for driving the provider health probe loop."""
