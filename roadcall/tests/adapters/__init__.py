"""Tests for adapter implementations.

These tests exercise adapters against mocked transports and SDK clients
to validate translation between backend payloads and core domain models.
"""
