"""Command-line interface adapters.

Provides CLI commands for driving the orchestrator:
- diagnose / chat: Send requests through the provider cascade
- health: Probe providers now
- config / set-*: Inspect and change orchestration settings
- cache / clear-cache / metrics: Inspect runtime state
"""
