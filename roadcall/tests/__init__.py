"""Test suite for the roadcall orchestration layer.

Organized into three categories:

1. core/: Unit tests for core orchestration logic
   - No network, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Tests for adapter implementations
   - Mocked transports (httpx.MockTransport) and mocked SDK clients
   - Validates adapter behavior and error translation

3. fakes/: Port implementations for testing
   - Scriptable in-memory providers and health probers
   - Used by core unit tests
"""
