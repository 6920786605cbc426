"""Fake implementations of core ports for testing.

These in-memory implementations allow core orchestration logic to be
tested without network access:

- FakeProviderPort: Scriptable AI backend with call tracking
- FakeHealthProber: Canned probe cycles for the orchestrator
- FakeClock: Manually advanced monotonic clock for TTL tests
"""

from .clock import FakeClock
from .health import FakeHealthProber
from .provider import FakeProviderPort

__all__ = [
    "FakeClock",
    "FakeHealthProber",
    "FakeProviderPort",
]
