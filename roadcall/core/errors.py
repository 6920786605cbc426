"""Error taxonomy for provider orchestration.

Adapters translate backend-specific failures into these types at their
boundary so the orchestrator can attribute each failed attempt precisely.
"""


class RoadcallError(Exception):
    """Base class for all orchestration errors."""


class ProviderError(RoadcallError):
    """A backend failed: network error, HTTP error, or unusable response."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ParseError(ProviderError):
    """A backend answered, but with nothing that could be normalized.

    Adapters degrade to a templated answer whenever some text is available,
    so this is only raised when the response carries no usable content.
    """


class ProviderTimeoutError(TimeoutError):
    """An attempt exceeded its deadline.

    Not a ProviderError subclass. The orchestrator records timeouts
    separately from backend failures.
    """

    def __init__(self, timeout_ms: float, provider: str | None = None):
        label = f"{provider} " if provider else ""
        super().__init__(f"{label}operation timed out after {timeout_ms:.0f}ms")
        self.timeout_ms = timeout_ms
        self.provider = provider


class ConfigError(RoadcallError):
    """A provider is missing required credentials or endpoints."""

    def __init__(self, provider: str, missing: list[str]):
        super().__init__(
            f"{provider} is not configured (missing: {', '.join(missing)})"
        )
        self.provider = provider
        self.missing = tuple(missing)


__all__ = [
    "ConfigError",
    "ParseError",
    "ProviderError",
    "ProviderTimeoutError",
    "RoadcallError",
]
