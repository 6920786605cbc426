"""Port interfaces for the roadcall orchestration layer.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - ProviderPort: One external AI backend (agent, completion, REST)
   - HealthProbePort: Fresh health probe cycle across providers

2. **Driving Ports** (adapters/external systems call into core)
   - OrchestratorPort: Diagnose, chat (plain or streamed), quick tips,
     health, and runtime reconfiguration
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .models import (
    CacheStats,
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    FallbackResult,
    LatencyStats,
    OrchestratorConfig,
    ProviderHealth,
    QuickTip,
)


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class ProviderPort(ABC):
    """Port for one external AI backend.

    Adapters implementing this port talk to a single backend and
    normalize its responses into the core's domain models.

    Implementations must handle:
    - Authentication and endpoint configuration
    - Translating transport failures into ProviderError
    - Degrading unparseable answers into a templated DiagnosisResult
      instead of failing the attempt
    - Keeping no per-request state between calls
    """

    provider_id: str

    @abstractmethod
    def missing_configuration(self) -> list[str]:
        """Return the names of required settings that are not set.

        An empty list means the provider is fully configured.
        """

    @abstractmethod
    async def diagnose(self, request: DiagnosisRequest) -> DiagnosisResult:
        """Diagnose a truck problem.

        Args:
            request: Validated diagnosis request.

        Returns:
            DiagnosisResult tagged with this provider's id, with confidence
            clamped to 0.0-1.0.

        Raises:
            ConfigError: If the provider is not configured.
            ProviderError: If the backend is unreachable or returns an error.
            ParseError: If the backend returned no usable content at all.
        """

    @abstractmethod
    async def chat(self, messages: list[ChatMessage]) -> str:
        """Continue a conversation and return the assistant's reply text.

        Raises:
            ConfigError: If the provider is not configured.
            ProviderError: If the backend is unreachable or returns an error.
        """

    @abstractmethod
    async def quick_tip(self, symptom: str) -> QuickTip:
        """Return one short tip and a severity for a single symptom.

        Raises:
            ConfigError: If the provider is not configured.
            ProviderError: If the backend is unreachable or returns an error.
            ParseError: If the backend returned no content at all.
        """

    async def chat_stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Yield the assistant's reply in chunks as the backend produces them.

        Backends without native streaming send the whole reply from chat()
        as a single chunk.
        """
        yield await self.chat(messages)

    @abstractmethod
    async def probe(self) -> ProviderHealth:
        """Issue a minimal-cost request and report health.

        Never raises: failures are reported as an unhealthy record with
        the error text and measured latency.
        """

    async def close(self) -> None:
        """Release any pooled connections held by the adapter."""


class HealthProbePort(ABC):
    """Port for running a fresh health probe cycle across all providers."""

    @abstractmethod
    async def run_cycle(self) -> list[ProviderHealth]:
        """Probe every provider once and publish the results.

        Returns:
            Fresh ProviderHealth records in provider order.
        """


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class OrchestratorPort(ABC):
    """Port for requesting diagnoses and chat replies.

    Driving port: the CLI (or any thin API layer) invokes these methods.
    The implementation lives in the core (orchestrator.py).
    """

    @abstractmethod
    async def diagnose(
        self, request: DiagnosisRequest, deadline_ms: float | None = None
    ) -> FallbackResult[DiagnosisResult]:
        """Diagnose a truck problem, cascading across providers.

        Never raises for a well-formed request: when every provider fails
        the result comes from offline synthesis.
        """

    @abstractmethod
    async def chat(
        self, messages: list[ChatMessage], deadline_ms: float | None = None
    ) -> FallbackResult[str]:
        """Continue a conversation, cascading across providers.

        Raises:
            ValueError: If messages is empty.
        """

    @abstractmethod
    async def chat_stream(
        self, messages: list[ChatMessage], deadline_ms: float | None = None
    ) -> FallbackResult[AsyncIterator[str]]:
        """Continue a conversation, streaming the reply.

        The cascade settles on the first provider that produces a chunk;
        the envelope's result iterates the rest of that provider's reply.

        Raises:
            ValueError: If messages is empty.
        """

    @abstractmethod
    async def quick_tip(
        self, symptom: str, deadline_ms: float | None = None
    ) -> FallbackResult[QuickTip]:
        """Get a short tip for one symptom, cascading across providers.

        Raises:
            ValueError: If symptom is blank.
        """

    @abstractmethod
    async def check_health(self) -> list[ProviderHealth]:
        """Probe every provider now and return fresh health records."""

    @abstractmethod
    def get_config(self) -> OrchestratorConfig:
        """Return the current configuration snapshot."""

    @abstractmethod
    def set_primary_provider(self, provider_id: str) -> None:
        """Make the given provider the first one attempted.

        Raises:
            ValueError: If the provider id is unknown.
        """

    @abstractmethod
    def set_fallback_enabled(self, enabled: bool) -> None:
        """Enable or disable cascading past the primary provider."""

    @abstractmethod
    def set_timeout(self, timeout_ms: int) -> None:
        """Set the per-attempt timeout in milliseconds.

        Raises:
            ValueError: If timeout_ms is not positive.
        """

    @abstractmethod
    def get_cache_stats(self) -> CacheStats:
        """Return response cache statistics."""

    @abstractmethod
    def clear_cache(self) -> None:
        """Drop every cached diagnosis."""

    @abstractmethod
    def get_performance_metrics(self) -> dict[str, LatencyStats]:
        """Return rolling latency statistics per provider operation."""
