"""Core domain logic for the roadcall AI provider orchestration layer.

This package contains zero external dependencies and represents
the pure orchestration logic of the application. Provider backends,
the health monitor loop, and the CLI are handled by the adapters package.
"""

from .errors import (
    ConfigError,
    ParseError,
    ProviderError,
    ProviderTimeoutError,
    RoadcallError,
)
from .models import (
    OFFLINE_PROVIDER,
    PROVIDER_ORDER,
    AttemptError,
    CacheStats,
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    FallbackResult,
    LatencyStats,
    OrchestratorConfig,
    OverallHealth,
    ProviderHealth,
    TruckModel,
    Urgency,
)

__all__ = [
    "OFFLINE_PROVIDER",
    "PROVIDER_ORDER",
    "AttemptError",
    "CacheStats",
    "ChatMessage",
    "ConfigError",
    "DiagnosisRequest",
    "DiagnosisResult",
    "FallbackResult",
    "LatencyStats",
    "OrchestratorConfig",
    "OverallHealth",
    "ParseError",
    "ProviderError",
    "ProviderHealth",
    "ProviderTimeoutError",
    "RoadcallError",
    "TruckModel",
    "Urgency",
]
