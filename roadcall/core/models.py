"""Domain models for the roadcall orchestration layer.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, Literal, TypeAlias, TypeVar

T = TypeVar("T")

OFFLINE_PROVIDER = "offline-fallback"

ProviderId: TypeAlias = Literal["azure-ai-foundry", "azure-openai", "github-models"]

# Fixed fallback order. The configured primary is always tried first and
# the remaining providers follow in this order.
PROVIDER_ORDER: tuple[str, ...] = ("azure-ai-foundry", "azure-openai", "github-models")


class Urgency(Enum):
    """How urgently the truck needs attention."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]

    @classmethod
    def parse(cls, value: "str | Urgency | None") -> "Urgency":
        """Parse a case-insensitive urgency name, defaulting to MEDIUM."""
        if value is None:
            return cls.MEDIUM
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid urgency '{value}'. Must be one of ['low', 'medium', 'high']"
            ) from None

    @classmethod
    def highest(cls, *levels: "Urgency") -> "Urgency":
        """Return the most urgent of the given levels."""
        return max(levels, key=lambda level: level.rank)


_URGENCY_RANK = {Urgency.LOW: 0, Urgency.MEDIUM: 1, Urgency.HIGH: 2}


@dataclass(frozen=True)
class TruckModel:
    """Identity of the truck being diagnosed."""

    make: str
    model: str
    year: int | None
    engine: str
    id: str | None = None
    mileage: int | None = None

    def __post_init__(self) -> None:
        """Validate truck invariants on creation."""
        for name in ("make", "model"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string, got {value!r}")
        if not isinstance(self.engine, str):
            raise ValueError(f"engine must be a string, got {self.engine!r}")

    def describe(self) -> str:
        year = f"{self.year} " if self.year else ""
        return f"{year}{self.make} {self.model} ({self.engine or 'unknown engine'})"


@dataclass(frozen=True)
class DiagnosisRequest:
    """A request to diagnose a truck problem.

    Symptoms are stripped and blank entries dropped; at least one symptom
    must remain or construction fails.
    """

    truck: TruckModel
    symptoms: tuple[str, ...]
    additional_info: str | None = None
    urgency: Urgency = Urgency.MEDIUM

    def __post_init__(self) -> None:
        """Normalize symptoms and enforce the non-empty invariant."""
        if isinstance(self.symptoms, str):
            raise ValueError("symptoms must be a sequence of strings, not a string")
        cleaned = tuple(
            s.strip() for s in self.symptoms if isinstance(s, str) and s.strip()
        )
        if not cleaned:
            raise ValueError("symptoms must contain at least one non-empty string")
        object.__setattr__(self, "symptoms", cleaned)
        object.__setattr__(self, "urgency", Urgency.parse(self.urgency))


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score into the 0.0-1.0 range."""
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class DiagnosisResult:
    """Normalized diagnosis, regardless of which backend produced it."""

    diagnosis: str
    possible_causes: tuple[str, ...]
    recommendations: tuple[str, ...]
    confidence: float
    estimated_cost: str
    urgency: Urgency
    provider: str
    estimated_time: str = "Unknown"
    required_tools: tuple[str, ...] = ()
    safety_warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Clamp confidence into range."""
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))


ChatRole: TypeAlias = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class ChatMessage:
    """A single message in a chat conversation."""

    role: ChatRole
    content: str

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant", "system"):
            raise ValueError(f"Invalid chat role '{self.role}'")

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


TIP_SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class QuickTip:
    """A one-line piece of advice for a single symptom."""

    tip: str
    severity: str
    provider: str

    def __post_init__(self) -> None:
        if not isinstance(self.tip, str) or not self.tip.strip():
            raise ValueError("tip must be a non-empty string")
        severity = str(self.severity).strip().lower()
        if severity not in TIP_SEVERITIES:
            raise ValueError(
                f"Invalid severity '{self.severity}'. Must be one of {list(TIP_SEVERITIES)}"
            )
        object.__setattr__(self, "tip", self.tip.strip())
        object.__setattr__(self, "severity", severity)


@dataclass(frozen=True)
class ProviderHealth:
    """Health of one provider as of its most recent probe.

    A record with checked_at=None has never been probed and is treated
    as unknown, not as unhealthy.
    """

    provider: str
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None
    checked_at: datetime | None = None

    @property
    def is_known(self) -> bool:
        return self.checked_at is not None

    @classmethod
    def unknown(cls, provider: str) -> "ProviderHealth":
        return cls(provider=provider, healthy=False)


class OverallHealth(Enum):
    """Aggregate health across all providers."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached payload with its insertion time (monotonic seconds) and TTL."""

    payload: T
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


AttemptReason: TypeAlias = Literal[
    "timeout",
    "provider-error",
    "parse-error",
    "config-error",
    "known-unhealthy",
    "unexpected",
]


@dataclass(frozen=True)
class AttemptError:
    """One failed (or skipped) provider attempt, in attempt order."""

    provider: str
    error: BaseException
    context: str
    reason: AttemptReason

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


@dataclass(frozen=True)
class FallbackResult(Generic[T]):
    """The orchestrator's sole output type.

    errors is empty when the primary provider answered. from_cache marks a
    result served from the response cache without any provider call.
    """

    result: T
    provider: str
    fallback_used: bool
    errors: tuple[AttemptError, ...] = ()
    from_cache: bool = False


@dataclass(frozen=True)
class OrchestratorConfig:
    """Immutable orchestrator configuration snapshot.

    Reconfiguration builds a new snapshot and swaps it in; a cascade that
    is already running keeps using the snapshot it started with.
    """

    primary_provider: str = "azure-ai-foundry"
    fallback_enabled: bool = True
    timeout_ms: int = 30000

    def __post_init__(self) -> None:
        if self.primary_provider not in PROVIDER_ORDER:
            raise ValueError(
                f"Unknown provider '{self.primary_provider}'. "
                f"Must be one of {list(PROVIDER_ORDER)}"
            )
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")


@dataclass(frozen=True)
class CacheStats:
    """Statistics about the response cache."""

    size: int
    max_size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass(frozen=True)
class LatencyStats:
    """Rolling latency statistics for one provider operation."""

    avg_ms: float
    count: int
    last_ms: float
