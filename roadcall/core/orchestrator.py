"""Request orchestration across AI providers.

This module coordinates diagnosis, chat, and quick-tip requests by cascading
through the configured providers in a fixed order, bounding each attempt
with a timeout, memoizing diagnoses, and falling back to offline
synthesis when every provider fails.
"""

import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import replace
from typing import TypeVar

from .cache import ResponseCache, make_cache_key
from .errors import ConfigError, ParseError, ProviderError, ProviderTimeoutError
from .health import HealthRegistry
from .models import (
    OFFLINE_PROVIDER,
    PROVIDER_ORDER,
    AttemptError,
    AttemptReason,
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
from .ports import HealthProbePort, OrchestratorPort, ProviderPort
from .synthesizer import OfflineDiagnosisSynthesizer
from .timeout_guard import with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

OFFLINE_CHAT_REPLY = (
    "I'm having trouble reaching the AI diagnosis services right now. "
    "If the truck shows any brake, steering, or overheating problems, stop "
    "in a safe place and consult a qualified heavy-duty technician before "
    "continuing. Please try again in a few minutes."
)

OFFLINE_TIP = "AI services temporarily unavailable. Please consult a professional mechanic."

STREAM_INTERRUPTED_NOTICE = (
    "\n\n[The reply was interrupted before it finished. Please ask again.]"
)

LATENCY_WINDOW = 100
SLOW_AVERAGE_MS = 10000.0
DEFAULT_OFFLINE_TTL_SECONDS = 300.0


class RequestOrchestrator(OrchestratorPort):
    """Cascades requests across providers and never fails a valid request.

    Owns the response cache and the attempt-order policy. Reads provider
    health from the registry but never writes it.
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderPort],
        health: HealthRegistry,
        cache: ResponseCache[FallbackResult[DiagnosisResult]],
        synthesizer: OfflineDiagnosisSynthesizer,
        config: OrchestratorConfig,
        health_prober: HealthProbePort | None = None,
        offline_ttl_seconds: float = DEFAULT_OFFLINE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.providers = dict(providers)
        self.health = health
        self.cache = cache
        self.synthesizer = synthesizer
        self.health_prober = health_prober
        self.offline_ttl_seconds = offline_ttl_seconds
        self._config = config
        self._clock = clock
        self._latencies: dict[str, deque[float]] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> OrchestratorConfig:
        return self._config

    def set_primary_provider(self, provider_id: str) -> None:
        self._config = replace(self._config, primary_provider=provider_id)
        logger.info(f"Primary provider set to: {provider_id}")

    def set_fallback_enabled(self, enabled: bool) -> None:
        self._config = replace(self._config, fallback_enabled=bool(enabled))
        logger.info(f"Fallback {'enabled' if enabled else 'disabled'}")

    def set_timeout(self, timeout_ms: int) -> None:
        self._config = replace(self._config, timeout_ms=timeout_ms)
        logger.info(f"Provider timeout set to {timeout_ms}ms")

    def attempt_order(self, config: OrchestratorConfig | None = None) -> list[str]:
        """Providers to try, primary first, then the fixed fallback order.

        With fallback disabled only the primary is attempted.
        """
        config = config or self._config
        order = [config.primary_provider] + [
            p for p in PROVIDER_ORDER if p != config.primary_provider
        ]
        order = [p for p in order if p in self.providers]
        if not config.fallback_enabled:
            order = order[:1]
        return order

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def diagnose(
        self, request: DiagnosisRequest, deadline_ms: float | None = None
    ) -> FallbackResult[DiagnosisResult]:
        """Diagnose a truck problem.

        Steps:
        1. Serve from cache if an identical request was answered within TTL
        2. Cascade through providers in attempt order
        3. Synthesize an offline answer if every provider failed
        4. Cache and return the envelope

        Raises:
            TypeError: If request is not a DiagnosisRequest. Request
                invariants (non-empty symptoms) are enforced when the
                DiagnosisRequest is constructed.
        """
        if not isinstance(request, DiagnosisRequest):
            raise TypeError(
                f"request must be a DiagnosisRequest, got {type(request).__name__}"
            )

        cache_key = make_cache_key(request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Returning cached diagnosis from {cached.provider}")
            return replace(cached, from_cache=True)

        config = self._config

        async def _call(provider: ProviderPort) -> DiagnosisResult:
            return await provider.diagnose(request)

        result, provider_id, errors = await self._cascade(
            "diagnose", _call, config, deadline_ms
        )

        if result is not None and provider_id is not None:
            if result.provider != provider_id:
                result = replace(result, provider=provider_id)
            envelope = FallbackResult(
                result=result,
                provider=provider_id,
                fallback_used=provider_id != config.primary_provider,
                errors=tuple(errors),
            )
            self.cache.set(cache_key, envelope)
            return envelope

        logger.warning(
            f"All {len(errors)} provider attempts failed, using offline diagnosis: "
            + "; ".join(f"{e.provider}: {e.message}" for e in errors)
        )
        offline = FallbackResult(
            result=self.synthesizer.synthesize(request),
            provider=OFFLINE_PROVIDER,
            fallback_used=True,
            errors=tuple(errors),
        )
        self.cache.set(cache_key, offline, ttl_seconds=self.offline_ttl_seconds)
        return offline

    async def chat(
        self, messages: list[ChatMessage], deadline_ms: float | None = None
    ) -> FallbackResult[str]:
        """Continue a conversation. Never cached.

        Raises:
            ValueError: If messages is empty.
        """
        if not messages:
            raise ValueError("messages must contain at least one message")

        config = self._config
        conversation = list(messages)

        async def _call(provider: ProviderPort) -> str:
            return await provider.chat(conversation)

        reply, provider_id, errors = await self._cascade(
            "chat", _call, config, deadline_ms
        )

        if reply is not None and provider_id is not None:
            return FallbackResult(
                result=reply,
                provider=provider_id,
                fallback_used=provider_id != config.primary_provider,
                errors=tuple(errors),
            )

        logger.warning(f"All {len(errors)} chat attempts failed, using offline reply")
        return FallbackResult(
            result=OFFLINE_CHAT_REPLY,
            provider=OFFLINE_PROVIDER,
            fallback_used=True,
            errors=tuple(errors),
        )

    async def chat_stream(
        self, messages: list[ChatMessage], deadline_ms: float | None = None
    ) -> FallbackResult[AsyncIterator[str]]:
        """Continue a conversation, streaming the reply. Never cached.

        A provider counts as answering once it yields its first chunk; until
        then failures cascade exactly like chat(). After that the stream is
        committed to that provider, and a failure or an idle gap longer than
        the per-attempt timeout ends it with STREAM_INTERRUPTED_NOTICE.

        Raises:
            ValueError: If messages is empty.
        """
        if not messages:
            raise ValueError("messages must contain at least one message")

        config = self._config
        conversation = list(messages)
        errors: list[AttemptError] = []
        started = self._clock()

        for provider_id in self.attempt_order(config):
            provider = self.providers[provider_id]
            context = _attempt_context(provider_id, config)
            timeout_ms, skipped = self._attempt_budget(
                provider_id, provider, context, config, started, deadline_ms
            )
            if skipped is not None:
                errors.append(skipped)
                continue

            stream = provider.chat_stream(conversation)
            attempt_started = self._clock()
            try:
                first = await with_timeout(_next_chunk(stream), timeout_ms, provider_id)
                if first is None:
                    raise ProviderError(provider_id, "stream ended before any content")
            except Exception as e:
                errors.append(self._attempt_error(provider_id, "chat_stream", context, e))
                await _close_stream(stream)
                continue

            self._record_latency(
                f"{provider_id}.chat_stream", (self._clock() - attempt_started) * 1000
            )
            logger.info(f"chat_stream started with {provider_id}")
            return FallbackResult(
                result=_relay(provider_id, first, stream, float(config.timeout_ms)),
                provider=provider_id,
                fallback_used=provider_id != config.primary_provider,
                errors=tuple(errors),
            )

        logger.warning(f"All {len(errors)} chat stream attempts failed, using offline reply")
        return FallbackResult(
            result=_single_chunk(OFFLINE_CHAT_REPLY),
            provider=OFFLINE_PROVIDER,
            fallback_used=True,
            errors=tuple(errors),
        )

    async def quick_tip(
        self, symptom: str, deadline_ms: float | None = None
    ) -> FallbackResult[QuickTip]:
        """Get one short tip for a single symptom. Never cached.

        Raises:
            ValueError: If symptom is not a non-blank string.
        """
        if not isinstance(symptom, str) or not symptom.strip():
            raise ValueError("symptom must be a non-empty string")

        config = self._config
        text = symptom.strip()

        async def _call(provider: ProviderPort) -> QuickTip:
            return await provider.quick_tip(text)

        tip, provider_id, errors = await self._cascade(
            "quick_tip", _call, config, deadline_ms
        )

        if tip is not None and provider_id is not None:
            if tip.provider != provider_id:
                tip = replace(tip, provider=provider_id)
            return FallbackResult(
                result=tip,
                provider=provider_id,
                fallback_used=provider_id != config.primary_provider,
                errors=tuple(errors),
            )

        logger.warning(f"All {len(errors)} quick tip attempts failed, using offline tip")
        return FallbackResult(
            result=QuickTip(tip=OFFLINE_TIP, severity="medium", provider=OFFLINE_PROVIDER),
            provider=OFFLINE_PROVIDER,
            fallback_used=True,
            errors=tuple(errors),
        )

    async def _cascade(
        self,
        operation: str,
        call: Callable[[ProviderPort], Awaitable[T]],
        config: OrchestratorConfig,
        deadline_ms: float | None,
    ) -> tuple[T | None, str | None, list[AttemptError]]:
        """Try each provider in order until one succeeds.

        Returns:
            (result, provider_id, errors). result and provider_id are None
            when every provider failed or was skipped. errors holds one
            entry per failed or skipped provider, in attempt order.
        """
        errors: list[AttemptError] = []
        started = self._clock()

        for provider_id in self.attempt_order(config):
            provider = self.providers[provider_id]
            context = _attempt_context(provider_id, config)
            timeout_ms, skipped = self._attempt_budget(
                provider_id, provider, context, config, started, deadline_ms
            )
            if skipped is not None:
                errors.append(skipped)
                continue

            attempt_started = self._clock()
            try:
                logger.debug(f"Attempting {operation} with {provider_id} ({context})")
                result = await with_timeout(call(provider), timeout_ms, provider_id)
            except Exception as e:
                errors.append(self._attempt_error(provider_id, operation, context, e))
                continue

            self._record_latency(
                f"{provider_id}.{operation}",
                (self._clock() - attempt_started) * 1000,
            )
            if errors:
                logger.info(f"{operation} succeeded with {provider_id} after {len(errors)} failed attempt(s)")
            else:
                logger.info(f"{operation} succeeded with {provider_id}")
            return result, provider_id, errors

        return None, None, errors

    def _attempt_budget(
        self,
        provider_id: str,
        provider: ProviderPort,
        context: str,
        config: OrchestratorConfig,
        started: float,
        deadline_ms: float | None,
    ) -> tuple[float, AttemptError | None]:
        """Return the timeout for this attempt, or why it is skipped.

        A provider is skipped when it is unconfigured, when its last probe
        found it unhealthy, or when the caller's deadline is already spent.
        """
        missing = provider.missing_configuration()
        if missing:
            error = ConfigError(provider_id, missing)
            logger.warning(f"Skipping {provider_id}: {error}")
            return 0.0, AttemptError(provider_id, error, context, "config-error")

        if self.health.is_known_unhealthy(provider_id):
            record = self.health.get(provider_id)
            error = ProviderError(
                provider_id,
                f"known unhealthy since last probe ({record.error or 'no detail'})",
            )
            logger.info(f"Skipping {provider_id}: marked unhealthy by last probe")
            return 0.0, AttemptError(provider_id, error, context, "known-unhealthy")

        timeout_ms = float(config.timeout_ms)
        if deadline_ms is not None:
            elapsed_ms = (self._clock() - started) * 1000
            timeout_ms = min(timeout_ms, deadline_ms - elapsed_ms)
            if timeout_ms <= 0:
                error = ProviderTimeoutError(0, provider_id)
                logger.warning(f"Caller deadline spent, not attempting {provider_id}")
                return 0.0, AttemptError(provider_id, error, context, "timeout")
        return timeout_ms, None

    def _attempt_error(
        self, provider_id: str, operation: str, context: str, error: Exception
    ) -> AttemptError:
        """Log a failed attempt and tag it with its reason.

        Must be called from the except block that caught error.
        """
        if isinstance(error, TimeoutError):
            logger.warning(f"{provider_id} {operation} timed out: {error}")
            reason: AttemptReason = "timeout"
        elif isinstance(error, ConfigError):
            logger.warning(f"{provider_id} {operation} not configured: {error}")
            reason = "config-error"
        elif isinstance(error, ParseError):
            logger.warning(f"{provider_id} {operation} returned unusable content: {error}")
            reason = "parse-error"
        elif isinstance(error, ProviderError):
            logger.warning(f"{provider_id} {operation} failed: {error}")
            reason = "provider-error"
        else:
            logger.error(
                f"Unexpected error during {provider_id} {operation}: {error}",
                exc_info=True,
            )
            reason = "unexpected"
        return AttemptError(provider_id, error, context, reason)

    # ------------------------------------------------------------------
    # Health, cache, and metrics
    # ------------------------------------------------------------------

    async def check_health(self) -> list[ProviderHealth]:
        """Run a fresh probe cycle if a prober is wired, else report the table."""
        if self.health_prober is not None:
            return await self.health_prober.run_cycle()
        return self.health.as_list()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_performance_metrics(self) -> dict[str, LatencyStats]:
        return {
            name: LatencyStats(
                avg_ms=sum(samples) / len(samples),
                count=len(samples),
                last_ms=samples[-1],
            )
            for name, samples in self._latencies.items()
            if samples
        }

    def _record_latency(self, name: str, duration_ms: float) -> None:
        samples = self._latencies.setdefault(name, deque(maxlen=LATENCY_WINDOW))
        samples.append(duration_ms)
        average = sum(samples) / len(samples)
        if average > SLOW_AVERAGE_MS:
            logger.warning(f"Performance warning: {name} averaging {average:.0f}ms")




def _attempt_context(provider_id: str, config: OrchestratorConfig) -> str:
    if provider_id == config.primary_provider:
        return "primary attempt"
    return "fallback attempt"


async def _next_chunk(stream: AsyncIterator[str]) -> str | None:
    """Return the next non-empty chunk, or None once the stream is exhausted."""
    async for chunk in stream:
        if chunk:
            return chunk
    return None


async def _close_stream(stream: AsyncIterator[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError as e:
        # A timed-out read may still be pending on the generator.
        logger.debug(f"Could not close abandoned stream: {e}")


async def _relay(
    provider_id: str, first: str, stream: AsyncIterator[str], idle_timeout_ms: float
) -> AsyncIterator[str]:
    """Yield the first chunk, then the rest of the provider's stream."""
    try:
        yield first
        while True:
            try:
                chunk = await with_timeout(_next_chunk(stream), idle_timeout_ms, provider_id)
            except Exception as e:
                logger.warning(f"{provider_id} chat stream interrupted: {e}")
                yield STREAM_INTERRUPTED_NOTICE
                return
            if chunk is None:
                return
            yield chunk
    finally:
        await _close_stream(stream)


async def _single_chunk(text: str) -> AsyncIterator[str]:
    yield text
