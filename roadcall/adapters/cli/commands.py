"""CLI command implementations for roadcall.

Provides human-initiated actions through the command-line interface.

This adapter maps CLI commands (diagnose, chat, quick tips, health,
reconfiguration, cache and metrics inspection) to OrchestratorPort operations. It handles
CLI-specific argument parsing, formatting, and error reporting.
"""

import logging
from collections.abc import Callable
from typing import Any

from roadcall.core.models import (
    AttemptError,
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    FallbackResult,
    ProviderHealth,
    QuickTip,
    TruckModel,
)
from roadcall.core.ports import OrchestratorPort

logger = logging.getLogger(__name__)


class CLICommandHandler:
    """Handles CLI commands by delegating to OrchestratorPort.

    Every method returns a JSON-serializable dict with a "status" of
    "success" or "error". Invalid input is reported, never raised.
    """

    def __init__(self, orchestrator: OrchestratorPort):
        """Initialize the CLI command handler.

        Args:
            orchestrator: OrchestratorPort implementation to execute commands.
        """
        self.orchestrator = orchestrator

    async def diagnose(
        self,
        truck: dict[str, Any],
        symptoms: list[str],
        additional_info: str | None = None,
        urgency: str | None = None,
        output_format: str = "json",
    ) -> dict[str, Any]:
        """Diagnose a truck problem via CLI.

        Args:
            truck: Truck fields: make, model, year, engine, optional mileage.
            symptoms: Reported symptom descriptions.
            additional_info: Optional free-text context.
            urgency: 'low', 'medium', or 'high'. Defaults to medium.
            output_format: 'json' or 'text'.

        Returns:
            Dictionary with status and the diagnosis envelope.
        """
        try:
            request = DiagnosisRequest(
                truck=_truck_from_args(truck),
                symptoms=(symptoms,) if isinstance(symptoms, str) else tuple(symptoms),
                additional_info=additional_info,
                urgency=urgency,
            )
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid diagnosis request: {e}")
            return {"status": "error", "operation": "diagnose", "message": str(e)}

        envelope = await self.orchestrator.diagnose(request)

        if output_format == "text":
            return {
                "status": "success",
                "operation": "diagnose",
                "data": format_diagnosis_text(envelope),
            }
        return {
            "status": "success",
            "operation": "diagnose",
            "data": envelope_to_dict(envelope, diagnosis_to_dict(envelope.result)),
        }

    async def chat(
        self,
        messages: list[dict[str, str]] | None = None,
        message: str | None = None,
        stream: bool = False,
        on_chunk: Callable[[str], None] | None = None,
    ) -> dict[str, Any]:
        """Send a conversation to the assistant via CLI.

        Args:
            messages: Full conversation as role/content dicts.
            message: Shorthand for a single user message.
            stream: Stream the reply instead of waiting for all of it.
            on_chunk: Called with each streamed chunk as it arrives.

        Returns:
            Dictionary with status and the chat envelope. A streamed reply
            is also returned whole.
        """
        try:
            conversation = [
                ChatMessage(role=m.get("role", "user"), content=m.get("content", ""))
                for m in (messages or [])
            ]
            if message:
                conversation.append(ChatMessage(role="user", content=message))
            if stream:
                envelope = await self.orchestrator.chat_stream(conversation)
            else:
                envelope = await self.orchestrator.chat(conversation)
        except (AttributeError, ValueError) as e:
            logger.error(f"Invalid chat request: {e}")
            return {"status": "error", "operation": "chat", "message": str(e)}

        if stream:
            parts = []
            async for chunk in envelope.result:
                parts.append(chunk)
                if on_chunk is not None:
                    on_chunk(chunk)
            reply = "".join(parts)
        else:
            reply = envelope.result

        return {
            "status": "success",
            "operation": "chat",
            "data": envelope_to_dict(envelope, reply),
        }

    async def quick_tip(self, symptom: str) -> dict[str, Any]:
        """Get one short tip for a single symptom."""
        try:
            envelope = await self.orchestrator.quick_tip(symptom)
        except ValueError as e:
            logger.error(f"Invalid tip request: {e}")
            return {"status": "error", "operation": "tip", "message": str(e)}

        return {
            "status": "success",
            "operation": "tip",
            "data": envelope_to_dict(envelope, tip_to_dict(envelope.result)),
        }

    async def health(self) -> dict[str, Any]:
        """Run a fresh probe cycle and report provider health."""
        records = await self.orchestrator.check_health()
        return {
            "status": "success",
            "operation": "health",
            "healthy_count": sum(1 for r in records if r.healthy),
            "data": [health_to_dict(r) for r in records],
        }

    def get_config(self) -> dict[str, Any]:
        config = self.orchestrator.get_config()
        return {
            "status": "success",
            "operation": "config",
            "data": {
                "primary_provider": config.primary_provider,
                "fallback_enabled": config.fallback_enabled,
                "timeout_ms": config.timeout_ms,
            },
        }

    def set_primary(self, provider: str) -> dict[str, Any]:
        try:
            self.orchestrator.set_primary_provider(provider)
        except ValueError as e:
            logger.error(f"Failed to set primary provider: {e}")
            return {"status": "error", "operation": "set_primary", "message": str(e)}
        return {
            "status": "success",
            "operation": "set_primary",
            "message": f"Primary provider set to {provider}",
        }

    def set_fallback(self, enabled: bool) -> dict[str, Any]:
        if not isinstance(enabled, bool):
            return {
                "status": "error",
                "operation": "set_fallback",
                "message": f"enabled must be true or false, got {enabled!r}",
            }
        self.orchestrator.set_fallback_enabled(enabled)
        return {
            "status": "success",
            "operation": "set_fallback",
            "message": f"Fallback {'enabled' if enabled else 'disabled'}",
        }

    def set_timeout(self, timeout_ms: int) -> dict[str, Any]:
        try:
            self.orchestrator.set_timeout(int(timeout_ms))
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to set timeout: {e}")
            return {"status": "error", "operation": "set_timeout", "message": str(e)}
        return {
            "status": "success",
            "operation": "set_timeout",
            "message": f"Timeout set to {int(timeout_ms)}ms",
        }

    def cache_stats(self) -> dict[str, Any]:
        stats = self.orchestrator.get_cache_stats()
        return {
            "status": "success",
            "operation": "cache",
            "data": {
                "size": stats.size,
                "max_size": stats.max_size,
                "hits": stats.hits,
                "misses": stats.misses,
                "hit_rate": round(stats.hit_rate, 3),
            },
        }

    def clear_cache(self) -> dict[str, Any]:
        self.orchestrator.clear_cache()
        return {"status": "success", "operation": "clear_cache", "message": "Cache cleared"}

    def metrics(self) -> dict[str, Any]:
        metrics = self.orchestrator.get_performance_metrics()
        return {
            "status": "success",
            "operation": "metrics",
            "data": {
                name: {
                    "avg_ms": round(stats.avg_ms, 1),
                    "count": stats.count,
                    "last_ms": round(stats.last_ms, 1),
                }
                for name, stats in metrics.items()
            },
        }


def _truck_from_args(truck: dict[str, Any]) -> TruckModel:
    if not isinstance(truck, dict):
        raise ValueError("truck must be an object with make, model, year, engine")
    year = truck.get("year")
    mileage = truck.get("mileage")
    return TruckModel(
        make=truck.get("make", ""),
        model=truck.get("model", ""),
        year=int(year) if year is not None else None,
        engine=truck.get("engine") or "",
        id=truck.get("id"),
        mileage=int(mileage) if mileage is not None else None,
    )


def diagnosis_to_dict(result: DiagnosisResult) -> dict[str, Any]:
    return {
        "diagnosis": result.diagnosis,
        "possible_causes": list(result.possible_causes),
        "recommendations": list(result.recommendations),
        "confidence": result.confidence,
        "estimated_cost": result.estimated_cost,
        "estimated_time": result.estimated_time,
        "required_tools": list(result.required_tools),
        "safety_warnings": list(result.safety_warnings),
        "urgency": result.urgency.value,
        "provider": result.provider,
    }


def tip_to_dict(tip: QuickTip) -> dict[str, str]:
    return {"tip": tip.tip, "severity": tip.severity, "provider": tip.provider}


def attempt_to_dict(attempt: AttemptError) -> dict[str, str]:
    return {
        "provider": attempt.provider,
        "context": attempt.context,
        "reason": attempt.reason,
        "message": attempt.message,
    }


def envelope_to_dict(envelope: FallbackResult[Any], result: Any) -> dict[str, Any]:
    return {
        "result": result,
        "provider": envelope.provider,
        "fallback_used": envelope.fallback_used,
        "from_cache": envelope.from_cache,
        "errors": [attempt_to_dict(e) for e in envelope.errors],
    }


def health_to_dict(record: ProviderHealth) -> dict[str, Any]:
    return {
        "provider": record.provider,
        "healthy": record.healthy,
        "latency_ms": round(record.latency_ms, 1) if record.latency_ms is not None else None,
        "error": record.error,
        "checked_at": record.checked_at.isoformat() if record.checked_at else None,
    }


def format_diagnosis_text(envelope: FallbackResult[DiagnosisResult]) -> str:
    """Format a diagnosis envelope as human-readable text."""
    result = envelope.result
    lines = []

    source = envelope.provider
    if envelope.from_cache:
        source += " (cached)"
    elif envelope.fallback_used:
        source += " (fallback)"
    lines.append(f"Provider: {source}")
    lines.append(f"Urgency: {result.urgency.value}")
    lines.append(f"Confidence: {result.confidence:.0%}")
    lines.append("")

    lines.append(f"Diagnosis: {result.diagnosis}")
    lines.append("")

    lines.append("Possible Causes:")
    for cause in result.possible_causes:
        lines.append(f"  - {cause}")
    lines.append("")

    lines.append("Recommendations:")
    for i, step in enumerate(result.recommendations, 1):
        lines.append(f"  {i}. {step}")
    lines.append("")

    if result.safety_warnings:
        lines.append("Safety Warnings:")
        for warning in result.safety_warnings:
            lines.append(f"  ! {warning}")
        lines.append("")

    lines.append(f"Estimated Cost: {result.estimated_cost}")
    lines.append(f"Estimated Time: {result.estimated_time}")

    if envelope.errors:
        lines.append("")
        lines.append("Failed Attempts:")
        for attempt in envelope.errors:
            lines.append(f"  - {attempt.provider} [{attempt.reason}]: {attempt.message}")

    return "\n".join(lines)


async def run_command(
    handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
    on_chunk: Callable[[str], None] | None = None,
) -> dict[str, Any]:
    """Run a CLI command.

    Maps command names to handler methods.

    Args:
        handler: CLICommandHandler instance.
        command: Command name.
        args: Dictionary of command arguments.
        on_chunk: Receives streamed chat chunks when args ask to stream.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If the command is not recognized or a required
            argument is missing.
    """
    if command == "diagnose":
        _require(args, "truck", "symptoms")
        return await handler.diagnose(
            truck=args["truck"],
            symptoms=args["symptoms"],
            additional_info=args.get("additional_info"),
            urgency=args.get("urgency"),
            output_format=args.get("format", "json"),
        )

    elif command == "chat":
        if "messages" not in args and "message" not in args:
            raise ValueError("Missing required parameter: message or messages")
        return await handler.chat(
            messages=args.get("messages"),
            message=args.get("message"),
            stream=bool(args.get("stream", False)),
            on_chunk=on_chunk,
        )

    elif command == "tip":
        _require(args, "symptom")
        return await handler.quick_tip(args["symptom"])

    elif command == "health":
        return await handler.health()

    elif command == "config":
        return handler.get_config()

    elif command == "set-primary":
        _require(args, "provider")
        return handler.set_primary(args["provider"])

    elif command == "set-fallback":
        _require(args, "enabled")
        return handler.set_fallback(args["enabled"])

    elif command == "set-timeout":
        _require(args, "timeout_ms")
        return handler.set_timeout(args["timeout_ms"])

    elif command == "cache":
        return handler.cache_stats()

    elif command == "clear-cache":
        return handler.clear_cache()

    elif command == "metrics":
        return handler.metrics()

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")


def _require(args: dict[str, Any], *names: str) -> None:
    for name in names:
        if name not in args:
            raise ValueError(f"Missing required parameter: {name}")
