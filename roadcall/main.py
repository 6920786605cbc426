"""Composition root for the roadcall orchestration layer.

The one module that knows about both the core and the concrete adapters.
It reads Settings, builds the three provider adapters, wires the health
registry, monitor, cache and orchestrator together, and then runs one of
the run modes:

- cli: interactive prompt, health monitor in the background
- daemon: health monitor only, until SIGTERM or SIGINT
- probe: a single health cycle printed as JSON
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

from roadcall.adapters.cli.commands import CLICommandHandler, health_to_dict, run_command
from roadcall.adapters.providers.azure_agent import AzureAgentProvider
from roadcall.adapters.providers.azure_openai import AzureOpenAIProvider
from roadcall.adapters.providers.github_models import GitHubModelsProvider
from roadcall.adapters.scheduler.health_monitor import HealthMonitor
from roadcall.config import Settings, load_settings
from roadcall.core.cache import ResponseCache
from roadcall.core.health import HealthRegistry
from roadcall.core.models import PROVIDER_ORDER, ProviderHealth
from roadcall.core.orchestrator import RequestOrchestrator
from roadcall.core.ports import ProviderPort
from roadcall.core.synthesizer import OfflineDiagnosisSynthesizer


@dataclass
class Application:
    """Wired components, ready to run in any mode."""

    settings: Settings
    providers: dict[str, ProviderPort]
    registry: HealthRegistry
    monitor: HealthMonitor
    orchestrator: RequestOrchestrator
    cli_handler: CLICommandHandler

    async def close(self) -> None:
        """Stop the monitor and release provider connections."""
        logger = logging.getLogger(__name__)
        await self.monitor.stop()
        for provider in self.providers.values():
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Failed to close {provider.provider_id}: {e}")


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Read `command {json}` lines from stdin until exit or EOF."""
    logger = logging.getLogger(__name__)
    logger.info("roadcall CLI ready. Type 'help' for commands, 'exit' to leave.")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # input() blocks, so it runs in the executor
            command_line = await loop.run_in_executor(None, input, "roadcall> ")

            command_line = command_line.strip()
            if not command_line:
                continue

            if command_line.lower() == "exit":
                logger.info("Leaving CLI")
                break

            if command_line.lower() == "help":
                _print_cli_help()
                continue

            parts = command_line.split(maxsplit=1)
            command = parts[0].lower()
            args_str = parts[1] if len(parts) > 1 else ""

            try:
                args = json.loads(args_str) if args_str else {}
            except json.JSONDecodeError:
                logger.error(f"Could not parse arguments as JSON: {args_str}")
                continue
            if not isinstance(args, dict):
                logger.error("Arguments must be a JSON object. Use 'help' for command syntax.")
                continue

            streaming = command == "chat" and bool(args.get("stream"))
            try:
                result = await run_command(
                    cli_handler, command, args, on_chunk=_print_chunk if streaming else None
                )
                if streaming and result.get("status") == "success":
                    print(f"\n[{result['data']['provider']}]")
                elif isinstance(result.get("data"), str):
                    print(result["data"])
                else:
                    print(json.dumps(result, indent=2, default=str))
            except Exception as e:
                logger.error(f"{command} failed: {e}", exc_info=True)
                print(json.dumps({"status": "error", "message": str(e)}, indent=2))

        except EOFError:
            logger.info("End of input, leaving CLI")
            break
        except KeyboardInterrupt:
            # Ctrl+C clears the line; exit or Ctrl+D leaves
            print()
            continue


def _print_chunk(chunk: str) -> None:
    print(chunk, end="", flush=True)


def _print_cli_help() -> None:
    help_text = """
Commands take an optional JSON object after the name:

  diagnose
    Diagnose a truck problem across the AI providers.
    Required: truck, symptoms
    Optional: additional_info, urgency (low|medium|high), format (json|text)

    Example: diagnose {"truck": {"make": "Peterbilt", "model": "379", "year": 2020,
             "engine": "Caterpillar C15"}, "symptoms": ["Engine overheating"],
             "urgency": "high", "format": "text"}

  chat
    Ask the repair assistant a question.
    Required: message (or messages as a list of {"role", "content"})
    Optional: stream (true prints the reply as it arrives)

    Example: chat {"message": "What does a DPF regen do?", "stream": true}

  tip
    Get one short tip and a severity for a single symptom.
    Required: symptom

    Example: tip {"symptom": "Air pressure warning buzzer"}

  health
    Probe every provider now and show their health.

  config
    Show the current orchestrator configuration.

  set-primary
    Change the provider attempted first.
    Required: provider (azure-ai-foundry|azure-openai|github-models)

    Example: set-primary {"provider": "github-models"}

  set-fallback
    Enable or disable cascading to other providers.
    Required: enabled

    Example: set-fallback {"enabled": false}

  set-timeout
    Change the per-provider timeout.
    Required: timeout_ms

    Example: set-timeout {"timeout_ms": 15000}

  cache
    Show response cache statistics.

  clear-cache
    Drop every cached diagnosis.

  metrics
    Show rolling latency per provider operation.

  help
    Show this list.

  exit
    Leave the prompt (Ctrl+D works too).
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = (
            '{"time": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # httpx logs every request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_providers(settings: Settings) -> dict[str, ProviderPort]:
    """Instantiate one adapter per provider id from settings.

    Unconfigured providers are still built; the orchestrator skips them
    with a config-error attempt record.
    """
    providers: list[ProviderPort] = [
        AzureAgentProvider(
            endpoint=settings.azure_projects_endpoint,
            agent_id=settings.azure_agent_id,
            thread_id=settings.azure_thread_id,
            api_key=settings.azure_agent_api_key or None,
            tenant_id=settings.azure_tenant_id or None,
            client_id=settings.azure_client_id or None,
            client_secret=settings.azure_client_secret or None,
            api_version=settings.azure_agent_api_version,
            poll_interval_ms=settings.azure_agent_poll_interval_ms,
            poll_timeout_ms=settings.azure_agent_poll_timeout_ms,
        ),
        AzureOpenAIProvider(
            endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_key,
            deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            max_retries=settings.azure_openai_max_retries,
        ),
        GitHubModelsProvider(
            token=settings.github_token,
            endpoint=settings.github_models_endpoint,
            model=settings.github_models_model,
        ),
    ]
    return {p.provider_id: p for p in providers}


def build_application(
    settings: Settings,
    providers: dict[str, ProviderPort] | None = None,
) -> Application:
    """Wire adapters and core services.

    Args:
        settings: Loaded settings.
        providers: Optional prebuilt adapters keyed by provider id, used
            by tests to substitute fakes.
    """
    logger = logging.getLogger(__name__)

    if providers is None:
        providers = build_providers(settings)
    for provider_id in PROVIDER_ORDER:
        if provider_id in providers:
            missing = providers[provider_id].missing_configuration()
            if missing:
                logger.warning(f"Provider {provider_id} not configured: missing {', '.join(missing)}")
            else:
                logger.info(f"Provider {provider_id} configured")

    registry = HealthRegistry(list(providers))
    monitor = HealthMonitor(
        providers=list(providers.values()),
        registry=registry,
        interval_seconds=settings.health_check_interval_seconds,
        probe_timeout_ms=settings.health_probe_timeout_ms,
    )
    orchestrator = RequestOrchestrator(
        providers=providers,
        health=registry,
        cache=ResponseCache(
            max_size=settings.cache_max_size,
            ttl_seconds=settings.cache_ttl_seconds,
        ),
        synthesizer=OfflineDiagnosisSynthesizer(),
        config=settings.orchestrator_config(),
        health_prober=monitor,
        offline_ttl_seconds=settings.offline_cache_ttl_seconds,
    )
    return Application(
        settings=settings,
        providers=providers,
        registry=registry,
        monitor=monitor,
        orchestrator=orchestrator,
        cli_handler=CLICommandHandler(orchestrator),
    )


async def bootstrap(settings: Settings | None = None) -> None:
    """Wire the application and run settings.run_mode until it finishes.

    Provider clients and the monitor are closed on the way out, whatever
    the mode and however it ended.

    Raises:
        SystemExit: On an unknown run mode.
    """
    if settings is None:
        settings = load_settings()

    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading roadcall AI orchestration layer...")

    app = build_application(settings)
    config = app.orchestrator.get_config()
    logger.info(
        f"Primary provider {config.primary_provider}, "
        f"fallback {'enabled' if config.fallback_enabled else 'disabled'}, "
        f"timeout {config.timeout_ms}ms"
    )

    logger.info(f"Starting in {settings.run_mode} mode...")

    try:
        if settings.run_mode == "daemon":
            await app.monitor.start(handle_signals=True)

        elif settings.run_mode == "cli":
            app.monitor.start_background()
            await _run_cli_interactive(app.cli_handler)

        elif settings.run_mode == "probe":
            records = await app.monitor.run_cycle()
            print(json.dumps(_probe_report(app, records), indent=2))

        else:
            logger.error(f"Unknown run mode: {settings.run_mode}")
            sys.exit(1)

    finally:
        await app.close()


def _probe_report(app: Application, records: list[ProviderHealth]) -> dict[str, Any]:
    return {
        "overall": app.registry.overall().value,
        "providers": [health_to_dict(r) for r in records],
    }


def main() -> None:
    """Console entry point for the roadcall command.

    Exits 0 on a clean stop, 1 on any unhandled error, and 130 when
    interrupted from the keyboard.
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
