"""Health monitor scheduler adapter.

Implements a long-running asyncio loop that probes every provider at a
configurable interval and publishes the results to the HealthRegistry.
"""

import asyncio
import logging
import signal
from collections.abc import Sequence
from datetime import datetime, timezone

from roadcall.core.errors import ProviderTimeoutError
from roadcall.core.health import HealthRegistry
from roadcall.core.models import ProviderHealth
from roadcall.core.ports import HealthProbePort, ProviderPort
from roadcall.core.timeout_guard import with_timeout

logger = logging.getLogger(__name__)

# Cycles in a row with no healthy provider before escalating the log level
ALL_DOWN_ALERT_THRESHOLD = 5


class HealthMonitor(HealthProbePort):
    """Asyncio-based periodic prober for provider health.

    The only writer of the HealthRegistry. Every cycle re-probes every
    provider, so a provider that recovers is marked healthy again on the
    next cycle.
    """

    def __init__(
        self,
        providers: Sequence[ProviderPort],
        registry: HealthRegistry,
        interval_seconds: float = 60,
        probe_timeout_ms: int = 5000,
    ):
        """Initialize health monitor.

        Args:
            providers: Provider adapters to probe.
            registry: Health table to publish results into.
            interval_seconds: Delay between probe cycles.
            probe_timeout_ms: Bound on each individual probe.
        """
        self.providers = list(providers)
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.probe_timeout_ms = probe_timeout_ms
        self.running = False
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._all_down_count = 0

    async def start(self, handle_signals: bool = False) -> None:
        """Run the probe loop until stop() is called.

        Args:
            handle_signals: Install SIGTERM/SIGINT handlers that stop the
                loop gracefully. Used when running as the daemon.
        """
        if self.running:
            logger.warning("Health monitor already running")
            return

        self.running = True
        self._stop_event = asyncio.Event()
        logger.info(
            f"Starting health monitor for {len(self.providers)} providers "
            f"with {self.interval_seconds}s interval"
        )

        if handle_signals:
            self._setup_signal_handlers()

        try:
            await self._run_loop()
        except asyncio.CancelledError:
            logger.info("Health monitor cancelled")
        finally:
            self.running = False
            logger.info("Health monitor stopped")

    def start_background(self) -> "asyncio.Task[None]":
        """Start the probe loop as a background task and return it."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.start())
        return self._task

    async def stop(self) -> None:
        """Stop the probe loop and wait for a background task to finish."""
        if not self.running and self._task is None:
            return

        logger.info("Stopping health monitor...")
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

        if self._task:
            task, self._task = self._task, None
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()

            def _handle_signal(sig: int) -> None:
                logger.info(f"Received signal {sig}, initiating graceful shutdown...")
                self.running = False
                if self._stop_event is not None:
                    self._stop_event.set()

            loop.add_signal_handler(signal.SIGTERM, _handle_signal, signal.SIGTERM)
            loop.add_signal_handler(signal.SIGINT, _handle_signal, signal.SIGINT)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.debug("Signal handlers not available on this platform")
        except Exception as e:
            logger.warning(f"Failed to set up signal handlers: {e}")

    async def _run_loop(self) -> None:
        """Main probe loop."""
        cycle_number = 0

        while self.running:
            cycle_number += 1
            try:
                logger.debug(f"Starting health probe cycle #{cycle_number}")
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in health probe cycle #{cycle_number}: {e}", exc_info=True)

            if self.running and self._stop_event is not None:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass

    async def run_cycle(self) -> list[ProviderHealth]:
        """Probe every provider concurrently and publish the results.

        Returns:
            Fresh records in the order the providers were given.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        records = list(await asyncio.gather(*(self._probe(p) for p in self.providers)))
        self.registry.update(records)

        elapsed = loop.time() - start_time
        healthy = [r.provider for r in records if r.healthy]
        logger.info(
            f"Health cycle completed in {elapsed:.2f}s: "
            f"{len(healthy)}/{len(records)} providers healthy, "
            f"overall {self.registry.overall().value}"
        )

        if records and not healthy:
            self._all_down_count += 1
            if self._all_down_count >= ALL_DOWN_ALERT_THRESHOLD:
                logger.critical(
                    f"No provider has been healthy for {self._all_down_count} "
                    f"consecutive cycles. Diagnoses are being served offline."
                )
        else:
            self._all_down_count = 0

        return records

    async def _probe(self, provider: ProviderPort) -> ProviderHealth:
        """Run one bounded probe. Never raises."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            return await with_timeout(
                provider.probe(), self.probe_timeout_ms, provider.provider_id
            )
        except ProviderTimeoutError as e:
            error = str(e)
        except Exception as e:
            logger.warning(f"Probe for {provider.provider_id} raised: {e}", exc_info=True)
            error = str(e) or type(e).__name__

        return ProviderHealth(
            provider=provider.provider_id,
            healthy=False,
            latency_ms=(loop.time() - start_time) * 1000,
            error=error,
            checked_at=datetime.now(timezone.utc),
        )
