"""Shared provider health table.

Single-writer design: only the health monitor calls update(). Every other
component reads an immutable snapshot, so readers never need a lock. Each
update builds a new mapping and swaps it in with a single assignment.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from .models import OverallHealth, ProviderHealth

logger = logging.getLogger(__name__)


class HealthRegistry:
    """Latest known health per provider.

    Starts with an unknown record for every provider. Unknown is not the
    same as unhealthy: is_known_unhealthy() is False until a probe has
    actually failed, so providers are tried before the first probe lands.
    """

    def __init__(self, providers: Iterable[str]):
        self._providers = tuple(providers)
        self._table: Mapping[str, ProviderHealth] = MappingProxyType(
            {p: ProviderHealth.unknown(p) for p in self._providers}
        )

    @property
    def providers(self) -> tuple[str, ...]:
        return self._providers

    def snapshot(self) -> Mapping[str, ProviderHealth]:
        """Return the current read-only table."""
        return self._table

    def get(self, provider: str) -> ProviderHealth:
        return self._table.get(provider, ProviderHealth.unknown(provider))

    def is_known_unhealthy(self, provider: str) -> bool:
        """True only if the most recent probe ran and failed."""
        record = self.get(provider)
        return record.is_known and not record.healthy

    def update(self, records: Iterable[ProviderHealth]) -> None:
        """Publish new probe results. Called by the health monitor only."""
        table = dict(self._table)
        for record in records:
            previous = table.get(record.provider)
            if previous is not None and previous.is_known and previous.healthy != record.healthy:
                state = "healthy" if record.healthy else "unhealthy"
                logger.info(f"Provider {record.provider} is now {state}")
            table[record.provider] = record
        self._table = MappingProxyType(table)

    def overall(self) -> OverallHealth:
        """Aggregate health: all healthy, some healthy, or none."""
        healthy = [r.healthy for r in self._table.values() if r.is_known]
        if healthy and all(healthy) and len(healthy) == len(self._table):
            return OverallHealth.HEALTHY
        if any(healthy):
            return OverallHealth.DEGRADED
        return OverallHealth.UNHEALTHY

    def as_list(self) -> list[ProviderHealth]:
        """Records in provider order."""
        table = self._table
        return [table[p] for p in self._providers if p in table]
