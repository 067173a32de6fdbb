"""Weighted, health-aware instance selection."""

import bisect
import logging
import random
from dataclasses import dataclass
from itertools import accumulate

from nacos_naming.core.cache import InstanceCache
from nacos_naming.errors import NoHealthyInstanceError, NoInstanceError
from nacos_naming.models.instance import Instance, ServiceView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CandidateTable:
    """Precomputed draw table for one ServiceView."""

    candidates: tuple[Instance, ...]
    cumulative: tuple[float, ...]  # empty -> uniform draw
    degraded: bool
    total_instances: int


def build_candidate_table(view: ServiceView, fallback_to_unhealthy: bool) -> _CandidateTable | None:
    """Work out which instances may be picked and with what weight.

    Weight-0 instances are never candidates unless the view holds exactly
    one instance. Returns None when nothing is selectable and fallback is
    disabled.
    """
    total = len(view.instances)
    enabled = [i for i in view.instances if i.enabled]
    selectable = enabled if total == 1 else [i for i in enabled if i.weight > 0]
    healthy = [i for i in selectable if i.healthy]

    if healthy:
        return _CandidateTable(
            candidates=tuple(healthy),
            cumulative=tuple(accumulate(i.weight for i in healthy)),
            degraded=False,
            total_instances=total,
        )

    if fallback_to_unhealthy and selectable:
        return _CandidateTable(candidates=tuple(selectable), cumulative=(), degraded=True, total_instances=total)

    return None


class HealthSelector:
    """Picks one instance per call from the cache.

    Draw tables are cached per service and dropped whenever the cache
    reports a change, so repeated selections on unchanged data skip the
    filtering and prefix-sum work.
    """

    def __init__(self, cache: InstanceCache, rng: random.Random | None = None, fallback_to_unhealthy: bool = False):
        self._cache = cache
        self._rng = rng or random.Random()
        self._fallback_to_unhealthy = fallback_to_unhealthy
        self._tables: dict[str, _CandidateTable | None] = {}
        cache.add_listener(self._on_cache_change)

    def _on_cache_change(self, service_name: str, view: ServiceView | None) -> None:
        self._tables.pop(service_name, None)

    def _table_for(self, service_name: str, view: ServiceView) -> _CandidateTable | None:
        if service_name not in self._tables:
            self._tables[service_name] = build_candidate_table(view, self._fallback_to_unhealthy)
        return self._tables[service_name]

    def select_one(self, service_name: str) -> Instance:
        """Select one instance of `service_name`.

        Raises:
            NoInstanceError: Service unknown to the cache or has no instances
            NoHealthyInstanceError: Instances exist but none is healthy with positive weight (fallback disabled)
        """
        view = self._cache.peek(service_name)
        if view is None or not view.instances:
            raise NoInstanceError(f"No instances registered for service '{service_name}'")

        table = self._table_for(service_name, view)
        if table is None:
            raise NoHealthyInstanceError(
                f"None of the {len(view.instances)} instance(s) of service '{service_name}' is healthy with a positive weight"
            )

        chosen = self._draw(table)
        if table.degraded:
            logger.warning(
                f"[SELECTOR] degraded selection for {service_name}: no healthy instance among {table.total_instances}, "
                f"returning unhealthy {chosen.address}"
            )
        return chosen

    def _draw(self, table: _CandidateTable) -> Instance:
        if len(table.candidates) == 1:
            return table.candidates[0]
        if not table.cumulative:
            return self._rng.choice(table.candidates)
        point = self._rng.random() * table.cumulative[-1]
        index = bisect.bisect_right(table.cumulative, point)
        # Guard against float rounding placing point at the very top
        return table.candidates[min(index, len(table.candidates) - 1)]
