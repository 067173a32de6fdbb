"""Repeated-selection load driver (virtual users hammering one service)."""

import asyncio
import logging
import math
import time
from collections import Counter

from pydantic import BaseModel, Field

from nacos_naming.client import NamingClient
from nacos_naming.errors import NamingError
from nacos_naming.models.instance import grouped_name

logger = logging.getLogger(__name__)


class LatencySummary(BaseModel):
    """Selection latency percentiles in milliseconds."""

    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    max_ms: float = 0.0


class LoadReport(BaseModel):
    """Outcome of one load run."""

    service: str = Field(..., description="Grouped service name that was resolved")
    virtual_users: int
    iterations_per_user: int
    calls: int = 0
    successes: int = 0
    errors: dict[str, int] = Field(default_factory=dict, description="Failure count per exception type")
    endpoints: dict[str, int] = Field(default_factory=dict, description="How often each ip:port was selected")
    latency: LatencySummary = Field(default_factory=LatencySummary)
    duration_s: float = 0.0

    @property
    def failed(self) -> int:
        return self.calls - self.successes


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted list."""
    if not sorted_values:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(sorted_values)))
    return sorted_values[min(rank, len(sorted_values)) - 1]


async def run_load(
    client: NamingClient,
    service_name: str,
    group_name: str | None = None,
    iterations: int = 1000,
    concurrency: int = 1,
) -> LoadReport:
    """Call select_one_healthy_instance `iterations` times from each of `concurrency` users.

    Selection failures are counted, not raised; the run always completes.
    """
    endpoints: Counter[str] = Counter()
    errors: Counter[str] = Counter()
    latencies: list[float] = []

    async def _virtual_user(user_id: int) -> None:
        for _ in range(iterations):
            start = time.perf_counter()
            try:
                instance = await client.select_one_healthy_instance(service_name, group_name)
            except NamingError as e:
                errors[type(e).__name__] += 1
                logger.debug(f"[LOAD] user={user_id} selection failed: {type(e).__name__}: {e}")
            else:
                endpoints[instance.address] += 1
            finally:
                latencies.append((time.perf_counter() - start) * 1000)

    logger.info(f"[LOAD] {concurrency} user(s) x {iterations} iteration(s) against {service_name}")
    started = time.perf_counter()
    await asyncio.gather(*[_virtual_user(i) for i in range(concurrency)])
    duration = time.perf_counter() - started

    latencies.sort()
    successes = sum(endpoints.values())
    report = LoadReport(
        service=grouped_name(service_name, group_name or client.config.group_name),
        virtual_users=concurrency,
        iterations_per_user=iterations,
        calls=len(latencies),
        successes=successes,
        errors=dict(errors),
        endpoints=dict(endpoints.most_common()),
        latency=LatencySummary(
            p50_ms=percentile(latencies, 50),
            p95_ms=percentile(latencies, 95),
            p99_ms=percentile(latencies, 99),
            max_ms=latencies[-1] if latencies else 0.0,
        ),
        duration_s=duration,
    )
    logger.info(f"[LOAD] Complete: {successes}/{report.calls} selections succeeded in {duration:.2f}s")
    return report
