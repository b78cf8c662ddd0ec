"""Health-check probe: latency of liveness checks and a tally of statuses."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from echoskew.errors import CallError, ProbeError
from echoskew.probe.estimator import StatsSink, coerce_count
from echoskew.utils.logging_config import get_logger

logger = get_logger(__name__)


class HealthChannel(Protocol):
    def check_health(self, service: str = "") -> Awaitable[str]: ...


@dataclass
class HealthRunResult:
    rtt_samples: List[float] = field(default_factory=list)
    statuses: Counter = field(default_factory=Counter)
    error: Optional[CallError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_health(
    channel: HealthChannel,
    iterations: int,
    service: str = "",
    rtt_sink: Optional[StatsSink] = None,
    clock: Callable[[], float] = time.perf_counter,
) -> HealthRunResult:
    """Call the health check ``iterations`` times, recording latency in µs."""
    iterations = coerce_count(iterations)
    result = HealthRunResult()
    for i in range(1, iterations + 1):
        start = clock()
        try:
            status = await channel.check_health(service)
        except ProbeError as e:
            err = e if isinstance(e, CallError) else CallError(str(e), cause=e)
            result.error = err.with_context("health", i)
            logger.error(f"Health run aborted: {result.error}")
            return result
        dur_us = (clock() - start) * 1_000_000.0
        result.statuses[status] += 1
        result.rtt_samples.append(dur_us)
        if rtt_sink is not None:
            rtt_sink.record(dur_us)
        logger.debug("Health check", iteration=i, status=status, rtt_us=dur_us)
    return result
