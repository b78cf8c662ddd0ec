"""Histogram sink for RTT and clock skew samples.

Values are bucketed on a fixed, roughly logarithmic scale after being shifted
by ``offset`` and divided by ``divider``, so the same scale serves RTTs in the
tens of microseconds and skews of several milliseconds. Percentiles are
computed on the raw samples.
"""

from __future__ import annotations

import bisect
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

# Upper bounds (exclusive) of the scaled buckets; anything above the last one
# lands in the overflow bucket.
BUCKETS: Tuple[int, ...] = (
    1, 2, 3, 4, 5, 6, 7, 8, 9, 10,
    11, 12, 14, 16, 18, 20, 25, 30, 35, 40, 45, 50, 60, 70, 80, 90, 100,
    200, 300, 400, 500, 600, 700, 800, 900, 1000,
    2000, 3000, 4000, 5000, 7500, 10000,
    20000, 30000, 40000, 50000, 75000, 100000,
)


class Histogram:
    """Records float samples and reports their distribution."""

    def __init__(self, offset: float = 0.0, divider: float = 1.0):
        if divider <= 0:
            raise ValueError("divider must be positive")
        self.offset = offset
        self.divider = divider
        self.counts: List[int] = [0] * (len(BUCKETS) + 1)
        self.values: List[float] = []

    def record(self, value: float) -> None:
        scaled = (value - self.offset) / self.divider
        idx = bisect.bisect_right(BUCKETS, scaled)
        self.counts[idx] += 1
        self.values.append(float(value))

    def record_many(self, values: Iterable[float]) -> None:
        for v in values:
            self.record(v)

    @property
    def count(self) -> int:
        return len(self.values)

    @property
    def min(self) -> Optional[float]:
        return min(self.values) if self.values else None

    @property
    def max(self) -> Optional[float]:
        return max(self.values) if self.values else None

    @property
    def sum(self) -> float:
        return float(np.sum(self.values)) if self.values else 0.0

    @property
    def avg(self) -> Optional[float]:
        return float(np.mean(self.values)) if self.values else None

    @property
    def stddev(self) -> Optional[float]:
        return float(np.std(self.values)) if self.values else None

    def percentile(self, p: float) -> Optional[float]:
        if not 0 <= p <= 100:
            raise ValueError(f"percentile {p} outside [0, 100]")
        if not self.values:
            return None
        return float(np.percentile(np.asarray(self.values), p))

    def bucket_range(self, idx: int) -> Tuple[float, float]:
        """Unscaled [start, end) of bucket ``idx``, clipped to the observed min/max."""
        lo = self.min if idx == 0 else self.offset + self.divider * BUCKETS[idx - 1]
        hi = self.max if idx == len(BUCKETS) else self.offset + self.divider * BUCKETS[idx]
        if self.values:
            lo = max(lo, self.min)
            hi = min(hi, self.max)
        return lo, hi

    def buckets(self) -> List[Tuple[float, float, int, float]]:
        """Non-empty buckets as (start, end, count, cumulative percent)."""
        out = []
        total = self.count
        running = 0
        for idx, n in enumerate(self.counts):
            if n == 0:
                continue
            running += n
            lo, hi = self.bucket_range(idx)
            out.append((lo, hi, n, 100.0 * running / total))
        return out

    def report(self, title: str, percentiles: Sequence[float] = (50,)) -> str:
        if not self.values:
            return f"{title} : count 0\n"
        lines = [
            f"{title} : count {self.count} avg {self.avg:.9g} +/- {self.stddev:.4g} "
            f"min {self.min:.9g} max {self.max:.9g} sum {self.sum:.9g}",
            "# range, mid point, percentile, count",
        ]
        first = True
        for lo, hi, n, pct in self.buckets():
            prefix = ">=" if first else ">"
            first = False
            lines.append(f"{prefix} {lo:.9g} <= {hi:.9g} , {(lo + hi) / 2:.9g} , {pct:.2f}, {n}")
        for p in percentiles:
            lines.append(f"# target {p:g}% {self.percentile(p):.9g}")
        return "\n".join(lines) + "\n"
