from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile of an ascending sequence; 0 for empty input."""
    n = len(sorted_values)
    if n == 0:
        return 0
    p = min(100.0, max(0.0, float(p)))
    idx = int(math.ceil(p * n / 100.0)) - 1
    idx = min(max(idx, 0), n - 1)
    return sorted_values[idx]


@dataclass(frozen=True, slots=True)
class PercentileStats:
    min: float
    p50: float
    p75: float
    p90: float
    p95: float
    p99: float
    max: float

    def ladder(self) -> tuple[float, float, float, float, float]:
        return (self.p50, self.p75, self.p90, self.p95, self.p99)

    def to_dict(self) -> dict[str, float]:
        return {
            "min": self.min,
            "p50": self.p50,
            "p75": self.p75,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
            "max": self.max,
        }


@dataclass(frozen=True, slots=True)
class MetricStats:
    count: int
    avg: float
    stats: PercentileStats

    def to_dict(self) -> dict[str, float]:
        payload: dict[str, float] = {"count": self.count, "avg": self.avg}
        payload.update(self.stats.to_dict())
        return payload


EMPTY_STATS = PercentileStats(min=0, p50=0, p75=0, p90=0, p95=0, p99=0, max=0)


def percentile_stats(sorted_values: Sequence[float]) -> PercentileStats:
    if not sorted_values:
        return EMPTY_STATS
    return PercentileStats(
        min=sorted_values[0],
        p50=percentile(sorted_values, 50),
        p75=percentile(sorted_values, 75),
        p90=percentile(sorted_values, 90),
        p95=percentile(sorted_values, 95),
        p99=percentile(sorted_values, 99),
        max=sorted_values[-1],
    )


def metric_stats(sorted_values: Sequence[float]) -> MetricStats:
    if not sorted_values:
        return MetricStats(count=0, avg=0.0, stats=EMPTY_STATS)
    return MetricStats(
        count=len(sorted_values),
        avg=sum(sorted_values) / len(sorted_values),
        stats=percentile_stats(sorted_values),
    )
