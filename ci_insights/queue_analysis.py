"""Aggregate queue-wait statistics for a batch of runs."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Sequence

from ci_insights.domain.models import RunRecord
from ci_insights.utils.stats import mean, percentile, positive_values, round_half_up

DELAY_THRESHOLD_MS = 5 * 60 * 1000


@dataclass
class QueueStats:
    """Queue-wait summary over runs with a measurable (positive) wait.

    Attributes:
        avg_ms: Mean wait, whole ms
        p50_ms: Median wait, whole ms
        p95_ms: 95th percentile wait, whole ms
        max_ms: Longest wait
        delayed: Runs that waited longer than the threshold
        total: Runs with a measurable wait
        delayed_pct: delayed / total as a percentage, 1 decimal
    """

    avg_ms: int = 0
    p50_ms: int = 0
    p95_ms: int = 0
    max_ms: int = 0
    delayed: int = 0
    total: int = 0
    delayed_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_queue_stats(
    runs: Sequence[RunRecord], threshold_ms: int = DELAY_THRESHOLD_MS
) -> QueueStats:
    """Summarise queue waits; runs without a positive wait are ignored.

    Example:
        >>> compute_queue_stats([]).total
        0
    """
    waits = sorted(positive_values(run.queue_wait_ms for run in runs))
    if not waits:
        return QueueStats()

    delayed = sum(1 for wait in waits if wait > threshold_ms)
    return QueueStats(
        avg_ms=round_half_up(mean(waits)),
        p50_ms=round_half_up(percentile(waits, 0.5)),
        p95_ms=round_half_up(percentile(waits, 0.95)),
        max_ms=waits[-1],
        delayed=delayed,
        total=len(waits),
        delayed_pct=round_half_up(delayed / len(waits) * 100, 1),
    )
