"""Rolling-baseline outlier detection for run duration and queue wait.

Each run is compared against the runs that came before it, never against later
ones, so a run's verdict does not change as history grows.
"""

from collections import deque
from typing import Dict, List, Optional, Sequence

from ci_insights.domain.models import RunRecord
from ci_insights.logging import get_logger
from ci_insights.utils.stats import format_duration_ms, mean, round_half_up, sample_stddev

from .models import AnomalyMetric, AnomalyResult, BaselineStats, RunAnomalies

logger = get_logger(__name__, component="anomaly")

DEFAULT_THRESHOLD = 2.0
DEFAULT_BASELINE_WINDOW = 20
DEFAULT_MIN_SAMPLES = 5
DEFAULT_MIN_STDDEV = 1.0


def _metric_value(run: RunRecord, metric: AnomalyMetric) -> Optional[int]:
    value = run.duration_ms if metric is AnomalyMetric.DURATION else run.queue_wait_ms
    if value is None or value <= 0:
        return None
    return value


class AnomalyDetector:
    """Flag runs whose timing lies more than ``threshold`` stddevs from their baseline.

    Args:
        threshold: Z-score magnitude that counts as anomalous
        baseline_window: Number of preceding valid values forming a baseline
        min_samples: Baseline size required before a run is judged
        min_stddev: Baselines with a smaller stddev (ms) are skipped as constant
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        baseline_window: int = DEFAULT_BASELINE_WINDOW,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        min_stddev: float = DEFAULT_MIN_STDDEV,
    ):
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        if min_stddev < 0:
            raise ValueError(f"min_stddev cannot be negative, got {min_stddev}")
        if min_samples > baseline_window:
            raise ValueError(
                f"min_samples ({min_samples}) cannot exceed baseline_window ({baseline_window})"
            )
        self.threshold = threshold
        self.baseline_window = baseline_window
        self.min_samples = min_samples
        self.min_stddev = min_stddev

    @classmethod
    def from_config(cls, config) -> "AnomalyDetector":
        """Build a detector from an ``AnomalyConfig`` section."""
        return cls(
            threshold=config.z_threshold,
            baseline_window=config.baseline_window,
            min_samples=config.min_samples,
            min_stddev=config.min_stddev_ms,
        )

    def detect_for_metric(
        self, runs: Sequence[RunRecord], metric: AnomalyMetric
    ) -> List[AnomalyResult]:
        """Flag anomalous runs on one metric.

        Args:
            runs: Runs in newest-first order
            metric: Metric to inspect

        Returns:
            Flagged runs only, oldest first
        """
        window: deque = deque(maxlen=self.baseline_window)
        results = []

        for run in reversed(runs):
            value = _metric_value(run, metric)
            if value is None:
                continue

            result = self._judge(run, metric, value, list(window))
            if result is not None:
                results.append(result)
            window.append(value)

        return results

    def _judge(
        self, run: RunRecord, metric: AnomalyMetric, value: int, baseline: List[int]
    ) -> Optional[AnomalyResult]:
        if len(baseline) < self.min_samples:
            return None

        avg = mean(baseline)
        sd = sample_stddev(baseline, avg)
        # Near-constant history would turn any jitter into a huge z
        if sd <= 0 or sd < self.min_stddev:
            return None

        z = (value - avg) / sd
        is_high = z > self.threshold
        # Short queue waits are never a problem
        is_low = metric is AnomalyMetric.DURATION and z < -self.threshold
        if not (is_high or is_low):
            return None

        return AnomalyResult(
            run_id=run.id,
            run_number=run.run_number,
            metric=metric,
            value_ms=value,
            mean_ms=round_half_up(avg),
            stddev_ms=round_half_up(sd),
            z_score=round_half_up(z, 1),
            is_high=is_high,
            is_low=is_low,
        )

    def detect(self, runs: Sequence[RunRecord]) -> Dict[int, RunAnomalies]:
        """Run both metrics and merge results by run id.

        Args:
            runs: Runs in newest-first order

        Returns:
            Mapping of run id to RunAnomalies, only for runs with an anomaly
        """
        merged: Dict[int, RunAnomalies] = {}
        for metric in (AnomalyMetric.DURATION, AnomalyMetric.QUEUE_WAIT):
            for result in self.detect_for_metric(runs, metric):
                entry = merged.get(result.run_id)
                if entry is None:
                    entry = RunAnomalies(run_id=result.run_id, run_number=result.run_number)
                    merged[result.run_id] = entry
                entry.add(result)

        if merged:
            logger.info(
                f"Detected anomalies on {len(merged)} of {len(runs)} runs",
                extra={
                    "event": "anomaly.detected",
                    "flagged_runs": len(merged),
                    "runs": len(runs),
                    "threshold": self.threshold,
                },
            )
        return merged

    def compute_baseline(
        self, runs: Sequence[RunRecord], metric: AnomalyMetric
    ) -> Optional[BaselineStats]:
        """Normal range from the most recent valid values.

        Args:
            runs: Runs in newest-first order
            metric: Metric to summarise

        Returns:
            BaselineStats, or None with fewer than ``min_samples`` valid values
        """
        values = []
        for run in runs:
            value = _metric_value(run, metric)
            if value is None:
                continue
            values.append(value)
            if len(values) >= self.baseline_window:
                break

        if len(values) < self.min_samples:
            return None

        avg = mean(values)
        sd = sample_stddev(values, avg)
        return BaselineStats(
            metric=metric,
            mean_ms=round_half_up(avg),
            stddev_ms=round_half_up(sd),
            upper_bound_ms=round_half_up(avg + self.threshold * sd),
            lower_bound_ms=max(0, round_half_up(avg - self.threshold * sd)),
            sample_size=len(values),
        )


def detect_anomalies(
    runs: Sequence[RunRecord], threshold: float = DEFAULT_THRESHOLD
) -> Dict[int, RunAnomalies]:
    """Detect anomalies with default window settings. Runs are newest-first."""
    return AnomalyDetector(threshold=threshold).detect(runs)


def compute_baseline(
    runs: Sequence[RunRecord], metric: AnomalyMetric, threshold: float = DEFAULT_THRESHOLD
) -> Optional[BaselineStats]:
    """Baseline with default window settings. Runs are newest-first."""
    return AnomalyDetector(threshold=threshold).compute_baseline(runs, AnomalyMetric(metric))


def format_anomaly_summary(result: AnomalyResult) -> str:
    """One-line description of an anomaly.

    Example:
        >>> format_anomaly_summary(result)
        'Duration: 3.1 stddev above mean (expected ~5m 0s, got 12m 3s)'
    """
    direction = "above" if result.is_high else "below"
    return (
        f"{result.metric.label}: {abs(result.z_score):.1f} stddev {direction} mean "
        f"(expected ~{format_duration_ms(result.mean_ms)}, got {format_duration_ms(result.value_ms)})"
    )


def anomaly_severity(worst_z: float) -> str:
    """Bucket a z-score into 'extreme' (>= 4), 'high' (>= 3) or 'moderate'."""
    magnitude = abs(worst_z)
    if magnitude >= 4:
        return "extreme"
    if magnitude >= 3:
        return "high"
    return "moderate"
