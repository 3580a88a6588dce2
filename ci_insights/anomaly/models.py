"""Data models for rolling-baseline anomaly detection."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AnomalyMetric(str, Enum):
    """Run timing metrics the detector watches."""

    DURATION = "duration"
    QUEUE_WAIT = "queue_wait"

    @property
    def label(self) -> str:
        return "Duration" if self is AnomalyMetric.DURATION else "Queue wait"


@dataclass
class AnomalyResult:
    """A single run flagged on a single metric.

    Attributes:
        run_id: Provider run identifier
        run_number: Per-workflow run counter
        metric: Metric that was flagged
        value_ms: Observed value
        mean_ms: Baseline mean, rounded to whole ms
        stddev_ms: Baseline sample stddev, rounded to whole ms
        z_score: Signed deviation in stddevs, rounded to 1 decimal
        is_high: Value above the upper bound
        is_low: Value below the lower bound (duration only)
    """

    run_id: int
    run_number: Optional[int]
    metric: AnomalyMetric
    value_ms: int
    mean_ms: int
    stddev_ms: int
    z_score: float
    is_high: bool
    is_low: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["metric"] = self.metric.value
        return data


@dataclass
class RunAnomalies:
    """All anomalies found for one run, merged across metrics."""

    run_id: int
    run_number: Optional[int]
    anomalies: List[AnomalyResult] = field(default_factory=list)
    has_anomaly: bool = False
    worst_z: float = 0.0

    def add(self, result: AnomalyResult) -> None:
        """Attach a result; worst_z keeps the first z of greatest magnitude."""
        self.anomalies.append(result)
        self.has_anomaly = True
        if abs(result.z_score) > abs(self.worst_z):
            self.worst_z = result.z_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_number": self.run_number,
            "anomalies": [a.to_dict() for a in self.anomalies],
            "has_anomaly": self.has_anomaly,
            "worst_z": self.worst_z,
        }


@dataclass
class BaselineStats:
    """Current normal range of a metric, for display.

    ``lower_bound_ms`` is clamped at zero.
    """

    metric: AnomalyMetric
    mean_ms: int
    stddev_ms: int
    upper_bound_ms: int
    lower_bound_ms: int
    sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["metric"] = self.metric.value
        return data
