"""Statistical outlier detection on run duration and queue wait."""

from .detector import (
    AnomalyDetector,
    anomaly_severity,
    compute_baseline,
    detect_anomalies,
    format_anomaly_summary,
)
from .models import AnomalyMetric, AnomalyResult, BaselineStats, RunAnomalies

__all__ = [
    "AnomalyDetector",
    "detect_anomalies",
    "compute_baseline",
    "format_anomaly_summary",
    "anomaly_severity",
    "AnomalyMetric",
    "AnomalyResult",
    "RunAnomalies",
    "BaselineStats",
]
