"""DORA four-keys metrics computed from CI run history."""

from .calculator import BENCHMARKS, LEVEL_LABELS, calculate_dora_metrics
from .models import (
    ChangeFailureRate,
    DeploymentFrequency,
    DoraLevel,
    DoraMetrics,
    LeadTime,
    MeanTimeToRecovery,
)

__all__ = [
    "calculate_dora_metrics",
    "DoraMetrics",
    "DoraLevel",
    "DeploymentFrequency",
    "LeadTime",
    "ChangeFailureRate",
    "MeanTimeToRecovery",
    "LEVEL_LABELS",
    "BENCHMARKS",
]
