"""Data models for DORA delivery metrics.

Each of the four keys carries its raw value, a DORA performance level and a
short human-readable label.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DoraLevel(str, Enum):
    """DORA performance tier, best first."""

    ELITE = "elite"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Ordinal position, 0 for elite up to 3 for low."""
        return list(DoraLevel).index(self)

    @classmethod
    def worst(cls, *levels: "DoraLevel") -> "DoraLevel":
        """Return the lowest tier among ``levels`` (elite when none given)."""
        return max(levels, key=lambda level: level.rank, default=cls.ELITE)


@dataclass
class DeploymentFrequency:
    """Completed runs per day over the observed span.

    Attributes:
        per_day: Runs per day, rounded to 2 decimals
        total: Completed runs in the batch
        period_days: Observed span in days (at least 1), rounded to an integer
        level: DORA tier
        label: e.g. "3.5/day", "2.0/week", "1.5/month"
    """

    per_day: float
    total: int
    period_days: int
    level: DoraLevel
    label: str


@dataclass
class LeadTime:
    """Trigger-to-completion latency of completed runs with commit metadata."""

    median_ms: float
    p95_ms: float
    sample_size: int
    level: DoraLevel
    label: str


@dataclass
class ChangeFailureRate:
    """Share of completed runs that failed, as a percentage rounded to 1 decimal."""

    rate: float
    failures: int
    total: int
    level: DoraLevel
    label: str


@dataclass
class MeanTimeToRecovery:
    """Mean first-failure-to-next-success time on the same branch.

    ``mean_ms`` is None when no failure was ever followed by a success.
    """

    mean_ms: Optional[int]
    recoveries: int
    level: DoraLevel
    label: str


@dataclass
class DoraMetrics:
    """The four keys plus the overall (worst) tier."""

    deployment_frequency: DeploymentFrequency
    lead_time: LeadTime
    change_failure_rate: ChangeFailureRate
    mttr: MeanTimeToRecovery
    overall_level: DoraLevel

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict form with levels as strings, suitable for JSON output."""
        data = asdict(self)
        for section in ("deployment_frequency", "lead_time", "change_failure_rate", "mttr"):
            data[section]["level"] = data[section]["level"].value
        data["overall_level"] = self.overall_level.value
        return data
