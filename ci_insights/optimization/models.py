"""Data models for workflow optimization advice."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class TipSeverity(str, Enum):
    """How urgently a tip should be acted on."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def sort_key(self) -> int:
        """0 for critical, 1 for warning, 2 for info."""
        return _SEVERITY_ORDER[self]


_SEVERITY_ORDER = {
    TipSeverity.CRITICAL: 0,
    TipSeverity.WARNING: 1,
    TipSeverity.INFO: 2,
}


class TipCategory(str, Enum):
    """Area a tip belongs to."""

    COST = "cost"
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    SECURITY = "security"


CATEGORY_LABELS = {
    TipCategory.COST: "Cost",
    TipCategory.PERFORMANCE: "Performance",
    TipCategory.RELIABILITY: "Reliability",
    TipCategory.SECURITY: "Security",
}


@dataclass
class OptimizationTip:
    """One piece of advice produced by a rule.

    Attributes:
        id: Stable rule identifier (e.g. "high-queue-wait"), usable for dismissal
        title: Short headline, may embed the measured value
        description: Explanation and suggested remedy
        severity: info, warning or critical
        category: cost, performance, reliability or security
        impact: Optional human-readable estimate of what is at stake
    """

    id: str
    title: str
    description: str
    severity: TipSeverity
    category: TipCategory
    impact: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
        }
        if self.impact is not None:
            data["impact"] = self.impact
        return data
