"""Optimization engine: runs every registered rule over a batch of runs."""

from typing import List, Optional, Sequence

from ci_insights.domain.models import RunRecord
from ci_insights.logging import get_logger

from .base import RuleRegistry
from .models import OptimizationTip
from .rules import default_registry

logger = get_logger(__name__, component="optimization")


class OptimizationEngine:
    """Evaluate rules in registration order and rank the resulting tips.

    Args:
        registry: Rules to run (defaults to the ten built-in rules)
    """

    def __init__(self, registry: Optional[RuleRegistry] = None):
        self.registry = registry if registry is not None else default_registry

    def analyze(self, runs: Sequence[RunRecord]) -> List[OptimizationTip]:
        """Produce tips for a batch of runs.

        Args:
            runs: Runs newest first

        Returns:
            Tips sorted critical, warning, info; ties keep rule order
        """
        completed = [run for run in runs if run.is_completed]

        tips = []
        for rule in self.registry:
            tip = rule.evaluate(runs, completed)
            if tip is not None:
                tips.append(tip)

        tips.sort(key=lambda tip: tip.severity.sort_key)

        logger.debug(
            f"Optimization analysis produced {len(tips)} tips",
            extra={
                "event": "optimization.analyzed",
                "runs": len(runs),
                "rules": len(self.registry),
                "tip_ids": [tip.id for tip in tips],
            },
        )
        return tips


def analyze_workflow(runs: Sequence[RunRecord]) -> List[OptimizationTip]:
    """Run the built-in rules. Runs are newest first."""
    return OptimizationEngine().analyze(runs)
