"""Rule-based workflow optimization advice."""

from .base import OptimizationRule, RuleRegistry
from .engine import OptimizationEngine, analyze_workflow
from .models import CATEGORY_LABELS, OptimizationTip, TipCategory, TipSeverity
from .rules import default_registry, leading_failures

__all__ = [
    "analyze_workflow",
    "OptimizationEngine",
    "OptimizationRule",
    "RuleRegistry",
    "default_registry",
    "leading_failures",
    "OptimizationTip",
    "TipSeverity",
    "TipCategory",
    "CATEGORY_LABELS",
]
