"""Base rule class and registry for the optimization engine.

Every rule inspects a batch of runs and returns at most one tip. Rules are
stateless, so a single instance can be shared across threads.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Sequence, Type, Union

from ci_insights.domain.models import RunRecord

from .models import OptimizationTip


class OptimizationRule(ABC):
    """Base class for all optimization rules.

    Subclasses set ``rule_id`` (also the id of the tip they emit) and implement
    evaluate().
    """

    rule_id: str = ""

    @abstractmethod
    def evaluate(
        self, runs: Sequence[RunRecord], completed: Sequence[RunRecord]
    ) -> Optional[OptimizationTip]:
        """Inspect runs and return a tip, or None when the rule does not apply.

        Args:
            runs: All runs, newest first
            completed: The subset of ``runs`` with status "completed", same order

        Returns:
            OptimizationTip or None. Must not raise on sparse input.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.rule_id}>"


class RuleRegistry:
    """Ordered collection of rules.

    Registration order is evaluation order. ``register`` accepts either a rule
    instance or a rule class (instantiated with no arguments), so it can be
    used as a class decorator.

    Example:
        >>> registry = RuleRegistry()
        >>> @registry.register
        ... class NoisyRule(OptimizationRule):
        ...     rule_id = "noisy"
        ...     def evaluate(self, runs, completed):
        ...         return None
    """

    def __init__(self, rules: Optional[Sequence[OptimizationRule]] = None):
        self._rules: Dict[str, OptimizationRule] = {}
        for rule in rules or ():
            self.register(rule)

    def register(self, rule: Union[OptimizationRule, Type[OptimizationRule]]):
        """Add a rule; returns its argument unchanged.

        Raises:
            ValueError: If the rule has no id or the id is already registered
        """
        instance = rule() if isinstance(rule, type) else rule
        if not instance.rule_id:
            raise ValueError(f"{type(instance).__name__} has no rule_id")
        if instance.rule_id in self._rules:
            raise ValueError(f"Rule '{instance.rule_id}' is already registered")
        self._rules[instance.rule_id] = instance
        return rule

    def unregister(self, rule_id: str) -> None:
        """Remove a rule by id.

        Raises:
            KeyError: If no rule has this id
        """
        del self._rules[rule_id]

    def get(self, rule_id: str) -> Optional[OptimizationRule]:
        return self._rules.get(rule_id)

    @property
    def rule_ids(self) -> List[str]:
        return list(self._rules)

    def copy(self) -> "RuleRegistry":
        """Independent registry holding the same rule instances."""
        return RuleRegistry(list(self._rules.values()))

    def __iter__(self) -> Iterator[OptimizationRule]:
        return iter(list(self._rules.values()))

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules
