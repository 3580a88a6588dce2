"""Threshold alert evaluation with per-rule deduplication.

For one repository, every enabled rule attached to the repository or its owner
is checked against recent run history. A rule that crosses its threshold
records an AlertEvent, unless it already fired within its own window.
"""

import threading
import weakref
from contextlib import AbstractContextManager
from typing import Callable, List, Optional

from ci_insights.domain.models import AlertMetric, AlertRule, RunConclusion
from ci_insights.logging import get_logger
from ci_insights.logging.context import log_context
from ci_insights.persistence.exceptions import PersistenceError
from ci_insights.utils.stats import MS_PER_MINUTE, round_half_up
from ci_insights.utils.timestamps import format_timestamp, utc_now

from .scopes import resolve_scopes
from .store import AlertStore, Clock, sql_store_scope

logger = get_logger(__name__, component="alerts")

DEFAULT_RECENT_CONCLUSIONS_LIMIT = 100

StoreFactory = Callable[[], AbstractContextManager]

# One lock per rule id, shared by every evaluator in the process while any
# evaluation of that rule holds it
_rule_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_rule_locks_guard = threading.Lock()


def _lock_for_rule(rule_id: int) -> threading.Lock:
    with _rule_locks_guard:
        lock = _rule_locks.get(rule_id)
        if lock is None:
            lock = threading.Lock()
            _rule_locks[rule_id] = lock
        return lock


class AlertRuleEvaluator:
    """Evaluate alert rules for a repository and record the ones that fire.

    Each rule runs in its own store scope, so an event committed for one rule
    survives a storage failure on a later one.

    Args:
        store_factory: Zero-argument callable returning a context manager that
            yields an AlertStore and commits on clean exit
        clock: Returns "now" for windows and event timestamps
        recent_conclusions_limit: Completed runs scanned for success_streak
    """

    def __init__(
        self,
        store_factory: Optional[StoreFactory] = None,
        clock: Clock = utc_now,
        recent_conclusions_limit: int = DEFAULT_RECENT_CONCLUSIONS_LIMIT,
    ):
        self.clock = clock
        self.store_factory = store_factory or (lambda: sql_store_scope(clock=clock))
        self.recent_conclusions_limit = recent_conclusions_limit
        self._metric_handlers = {
            AlertMetric.FAILURE_RATE.value: self._failure_rate,
            AlertMetric.DURATION_P95.value: self._duration_p95,
            AlertMetric.QUEUE_WAIT_P95.value: self._queue_wait_p95,
            AlertMetric.SUCCESS_STREAK.value: self._success_streak,
        }

    def evaluate_for_repo(self, repo_key: str) -> int:
        """Evaluate every applicable rule once.

        Args:
            repo_key: Repository key, "owner/name"

        Returns:
            Number of events recorded by this call

        Raises:
            PersistenceError: If the store fails; events recorded for earlier
                rules stay committed
        """
        with log_context(repo=repo_key):
            try:
                rules = self._load_rules(repo_key)
                logger.info(
                    f"Evaluating {len(rules)} alert rules",
                    extra={"event": "alerts.evaluation.started", "rule_count": len(rules)},
                )

                fired = 0
                for rule in rules:
                    with log_context(rule_id=rule.id, metric=rule.metric):
                        with _lock_for_rule(rule.id):
                            with self.store_factory() as store:
                                if self._evaluate_rule(store, rule, repo_key):
                                    fired += 1

            except PersistenceError as e:
                logger.error(
                    f"Alert evaluation failed: {e}",
                    extra={"event": "alerts.evaluation.failed", "error_type": type(e).__name__},
                    exc_info=True,
                )
                raise

            logger.info(
                f"Alert evaluation fired {fired} events",
                extra={"event": "alerts.evaluation.completed", "fired": fired},
            )
            return fired

    def _load_rules(self, repo_key: str) -> List[AlertRule]:
        """Enabled rules for every scope of the repo, each id once."""
        rules: List[AlertRule] = []
        seen = set()
        with self.store_factory() as store:
            for scope in resolve_scopes(repo_key):
                for rule in store.list_enabled_rules_for_scope(scope):
                    if rule.id in seen:
                        continue
                    seen.add(rule.id)
                    rules.append(rule)
        return rules

    def _evaluate_rule(self, store: AlertStore, rule: AlertRule, repo_key: str) -> bool:
        """Dedup check, metric, threshold test, insert. Returns True if it fired."""
        if store.has_recent_event(rule.id, rule.window_hours):
            logger.debug(
                "Rule already fired within its window",
                extra={"event": "alerts.rule.deduplicated", "window_hours": rule.window_hours},
            )
            return False

        handler = self._metric_handlers.get(rule.metric)
        if handler is None:
            logger.warning(
                f"Skipping rule with unknown metric '{rule.metric}'",
                extra={"event": "alerts.rule.unknown_metric"},
            )
            return False

        value = handler(store, repo_key, rule)
        if value is None:
            logger.debug(
                "No data in window",
                extra={"event": "alerts.rule.no_data", "window_hours": rule.window_hours},
            )
            return False

        if value < rule.threshold:
            logger.debug(
                f"Value {value} below threshold {rule.threshold}",
                extra={"event": "alerts.rule.below_threshold", "value": value},
            )
            return False

        details = {
            "repo": repo_key,
            "threshold": rule.threshold,
            "window_hours": rule.window_hours,
            "triggered_at": format_timestamp(self.clock(), include_microseconds=True),
        }
        event = store.insert_alert_event(rule.id, rule.scope, rule.metric, value, details)

        logger.info(
            f"Alert rule fired: {rule.metric} = {value} (threshold {rule.threshold})",
            extra={
                "event": "alerts.rule.fired",
                "value": value,
                "threshold": rule.threshold,
                "scope": rule.scope,
                "alert_event_id": event.id,
                "channel": rule.channel,
            },
        )
        return True

    def _failure_rate(self, store: AlertStore, repo_key: str, rule: AlertRule) -> Optional[int]:
        """Whole percent, half-up."""
        rate = store.query_failure_rate(repo_key, rule.window_hours)
        return None if rate is None else round_half_up(rate)

    def _duration_p95(self, store: AlertStore, repo_key: str, rule: AlertRule) -> Optional[int]:
        return _ms_to_minutes(store.query_p95_duration(repo_key, rule.window_hours))

    def _queue_wait_p95(self, store: AlertStore, repo_key: str, rule: AlertRule) -> Optional[int]:
        return _ms_to_minutes(store.query_p95_queue_wait(repo_key, rule.window_hours))

    def _success_streak(self, store: AlertStore, repo_key: str, rule: AlertRule) -> Optional[int]:
        """Leading failures among recent completed runs; ignores the rule window."""
        conclusions = store.query_recent_conclusions(repo_key, self.recent_conclusions_limit)
        if not conclusions:
            return None
        streak = 0
        for conclusion in conclusions:
            if conclusion != RunConclusion.FAILURE.value:
                break
            streak += 1
        return streak


def _ms_to_minutes(p95_ms: Optional[float]) -> Optional[int]:
    # Whole ms first, then whole minutes
    if p95_ms is None:
        return None
    return round_half_up(round_half_up(p95_ms) / MS_PER_MINUTE)


def evaluate_alert_rules_for_repo(
    repo_key: str, recent_conclusions_limit: int = DEFAULT_RECENT_CONCLUSIONS_LIMIT
) -> int:
    """Evaluate rules for ``repo_key`` against the initialised database.

    Returns:
        Number of events recorded

    Raises:
        PersistenceError: If the database fails
    """
    evaluator = AlertRuleEvaluator(recent_conclusions_limit=recent_conclusions_limit)
    return evaluator.evaluate_for_repo(repo_key)
