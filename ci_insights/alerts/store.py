"""Storage interface used by the alert evaluator, and its SQL implementation."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Generator, List, Optional

from sqlalchemy.orm import Session

from ci_insights.domain.models import AlertEvent, AlertRule
from ci_insights.persistence import (
    AlertEventRepository,
    AlertRuleRepository,
    RunRepository,
    get_session,
)
from ci_insights.utils.stats import percentile
from ci_insights.utils.timestamps import hours_ago, utc_now

Clock = Callable[[], datetime]


class AlertStore(ABC):
    """Everything the evaluator reads and writes.

    Implementations raise PersistenceError on storage failure. Metric queries
    return None when the window holds no qualifying rows.
    """

    @abstractmethod
    def list_enabled_rules_for_scope(self, scope: str) -> List[AlertRule]:
        """Enabled rules attached to ``scope``, ordered by id."""

    @abstractmethod
    def has_recent_event(self, rule_id: int, window_hours: int) -> bool:
        """Whether the rule fired within the last ``window_hours``."""

    @abstractmethod
    def query_failure_rate(self, repo_key: str, window_hours: int) -> Optional[float]:
        """Failed / completed runs in the window as an unrounded percentage."""

    @abstractmethod
    def query_p95_duration(self, repo_key: str, window_hours: int) -> Optional[float]:
        """95th percentile of positive run durations in the window, ms."""

    @abstractmethod
    def query_p95_queue_wait(self, repo_key: str, window_hours: int) -> Optional[float]:
        """95th percentile of positive queue waits in the window, ms."""

    @abstractmethod
    def query_recent_conclusions(self, repo_key: str, limit: int) -> List[Optional[str]]:
        """Conclusions of the most recent completed runs, newest first."""

    @abstractmethod
    def insert_alert_event(
        self,
        rule_id: Optional[int],
        scope: str,
        metric: str,
        value: Optional[float],
        details: Dict[str, Any],
    ) -> AlertEvent:
        """Append an event stamped with the current time."""


class SqlAlertStore(AlertStore):
    """AlertStore over the SQLAlchemy repositories, bound to one session.

    Args:
        session: Session whose transaction scopes every call
        clock: Returns "now"; windows are measured back from it
    """

    def __init__(self, session: Session, clock: Clock = utc_now):
        self.session = session
        self.clock = clock
        self.runs = RunRepository(session)
        self.rules = AlertRuleRepository(session)
        self.events = AlertEventRepository(session)

    def _since(self, window_hours: int) -> datetime:
        return hours_ago(window_hours, self.clock())

    def list_enabled_rules_for_scope(self, scope: str) -> List[AlertRule]:
        return self.rules.list_enabled_for_scope(scope)

    def has_recent_event(self, rule_id: int, window_hours: int) -> bool:
        return self.events.has_recent_event(rule_id, self._since(window_hours))

    def query_failure_rate(self, repo_key: str, window_hours: int) -> Optional[float]:
        total, failures = self.runs.failure_counts(repo_key, self._since(window_hours))
        if total == 0:
            return None
        return failures / total * 100

    def query_p95_duration(self, repo_key: str, window_hours: int) -> Optional[float]:
        values = self.runs.duration_values(repo_key, self._since(window_hours))
        return percentile(values, 0.95) if values else None

    def query_p95_queue_wait(self, repo_key: str, window_hours: int) -> Optional[float]:
        values = self.runs.queue_wait_values(repo_key, self._since(window_hours))
        return percentile(values, 0.95) if values else None

    def query_recent_conclusions(self, repo_key: str, limit: int) -> List[Optional[str]]:
        return self.runs.recent_conclusions(repo_key, limit)

    def insert_alert_event(self, rule_id, scope, metric, value, details) -> AlertEvent:
        event = AlertEvent(
            rule_id=rule_id,
            scope=scope,
            metric=metric,
            value=value,
            fired_at=self.clock(),
            details=details,
        )
        return self.events.insert(event)


@contextmanager
def sql_store_scope(clock: Clock = utc_now) -> Generator[SqlAlertStore, None, None]:
    """Open a session and yield a store bound to it.

    The transaction commits when the block exits cleanly and rolls back
    otherwise.

    Example:
        >>> with sql_store_scope() as store:
        ...     store.has_recent_event(rule_id=3, window_hours=24)
    """
    with get_session() as session:
        yield SqlAlertStore(session, clock=clock)
