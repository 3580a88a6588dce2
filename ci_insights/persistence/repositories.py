"""Data access layer (repositories) for persistence operations.

This module provides repository classes for workflow runs, alert rules and
alert events. Repositories encapsulate database operations and return domain
models rather than ORM models.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ci_insights.domain.models import AlertEvent, AlertRule, RunRecord, RunStatus
from ci_insights.utils.timestamps import to_storage, utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import AlertEventModel, AlertRuleModel, WorkflowRunModel

logger = logging.getLogger(__name__)


class RunRepository:
    """Repository for workflow run history, keyed by repository ("owner/name")."""

    def __init__(self, session: Session):
        self.session = session

    def upsert_runs(
        self, repo: str, runs: Iterable[RunRecord], synced_at: Optional[datetime] = None
    ) -> int:
        """Insert new runs or refresh existing ones.

        Args:
            repo: Repository key ("owner/name")
            runs: Run records to persist
            synced_at: Sync timestamp stamped on every row (defaults to now)

        Returns:
            Number of rows written

        Raises:
            PersistenceError: If database error occurs
        """
        synced = to_storage(synced_at or utc_now())
        written = 0
        try:
            for run in runs:
                existing = self.session.get(WorkflowRunModel, run.id)
                if existing:
                    existing.repo = repo
                    existing.apply(run)
                    existing.synced_at = synced
                else:
                    model = WorkflowRunModel.from_domain(repo, run)
                    model.synced_at = synced
                    self.session.add(model)
                written += 1

            self.session.flush()
            logger.debug(f"Upserted {written} runs for {repo}")
            return written

        except IntegrityError as e:
            logger.error(f"Integrity error upserting runs for {repo}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert runs due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting runs for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert runs: {e}") from e

    def get_runs(
        self,
        repo: str,
        limit: Optional[int] = None,
        offset: int = 0,
        conclusion: Optional[str] = None,
    ) -> List[RunRecord]:
        """Query runs for a repository, newest first.

        Args:
            repo: Repository key
            limit: Maximum number of runs (None for all)
            offset: Number of runs to skip
            conclusion: Only return runs with this conclusion

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = select(WorkflowRunModel).where(WorkflowRunModel.repo == repo)
            if conclusion:
                stmt = stmt.where(WorkflowRunModel.conclusion == conclusion)
            stmt = stmt.order_by(WorkflowRunModel.created_at.desc(), WorkflowRunModel.id.desc())
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)

            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving runs for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve runs: {e}") from e

    def count(self, repo: str) -> int:
        """Number of stored runs for a repository."""
        try:
            stmt = select(func.count()).select_from(WorkflowRunModel).where(
                WorkflowRunModel.repo == repo
            )
            return self.session.execute(stmt).scalar_one()

        except SQLAlchemyError as e:
            logger.error(f"Error counting runs for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count runs: {e}") from e

    def failure_counts(self, repo: str, since: datetime) -> Tuple[int, int]:
        """Count completed runs and failures created at or after ``since``.

        Returns:
            Tuple of (total, failures)

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = select(
                func.count(),
                func.coalesce(
                    func.sum(case((WorkflowRunModel.conclusion == "failure", 1), else_=0)), 0
                ),
            ).where(
                WorkflowRunModel.repo == repo,
                WorkflowRunModel.status == RunStatus.COMPLETED.value,
                WorkflowRunModel.created_at >= to_storage(since),
            )
            total, failures = self.session.execute(stmt).one()
            return int(total), int(failures)

        except SQLAlchemyError as e:
            logger.error(f"Error counting failures for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count failures: {e}") from e

    def duration_values(self, repo: str, since: datetime) -> List[int]:
        """Positive durations (ms) of runs created at or after ``since``, ascending."""
        return self._positive_values(WorkflowRunModel.duration_ms, repo, since)

    def queue_wait_values(self, repo: str, since: datetime) -> List[int]:
        """Positive queue waits (ms) of runs created at or after ``since``, ascending."""
        return self._positive_values(WorkflowRunModel.queue_wait_ms, repo, since)

    def _positive_values(self, column, repo: str, since: datetime) -> List[int]:
        try:
            stmt = (
                select(column)
                .where(
                    WorkflowRunModel.repo == repo,
                    column > 0,
                    WorkflowRunModel.created_at >= to_storage(since),
                )
                .order_by(column.asc())
            )
            return list(self.session.execute(stmt).scalars().all())

        except SQLAlchemyError as e:
            logger.error(f"Error selecting {column.key} for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to select {column.key}: {e}") from e

    def recent_conclusions(self, repo: str, limit: int) -> List[Optional[str]]:
        """Conclusions of the most recent completed runs, newest first."""
        try:
            stmt = (
                select(WorkflowRunModel.conclusion)
                .where(
                    WorkflowRunModel.repo == repo,
                    WorkflowRunModel.status == RunStatus.COMPLETED.value,
                )
                .order_by(WorkflowRunModel.created_at.desc(), WorkflowRunModel.id.desc())
                .limit(limit)
            )
            return list(self.session.execute(stmt).scalars().all())

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving conclusions for {repo}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve conclusions: {e}") from e


class AlertRuleRepository:
    """Repository for user-authored alert rules."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, rule: AlertRule) -> AlertRule:
        """Insert a new rule and return it with its assigned id.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = AlertRuleModel.from_domain(rule)
            model.id = None
            if model.created_at is None:
                model.created_at = to_storage(utc_now())
            self.session.add(model)
            self.session.flush()
            logger.info(f"Created alert rule {model.id} ({model.metric} on {model.scope})")
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error creating alert rule: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to create alert rule: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating alert rule: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create alert rule: {e}") from e

    def get_by_id(self, rule_id: int) -> Optional[AlertRule]:
        try:
            model = self.session.get(AlertRuleModel, rule_id)
            return model.to_domain() if model else None

        except SQLAlchemyError as e:
            logger.error(f"Error retrieving alert rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve alert rule: {e}") from e

    def list_for_scope(self, scope: str) -> List[AlertRule]:
        """All rules of a scope, enabled or not, ordered by id."""
        return self._list(
            select(AlertRuleModel).where(AlertRuleModel.scope == scope).order_by(AlertRuleModel.id)
        )

    def list_all(self) -> List[AlertRule]:
        """All rules ordered by scope, then id."""
        return self._list(select(AlertRuleModel).order_by(AlertRuleModel.scope, AlertRuleModel.id))

    def list_enabled_for_scope(self, scope: str) -> List[AlertRule]:
        return self._list(
            select(AlertRuleModel)
            .where(AlertRuleModel.scope == scope, AlertRuleModel.enabled.is_(True))
            .order_by(AlertRuleModel.id)
        )

    def _list(self, stmt) -> List[AlertRule]:
        try:
            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]

        except SQLAlchemyError as e:
            logger.error(f"Error listing alert rules: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list alert rules: {e}") from e

    def set_enabled(self, rule_id: int, enabled: bool) -> AlertRule:
        """Enable or disable a rule.

        Raises:
            RecordNotFoundError: If the rule doesn't exist
            PersistenceError: If database error occurs
        """
        try:
            result = self.session.execute(
                update(AlertRuleModel).where(AlertRuleModel.id == rule_id).values(enabled=enabled)
            )
            self.session.flush()
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Alert rule {rule_id} not found")

            model = self.session.get(AlertRuleModel, rule_id, populate_existing=True)
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating alert rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update alert rule: {e}") from e

    def delete(self, rule_id: int) -> bool:
        """Delete a rule; its events survive with rule_id set to NULL.

        Returns:
            True if a rule was deleted
        """
        try:
            result = self.session.execute(delete(AlertRuleModel).where(AlertRuleModel.id == rule_id))
            self.session.flush()
            deleted = result.rowcount > 0
            if deleted:
                logger.info(f"Deleted alert rule {rule_id}")
            return deleted

        except SQLAlchemyError as e:
            logger.error(f"Error deleting alert rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete alert rule: {e}") from e


class AlertEventRepository:
    """Repository for append-only alert events."""

    def __init__(self, session: Session):
        self.session = session

    def has_recent_event(self, rule_id: int, since: datetime) -> bool:
        """Check whether the rule fired at or after ``since``.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            stmt = (
                select(AlertEventModel.id)
                .where(
                    AlertEventModel.rule_id == rule_id,
                    AlertEventModel.fired_at >= to_storage(since),
                )
                .limit(1)
            )
            return self.session.execute(stmt).first() is not None

        except SQLAlchemyError as e:
            logger.error(f"Error checking recent events for rule {rule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check recent alert events: {e}") from e

    def insert(self, alert_event: AlertEvent) -> AlertEvent:
        """Append an event and return it with its assigned id.

        Raises:
            DataIntegrityError: If rule_id references a missing rule
            PersistenceError: If database error occurs
        """
        try:
            model = AlertEventModel.from_domain(alert_event)
            model.id = None
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(
                f"Integrity error recording event for rule {alert_event.rule_id}: {e}",
                exc_info=True,
            )
            raise DataIntegrityError(f"Failed to record alert event: {e}") from e
        except SQLAlchemyError as e:
            logger.error(
                f"Error recording event for rule {alert_event.rule_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to record alert event: {e}") from e

    def list_for_scope(self, scope: str, limit: int = 50) -> List[AlertEvent]:
        """Events of a scope, most recent first."""
        return self._list(
            select(AlertEventModel)
            .where(AlertEventModel.scope == scope)
            .order_by(AlertEventModel.fired_at.desc(), AlertEventModel.id.desc())
            .limit(limit)
        )

    def list_recent(self, limit: int = 100) -> List[AlertEvent]:
        """Most recent events across all scopes."""
        return self._list(
            select(AlertEventModel)
            .order_by(AlertEventModel.fired_at.desc(), AlertEventModel.id.desc())
            .limit(limit)
        )

    def _list(self, stmt) -> List[AlertEvent]:
        try:
            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]

        except SQLAlchemyError as e:
            logger.error(f"Error listing alert events: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list alert events: {e}") from e
