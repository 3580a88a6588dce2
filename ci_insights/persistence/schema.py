"""Database schema definition and ORM models.

Timestamps are stored as fixed-width ISO 8601 strings (see
``ci_insights.utils.timestamps.STORAGE_FORMAT``) so window filters can compare
them lexicographically in SQL.
"""

import logging

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from ci_insights.domain.models import AlertEvent, AlertRule, CommitInfo, RunRecord
from ci_insights.utils.timestamps import from_storage, to_storage

logger = logging.getLogger(__name__)

Base = declarative_base()


class WorkflowRunModel(Base):
    """ORM model for workflow_runs table.

    duration_ms and queue_wait_ms are denormalised from the timestamps at write
    time so alert metrics can be selected without recomputing them.
    """

    __tablename__ = "workflow_runs"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    repo = Column(String(300), nullable=False)
    workflow_name = Column(String(300), nullable=True)
    run_number = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)
    conclusion = Column(String(50), nullable=True)
    head_branch = Column(String(300), nullable=True)
    actor = Column(String(100), nullable=True)
    run_attempt = Column(Integer, nullable=False, default=1)

    commit_message = Column(Text, nullable=True)
    commit_author_name = Column(String(255), nullable=True)
    commit_author_email = Column(String(255), nullable=True)

    created_at = Column(String(50), nullable=False)
    run_started_at = Column(String(50), nullable=True)
    completed_at = Column(String(50), nullable=True)
    synced_at = Column(String(50), nullable=True)

    duration_ms = Column(BigInteger, nullable=True)
    queue_wait_ms = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_wr_repo_created", "repo", "created_at"),
        Index("idx_wr_conclusion", "repo", "conclusion", "created_at"),
    )

    def to_domain(self) -> RunRecord:
        head_commit = None
        if self.commit_message or self.commit_author_name or self.commit_author_email:
            head_commit = CommitInfo(
                message=self.commit_message,
                author_name=self.commit_author_name,
                author_email=self.commit_author_email,
            )

        return RunRecord(
            id=self.id,
            run_number=self.run_number,
            name=self.workflow_name,
            status=self.status,
            conclusion=self.conclusion,
            created_at=from_storage(self.created_at),
            run_started_at=from_storage(self.run_started_at),
            completed_at=from_storage(self.completed_at),
            head_branch=self.head_branch,
            run_attempt=self.run_attempt or 1,
            actor=self.actor,
            head_commit=head_commit,
        )

    @classmethod
    def from_domain(cls, repo: str, run: RunRecord) -> "WorkflowRunModel":
        model = cls(id=run.id, repo=repo)
        model.apply(run)
        return model

    def apply(self, run: RunRecord) -> None:
        """Copy every mutable field of a run onto this row."""
        commit = run.head_commit
        self.workflow_name = run.name
        self.run_number = run.run_number
        self.status = run.status
        self.conclusion = run.conclusion
        self.head_branch = run.head_branch
        self.actor = run.actor
        self.run_attempt = run.run_attempt
        self.commit_message = commit.message if commit else None
        self.commit_author_name = commit.author_name if commit else None
        self.commit_author_email = commit.author_email if commit else None
        self.created_at = to_storage(run.created_at)
        self.run_started_at = to_storage(run.run_started_at)
        self.completed_at = to_storage(run.completed_at)
        self.duration_ms = run.duration_ms
        self.queue_wait_ms = run.queue_wait_ms


class AlertRuleModel(Base):
    """ORM model for alert_rules table."""

    __tablename__ = "alert_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scope = Column(String(300), nullable=False)
    metric = Column(String(50), nullable=False)
    threshold = Column(Float, nullable=False)
    window_hours = Column(Integer, nullable=False, default=24)
    channel = Column(String(50), nullable=False)
    destination = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (Index("idx_ar_scope", "scope"),)

    def to_domain(self) -> AlertRule:
        # Stored rows were validated on create; skip re-validation so a metric
        # unknown to this version still loads and is reported by the evaluator
        return AlertRule.model_construct(
            id=self.id,
            scope=self.scope,
            metric=self.metric,
            threshold=self.threshold,
            window_hours=self.window_hours,
            channel=self.channel,
            destination=self.destination,
            enabled=self.enabled,
            created_at=from_storage(self.created_at),
        )

    @classmethod
    def from_domain(cls, rule: AlertRule) -> "AlertRuleModel":
        return cls(
            id=rule.id,
            scope=rule.scope,
            metric=rule.metric,
            threshold=rule.threshold,
            window_hours=rule.window_hours,
            channel=rule.channel,
            destination=rule.destination,
            enabled=rule.enabled,
            created_at=to_storage(rule.created_at),
        )


class AlertEventModel(Base):
    """ORM model for alert_events table (append-only).

    Deleting a rule keeps its history: rule_id is set to NULL.
    """

    __tablename__ = "alert_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rule_id = Column(
        Integer, ForeignKey("alert_rules.id", ondelete="SET NULL"), nullable=True
    )
    scope = Column(String(300), nullable=False)
    metric = Column(String(50), nullable=False)
    value = Column(Float, nullable=True)
    fired_at = Column(String(50), nullable=False)
    details = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_ae_scope_fired", "scope", "fired_at"),
        Index("idx_ae_rule_fired", "rule_id", "fired_at"),
    )

    def to_domain(self) -> AlertEvent:
        return AlertEvent(
            id=self.id,
            rule_id=self.rule_id,
            scope=self.scope,
            metric=self.metric,
            value=self.value,
            fired_at=from_storage(self.fired_at),
            details=self.details or {},
        )

    @classmethod
    def from_domain(cls, alert_event: AlertEvent) -> "AlertEventModel":
        return cls(
            id=alert_event.id,
            rule_id=alert_event.rule_id,
            scope=alert_event.scope,
            metric=alert_event.metric,
            value=alert_event.value,
            fired_at=to_storage(alert_event.fired_at),
            details=alert_event.details,
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent).

    Args:
        engine: SQLAlchemy engine instance
    """
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
