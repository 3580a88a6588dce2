"""Core domain models for CI runs and alerting.

This module defines the data structures shared by every component:
- RunRecord: one CI execution as supplied by the provider client
- CommitInfo: optional head-commit metadata attached to a run
- AlertRule: user-authored threshold rule, persisted
- AlertEvent: engine-authored record of a rule firing, persisted and append-only
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ci_insights.utils.timestamps import elapsed_ms, ensure_utc


class RunStatus(str, Enum):
    """Lifecycle status reported by the CI provider."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    WAITING = "waiting"
    REQUESTED = "requested"
    PENDING = "pending"


class RunConclusion(str, Enum):
    """Final outcome of a completed run."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    NEUTRAL = "neutral"
    ACTION_REQUIRED = "action_required"
    STALE = "stale"


class AlertMetric(str, Enum):
    """Metrics an alert rule can watch."""

    FAILURE_RATE = "failure_rate"
    DURATION_P95 = "duration_p95"
    QUEUE_WAIT_P95 = "queue_wait_p95"
    SUCCESS_STREAK = "success_streak"


class AlertChannel(str, Enum):
    """Notification channels a rule can target."""

    BROWSER = "browser"
    SLACK = "slack"
    EMAIL = "email"


class CommitInfo(BaseModel):
    """Head-commit metadata for a run."""

    message: Optional[str] = Field(None, description="Commit message")
    author_name: Optional[str] = Field(None, description="Commit author name")
    author_email: Optional[str] = Field(None, description="Commit author email")

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def flatten_author(cls, data: Any) -> Any:
        """Accept the provider shape {"author": {"name": ..., "email": ...}}."""
        if isinstance(data, dict) and isinstance(data.get("author"), dict):
            author = data["author"]
            data = {k: v for k, v in data.items() if k != "author"}
            data.setdefault("author_name", author.get("name"))
            data.setdefault("author_email", author.get("email"))
        return data

    @property
    def has_author(self) -> bool:
        return bool(self.author_name or self.author_email)


class RunRecord(BaseModel):
    """One CI execution (immutable).

    ``duration_ms`` and ``queue_wait_ms`` are derived from the timestamps and are
    ``None`` when the underlying data is missing; absence is never reported as 0.
    """

    id: int = Field(..., description="Provider run identifier")
    run_number: Optional[int] = Field(None, description="Per-workflow run counter")
    name: Optional[str] = Field(None, description="Workflow name")
    status: Optional[str] = Field(None, description="queued, in_progress, completed, ...")
    conclusion: Optional[str] = Field(
        None, description="success, failure, cancelled, skipped, timed_out or None"
    )
    created_at: datetime = Field(..., description="When the run was triggered (UTC)")
    run_started_at: Optional[datetime] = Field(None, description="When execution began (UTC)")
    completed_at: Optional[datetime] = Field(None, description="When the run finished (UTC)")
    head_branch: Optional[str] = Field(None, description="Branch the run executed on")
    run_attempt: int = Field(1, ge=1, description="Attempt number, 1 for the first try")
    actor: Optional[str] = Field(None, description="Login of the triggering actor")
    head_commit: Optional[CommitInfo] = Field(None, description="Head commit metadata")

    @field_validator("created_at", "run_started_at", "completed_at")
    @classmethod
    def normalise_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED.value

    @property
    def duration_ms(self) -> Optional[int]:
        """Execution time in ms; None unless completed with both timestamps."""
        if not self.is_completed or self.run_started_at is None or self.completed_at is None:
            return None
        return elapsed_ms(self.run_started_at, self.completed_at)

    @property
    def queue_wait_ms(self) -> Optional[int]:
        """Time between trigger and start in ms; None if the run never started."""
        if self.run_started_at is None:
            return None
        return elapsed_ms(self.created_at, self.run_started_at)

    model_config = {"frozen": True, "json_schema_extra": {"example": {
        "id": 9876543210,
        "run_number": 412,
        "name": "CI",
        "status": "completed",
        "conclusion": "success",
        "created_at": "2025-11-04T10:00:00Z",
        "run_started_at": "2025-11-04T10:00:40Z",
        "completed_at": "2025-11-04T10:07:10Z",
        "head_branch": "main",
        "run_attempt": 1,
        "actor": "octocat",
        "head_commit": {"message": "Fix flaky test", "author_name": "Mona"},
    }}}


class AlertRule(BaseModel):
    """User-authored threshold rule.

    The scope is either ``repo:owner/name`` or ``org:name``.
    """

    id: Optional[int] = Field(None, description="Primary key (None before insert)")
    scope: str = Field(..., description="repo:owner/name or org:name")
    metric: AlertMetric = Field(..., description="Watched metric")
    threshold: float = Field(..., description="Fire when value >= threshold")
    window_hours: int = Field(24, ge=1, description="Evaluation and dedup window in hours")
    channel: AlertChannel = Field(AlertChannel.BROWSER, description="Notification channel")
    destination: Optional[str] = Field(None, description="Channel-specific destination")
    enabled: bool = Field(True, description="Disabled rules are never evaluated")
    created_at: Optional[datetime] = Field(None, description="Creation time (UTC)")

    model_config = {"use_enum_values": True}

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """Scope must carry a repo: or org: prefix and a non-empty key."""
        stripped = v.strip()
        prefix, _, key = stripped.partition(":")
        if prefix not in ("repo", "org") or not key:
            raise ValueError(f"scope must look like 'repo:owner/name' or 'org:name', got: {v}")
        return stripped

    @field_validator("created_at")
    @classmethod
    def normalise_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)


class AlertEvent(BaseModel):
    """Record of a rule firing.

    ``rule_id`` becomes None when the rule is deleted after the event fired.
    """

    id: Optional[int] = Field(None, description="Primary key (None before insert)")
    rule_id: Optional[int] = Field(None, description="Rule that fired")
    scope: str = Field(..., description="Scope of the firing rule")
    metric: str = Field(..., description="Metric of the firing rule")
    value: Optional[float] = Field(None, description="Observed metric value")
    fired_at: datetime = Field(..., description="When the event was recorded (UTC)")
    details: Dict[str, Any] = Field(default_factory=dict, description="Context blob")

    @field_validator("fired_at")
    @classmethod
    def normalise_timestamps(cls, v: datetime) -> datetime:
        """Ensure datetime is timezone-aware and in UTC."""
        return ensure_utc(v)
