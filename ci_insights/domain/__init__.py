"""Domain models for CI runs and alert rules/events."""

from .models import (
    AlertChannel,
    AlertEvent,
    AlertMetric,
    AlertRule,
    CommitInfo,
    RunConclusion,
    RunRecord,
    RunStatus,
)

__all__ = [
    "RunRecord",
    "CommitInfo",
    "RunStatus",
    "RunConclusion",
    "AlertRule",
    "AlertEvent",
    "AlertMetric",
    "AlertChannel",
]
