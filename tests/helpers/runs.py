"""Factories for RunRecord test data.

Runs are described by their timing in milliseconds rather than timestamps, so
tests can state ``queue_wait_ms=90_000`` and get a run that reports exactly that.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from ci_insights.domain.models import CommitInfo, RunRecord

BASE_TIME = datetime(2025, 11, 3, 9, 0, 0, tzinfo=timezone.utc)  # a Monday

_UNSET = object()


def make_run(
    run_id: int,
    created_at: Optional[datetime] = None,
    status: str = "completed",
    conclusion: Optional[str] = "success",
    queue_wait_ms: Optional[int] = 30_000,
    duration_ms: Optional[int] = 300_000,
    head_branch: Optional[str] = "main",
    run_attempt: int = 1,
    author=_UNSET,
    name: str = "CI",
) -> RunRecord:
    """Build a run.

    ``queue_wait_ms=None`` gives a run that never started, ``duration_ms=None``
    one that has not finished. By default each run gets a commit author;
    pass ``author=None`` to drop the commit metadata.
    """
    created = created_at or BASE_TIME + timedelta(hours=run_id)

    started = None
    completed = None
    if queue_wait_ms is not None:
        started = created + timedelta(milliseconds=queue_wait_ms)
        if duration_ms is not None:
            completed = started + timedelta(milliseconds=duration_ms)

    if author is _UNSET:
        author = "Mona"
    head_commit = CommitInfo(message=f"change {run_id}", author_name=author) if author else None

    return RunRecord(
        id=run_id,
        run_number=run_id,
        name=name,
        status=status,
        conclusion=conclusion if status == "completed" else None,
        created_at=created,
        run_started_at=started,
        completed_at=completed,
        head_branch=head_branch,
        run_attempt=run_attempt,
        actor="octocat",
        head_commit=head_commit,
    )


def make_runs(
    count: int,
    start: datetime = BASE_TIME,
    spacing: timedelta = timedelta(hours=1),
    **kwargs,
) -> List[RunRecord]:
    """``count`` identical runs spaced ``spacing`` apart, oldest first, ids 1..count."""
    return [
        make_run(i + 1, created_at=start + spacing * i, **kwargs)
        for i in range(count)
    ]


def newest_first(runs: Iterable[RunRecord]) -> List[RunRecord]:
    """Order runs the way the provider returns them."""
    return sorted(runs, key=lambda run: (run.created_at, run.id), reverse=True)
