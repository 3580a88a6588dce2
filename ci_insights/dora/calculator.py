"""DORA four-keys calculation from a batch of CI runs.

Only completed runs count. The caller chooses which workflow's runs to pass in,
so the same calculator serves deploy workflows and ordinary CI alike.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ci_insights.domain.models import RunConclusion, RunRecord
from ci_insights.logging import get_logger
from ci_insights.utils.stats import (
    MS_PER_DAY,
    MS_PER_HOUR,
    MS_PER_MINUTE,
    mean,
    percentile,
    round_half_up,
)
from ci_insights.utils.timestamps import elapsed_ms

from .models import (
    ChangeFailureRate,
    DeploymentFrequency,
    DoraLevel,
    DoraMetrics,
    LeadTime,
    MeanTimeToRecovery,
)

logger = get_logger(__name__, component="dora")

UNKNOWN_BRANCH = "unknown"

LEVEL_LABELS: Dict[DoraLevel, str] = {
    DoraLevel.ELITE: "Elite",
    DoraLevel.HIGH: "High",
    DoraLevel.MEDIUM: "Medium",
    DoraLevel.LOW: "Low",
}

BENCHMARKS: Dict[str, Dict[DoraLevel, str]] = {
    "deployment_frequency": {
        DoraLevel.ELITE: "Multiple deploys per day",
        DoraLevel.HIGH: "Between once per day and once per week",
        DoraLevel.MEDIUM: "Between once per week and once per month",
        DoraLevel.LOW: "Less than once per month",
    },
    "lead_time": {
        DoraLevel.ELITE: "Less than one hour",
        DoraLevel.HIGH: "Between one day and one week",
        DoraLevel.MEDIUM: "Between one week and one month",
        DoraLevel.LOW: "More than one month",
    },
    "change_failure_rate": {
        DoraLevel.ELITE: "0-5%",
        DoraLevel.HIGH: "0-15%",
        DoraLevel.MEDIUM: "16-30%",
        DoraLevel.LOW: "More than 30%",
    },
    "mttr": {
        DoraLevel.ELITE: "Less than one hour",
        DoraLevel.HIGH: "Less than one day",
        DoraLevel.MEDIUM: "Less than one week",
        DoraLevel.LOW: "More than one week",
    },
}


def deploy_frequency_level(per_day: float) -> DoraLevel:
    if per_day >= 1:
        return DoraLevel.ELITE
    if per_day >= 1 / 7:
        return DoraLevel.HIGH
    if per_day >= 1 / 30:
        return DoraLevel.MEDIUM
    return DoraLevel.LOW


def deploy_frequency_label(per_day: float) -> str:
    if per_day >= 1:
        return f"{per_day:.1f}/day"
    if per_day >= 1 / 7:
        return f"{per_day * 7:.1f}/week"
    return f"{per_day * 30:.1f}/month"


def duration_level(ms: float) -> DoraLevel:
    """Tier for a latency (lead time or recovery time)."""
    hours = ms / MS_PER_HOUR
    if hours < 1:
        return DoraLevel.ELITE
    if hours < 24:
        return DoraLevel.HIGH
    if hours < 24 * 7:
        return DoraLevel.MEDIUM
    return DoraLevel.LOW


def duration_label(ms: float) -> str:
    """'N min' below an hour, 'x.x hours' below a day, 'x.x days' beyond."""
    hours = ms / MS_PER_HOUR
    if hours < 1:
        return f"{round_half_up(ms / MS_PER_MINUTE)} min"
    if hours < 24:
        return f"{hours:.1f} hours"
    return f"{hours / 24:.1f} days"


def change_failure_level(rate: float) -> DoraLevel:
    if rate <= 5:
        return DoraLevel.ELITE
    if rate <= 15:
        return DoraLevel.HIGH
    if rate <= 30:
        return DoraLevel.MEDIUM
    return DoraLevel.LOW


def mttr_level(mean_ms: Optional[int]) -> DoraLevel:
    # No recoveries means nothing broke long enough to measure
    if mean_ms is None:
        return DoraLevel.HIGH
    return duration_level(mean_ms)


def mttr_label(mean_ms: Optional[int]) -> str:
    if mean_ms is None:
        return "No failures"
    return duration_label(mean_ms)


def calculate_dora_metrics(runs: Sequence[RunRecord]) -> DoraMetrics:
    """Compute the four DORA keys for a batch of runs.

    Args:
        runs: Runs in any order; only completed runs are considered

    Returns:
        DoraMetrics; an empty or all-incomplete batch yields zero values
        rather than raising

    Example:
        >>> metrics = calculate_dora_metrics(runs)
        >>> metrics.change_failure_rate.label
        '12.5%'
    """
    completed = [run for run in runs if run.is_completed]
    chronological = sorted(completed, key=lambda run: run.created_at)

    deployment_frequency = _deployment_frequency(chronological)
    lead_time = _lead_time(completed)
    change_failure_rate = _change_failure_rate(completed)
    mttr = _mttr(chronological)

    overall = DoraLevel.worst(
        deployment_frequency.level,
        lead_time.level,
        change_failure_rate.level,
        mttr.level,
    )

    logger.debug(
        "Calculated DORA metrics",
        extra={
            "event": "dora.calculated",
            "runs": len(runs),
            "completed": len(completed),
            "overall_level": overall.value,
        },
    )

    return DoraMetrics(
        deployment_frequency=deployment_frequency,
        lead_time=lead_time,
        change_failure_rate=change_failure_rate,
        mttr=mttr,
        overall_level=overall,
    )


def _deployment_frequency(chronological: List[RunRecord]) -> DeploymentFrequency:
    period_days = 1.0
    if len(chronological) >= 2:
        span_ms = elapsed_ms(chronological[0].created_at, chronological[-1].created_at)
        period_days = max(1.0, span_ms / MS_PER_DAY)

    per_day = len(chronological) / period_days
    return DeploymentFrequency(
        per_day=round_half_up(per_day, 2),
        total=len(chronological),
        period_days=round_half_up(period_days),
        level=deploy_frequency_level(per_day),
        label=deploy_frequency_label(per_day),
    )


def _lead_time(completed: List[RunRecord]) -> LeadTime:
    lead_times = []
    for run in completed:
        if run.head_commit is None or not run.head_commit.has_author:
            continue
        # Trigger -> completion: queue wait plus execution
        lead = (run.queue_wait_ms or 0) + (run.duration_ms or 0)
        if lead > 0:
            lead_times.append(lead)

    lead_times.sort()
    median = percentile(lead_times, 0.5)
    return LeadTime(
        median_ms=median,
        p95_ms=percentile(lead_times, 0.95),
        sample_size=len(lead_times),
        level=duration_level(median),
        label=duration_label(median),
    )


def _change_failure_rate(completed: List[RunRecord]) -> ChangeFailureRate:
    failures = sum(1 for run in completed if run.conclusion == RunConclusion.FAILURE.value)
    rate = failures / len(completed) * 100 if completed else 0.0
    return ChangeFailureRate(
        rate=round_half_up(rate, 1),
        failures=failures,
        total=len(completed),
        level=change_failure_level(rate),
        label=f"{rate:.1f}%",
    )


def _mttr(chronological: List[RunRecord]) -> MeanTimeToRecovery:
    by_branch: Dict[str, List[RunRecord]] = defaultdict(list)
    for run in chronological:
        by_branch[run.head_branch or UNKNOWN_BRANCH].append(run)

    recovery_times = []
    for branch_runs in by_branch.values():
        failed_at: Optional[datetime] = None
        for run in branch_runs:
            if run.conclusion == RunConclusion.FAILURE.value and failed_at is None:
                failed_at = run.created_at
            elif run.conclusion == RunConclusion.SUCCESS.value and failed_at is not None:
                recovery_times.append(elapsed_ms(failed_at, run.created_at))
                failed_at = None

    mean_ms = round_half_up(mean(recovery_times)) if recovery_times else None
    return MeanTimeToRecovery(
        mean_ms=mean_ms,
        recoveries=len(recovery_times),
        level=mttr_level(mean_ms),
        label=mttr_label(mean_ms),
    )
