"""The built-in optimization rules.

Each rule has a minimum sample size below which it stays silent. Runs arrive
newest first.
"""

from typing import Optional, Sequence

from ci_insights.domain.models import RunConclusion, RunRecord, RunStatus
from ci_insights.utils.stats import format_minutes, mean, percentile, positive_values, round_half_up

from .base import OptimizationRule, RuleRegistry
from .models import OptimizationTip, TipCategory, TipSeverity

default_registry = RuleRegistry()

TWO_MINUTES_MS = 120_000
FIVE_MINUTES_MS = 300_000
TEN_MINUTES_MS = 600_000
TWENTY_MINUTES_MS = 1_200_000
THIRTY_MINUTES_MS = 1_800_000

SATURDAY = 5
SUNDAY = 6


def _pct(fraction: float) -> int:
    return round_half_up(fraction * 100)


@default_registry.register
class HighQueueWaitRule(OptimizationRule):
    rule_id = "high-queue-wait"

    def evaluate(self, runs, completed):
        waits = positive_values(r.queue_wait_ms for r in runs)
        if len(waits) < 5:
            return None
        avg_wait = mean(waits)
        if avg_wait < TWO_MINUTES_MS:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title="High average queue wait",
            description=(
                f"Runs wait an average of {format_minutes(avg_wait)} for a runner. "
                "Consider adding self-hosted runners or scheduling non-urgent workflows "
                "during off-peak hours."
            ),
            severity=TipSeverity.CRITICAL if avg_wait > FIVE_MINUTES_MS else TipSeverity.WARNING,
            category=TipCategory.PERFORMANCE,
            impact=f"~{format_minutes(avg_wait)} wasted per run",
        )


@default_registry.register
class QueueSlaBreachRule(OptimizationRule):
    rule_id = "queue-sla-breach"

    def evaluate(self, runs, completed):
        waits = sorted(positive_values(r.queue_wait_ms for r in runs))
        if len(waits) < 5:
            return None
        p95 = percentile(waits, 0.95)
        if p95 <= FIVE_MINUTES_MS:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title="Queue wait SLA breach (p95 > 5 min)",
            description=(
                f"The p95 queue wait is {format_minutes(p95)}. 1 in 20 runs waits longer "
                "than this. This directly impacts developer feedback loops."
            ),
            severity=TipSeverity.CRITICAL,
            category=TipCategory.PERFORMANCE,
            impact="Slow CI feedback for 5%+ of runs",
        )


@default_registry.register
class LowSuccessRateRule(OptimizationRule):
    rule_id = "low-success-rate"

    def evaluate(self, runs, completed):
        if len(completed) < 10:
            return None
        successes = sum(1 for r in completed if r.conclusion == RunConclusion.SUCCESS.value)
        success_rate = successes / len(completed)
        if success_rate >= 0.8:
            return None
        pct = _pct(success_rate)
        return OptimizationTip(
            id=self.rule_id,
            title=f"Low success rate ({pct}%)",
            description=(
                f"Only {pct}% of runs succeed. Investigate the most common failure causes "
                "such as flaky tests, dependency issues or environment problems."
            ),
            severity=TipSeverity.CRITICAL if pct < 50 else TipSeverity.WARNING,
            category=TipCategory.RELIABILITY,
        )


@default_registry.register
class HighRerunRateRule(OptimizationRule):
    rule_id = "high-rerun-rate"

    def evaluate(self, runs, completed):
        if len(runs) < 10:
            return None
        rerun_count = sum(1 for r in runs if r.run_attempt > 1)
        rerun_rate = rerun_count / len(runs)
        if rerun_rate < 0.1:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"High re-run rate ({_pct(rerun_rate)}%)",
            description=(
                f"{rerun_count} of {len(runs)} runs were re-triggered (attempt > 1). "
                "This often indicates flaky tests or transient infrastructure issues. "
                "Fix the root causes to save CI minutes."
            ),
            severity=TipSeverity.CRITICAL if rerun_rate > 0.25 else TipSeverity.WARNING,
            category=TipCategory.RELIABILITY,
            impact=f"~{rerun_count} unnecessary re-runs",
        )


@default_registry.register
class DurationIncreasingRule(OptimizationRule):
    """Compare the newer half of the last 50 timed runs against the older half."""

    rule_id = "duration-increasing"
    sample_limit = 50

    def evaluate(self, runs, completed):
        durations = positive_values(r.duration_ms for r in runs)[: self.sample_limit]
        if len(durations) < 10:
            return None
        half = len(durations) // 2
        recent_avg = mean(durations[:half])
        older_avg = mean(durations[half:])
        if older_avg == 0:
            return None
        increase = (recent_avg - older_avg) / older_avg
        if increase < 0.2:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"Duration increasing (+{_pct(increase)}%)",
            description=(
                f"Recent runs average {format_minutes(recent_avg)} vs "
                f"{format_minutes(older_avg)} for older runs, a {_pct(increase)}% increase. "
                "Check for new dependencies, larger test suites or missing caches."
            ),
            severity=TipSeverity.CRITICAL if increase > 0.5 else TipSeverity.WARNING,
            category=TipCategory.PERFORMANCE,
            impact=f"+{format_minutes(recent_avg - older_avg)} per run",
        )


@default_registry.register
class HighCancelRateRule(OptimizationRule):
    rule_id = "high-cancel-rate"

    def evaluate(self, runs, completed):
        if len(completed) < 10:
            return None
        cancelled = sum(1 for r in completed if r.conclusion == RunConclusion.CANCELLED.value)
        rate = cancelled / len(completed)
        if rate < 0.15:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"High cancellation rate ({_pct(rate)}%)",
            description=(
                f"{cancelled} of {len(completed)} runs were cancelled. If these are "
                "superseded pushes, enable concurrency groups with "
                "`cancel-in-progress: true` to save CI minutes."
            ),
            severity=TipSeverity.INFO,
            category=TipCategory.COST,
            impact=f"{cancelled} cancelled runs consuming resources",
        )


@default_registry.register
class LongDurationRule(OptimizationRule):
    rule_id = "long-duration"

    def evaluate(self, runs, completed):
        durations = positive_values(r.duration_ms for r in runs)
        if len(durations) < 5:
            return None
        avg_duration = mean(durations)
        if avg_duration < TEN_MINUTES_MS:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"Long average duration ({format_minutes(avg_duration)})",
            description=(
                f"Runs take {format_minutes(avg_duration)} on average. Consider splitting "
                "into parallel jobs, caching dependencies or using larger runners."
            ),
            severity=(
                TipSeverity.WARNING if avg_duration > THIRTY_MINUTES_MS else TipSeverity.INFO
            ),
            category=TipCategory.PERFORMANCE,
            impact="Significant CI queue time" if avg_duration > TWENTY_MINUTES_MS else None,
        )


@default_registry.register
class WeekendRunsRule(OptimizationRule):
    rule_id = "weekend-runs"

    def evaluate(self, runs, completed):
        if len(runs) < 20:
            return None
        weekend_runs = sum(1 for r in runs if r.created_at.weekday() in (SATURDAY, SUNDAY))
        weekend_rate = weekend_runs / len(runs)
        if weekend_rate < 0.2:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"{_pct(weekend_rate)}% of runs on weekends",
            description=(
                f"{weekend_runs} of {len(runs)} runs triggered on weekends. If these are "
                "scheduled workflows, consider reducing their frequency or moving them to "
                "weekday-only schedules to save CI minutes."
            ),
            severity=TipSeverity.INFO,
            category=TipCategory.COST,
            impact=f"{weekend_runs} weekend runs",
        )


def leading_failures(runs: Sequence[RunRecord]) -> int:
    """Count failures at the head of a newest-first list.

    Runs that have not completed are skipped; the first completed non-failure
    ends the streak.
    """
    streak = 0
    for run in runs:
        if run.conclusion == RunConclusion.FAILURE.value:
            streak += 1
        elif run.status == RunStatus.COMPLETED.value:
            break
    return streak


@default_registry.register
class FailureStreakRule(OptimizationRule):
    rule_id = "failure-streak"

    def evaluate(self, runs, completed):
        streak = leading_failures(runs)
        if streak < 3:
            return None
        return OptimizationTip(
            id=self.rule_id,
            title=f"{streak} consecutive failures",
            description=(
                f"The last {streak} completed runs all failed. This workflow may be broken; "
                "investigate immediately to unblock deployments."
            ),
            severity=TipSeverity.CRITICAL if streak >= 5 else TipSeverity.WARNING,
            category=TipCategory.RELIABILITY,
        )


@default_registry.register
class TimedOutRunsRule(OptimizationRule):
    rule_id = "timed-out-runs"

    def evaluate(self, runs, completed) -> Optional[OptimizationTip]:
        if len(completed) < 5:
            return None
        timed_out = sum(1 for r in completed if r.conclusion == RunConclusion.TIMED_OUT.value)
        if timed_out < 2:
            return None
        rate = timed_out / len(completed)
        return OptimizationTip(
            id=self.rule_id,
            title=f"{timed_out} timed-out runs ({_pct(rate)}%)",
            description=(
                f"{timed_out} runs hit the timeout limit. Review `timeout-minutes` settings: "
                "either raise them or find out why runs hang (stuck processes, network issues)."
            ),
            severity=TipSeverity.CRITICAL if rate > 0.1 else TipSeverity.WARNING,
            category=TipCategory.RELIABILITY,
        )
