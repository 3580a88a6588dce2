"""Unit tests for the optimization rule engine."""

from datetime import timedelta

import pytest

from ci_insights.optimization import (
    OptimizationEngine,
    OptimizationRule,
    OptimizationTip,
    RuleRegistry,
    TipCategory,
    TipSeverity,
    analyze_workflow,
    default_registry,
    leading_failures,
)

from tests.helpers import BASE_TIME, make_run, make_runs, newest_first


def evaluate(rule_id, runs):
    """Run one built-in rule over newest-first runs."""
    completed = [run for run in runs if run.is_completed]
    return default_registry.get(rule_id).evaluate(runs, completed)


def with_conclusions(conclusions):
    """Newest-first runs whose conclusions appear in the given order."""
    count = len(conclusions)
    runs = [
        make_run(count - i, conclusion=conclusion)
        for i, conclusion in enumerate(conclusions)
    ]
    return newest_first(runs)


class TestRegistry:
    """Tests for RuleRegistry."""

    def test_default_rules_in_order(self):
        assert default_registry.rule_ids == [
            "high-queue-wait",
            "queue-sla-breach",
            "low-success-rate",
            "high-rerun-rate",
            "duration-increasing",
            "high-cancel-rate",
            "long-duration",
            "weekend-runs",
            "failure-streak",
            "timed-out-runs",
        ]

    def test_register_as_decorator_returns_class(self):
        registry = RuleRegistry()

        @registry.register
        class QuietRule(OptimizationRule):
            rule_id = "quiet"

            def evaluate(self, runs, completed):
                return None

        assert QuietRule.rule_id == "quiet"
        assert "quiet" in registry
        assert len(registry) == 1

    def test_duplicate_id_rejected(self):
        registry = default_registry.copy()

        with pytest.raises(ValueError, match="already registered"):
            registry.register(default_registry.get("failure-streak"))

    def test_missing_id_rejected(self):
        class NamelessRule(OptimizationRule):
            def evaluate(self, runs, completed):
                return None

        with pytest.raises(ValueError, match="no rule_id"):
            RuleRegistry().register(NamelessRule)

    def test_copy_is_independent(self):
        registry = default_registry.copy()
        registry.unregister("weekend-runs")

        assert "weekend-runs" not in registry
        assert "weekend-runs" in default_registry
        assert len(registry) == len(default_registry) - 1

    def test_unregister_unknown_raises(self):
        with pytest.raises(KeyError):
            RuleRegistry().unregister("missing")


class FixedRule(OptimizationRule):
    def __init__(self, rule_id, severity):
        self.rule_id = rule_id
        self.severity = severity

    def evaluate(self, runs, completed):
        return OptimizationTip(
            id=self.rule_id,
            title=self.rule_id,
            description="",
            severity=self.severity,
            category=TipCategory.COST,
        )


class TestEngine:
    """Tests for OptimizationEngine."""

    def test_empty_batch_gives_no_tips(self):
        assert analyze_workflow([]) == []

    def test_healthy_batch_gives_no_tips(self):
        runs = newest_first(make_runs(30))

        assert analyze_workflow(runs) == []

    def test_batch_of_only_four_failures(self):
        tips = analyze_workflow(with_conclusions(["failure"] * 4))

        assert [tip.id for tip in tips] == ["failure-streak"]
        assert tips[0].severity == TipSeverity.WARNING
        assert tips[0].title == "4 consecutive failures"

    def test_sorted_by_severity_with_stable_ties(self):
        registry = RuleRegistry([
            FixedRule("a-info", TipSeverity.INFO),
            FixedRule("b-warning", TipSeverity.WARNING),
            FixedRule("c-critical", TipSeverity.CRITICAL),
            FixedRule("d-warning", TipSeverity.WARNING),
            FixedRule("e-critical", TipSeverity.CRITICAL),
        ])

        tips = OptimizationEngine(registry).analyze([make_run(1)])

        assert [tip.id for tip in tips] == [
            "c-critical",
            "e-critical",
            "b-warning",
            "d-warning",
            "a-info",
        ]

    def test_rules_receive_completed_subset(self):
        seen = {}

        class RecordingRule(OptimizationRule):
            rule_id = "recording"

            def evaluate(self, runs, completed):
                seen["runs"] = [r.id for r in runs]
                seen["completed"] = [r.id for r in completed]
                return None

        runs = newest_first([make_run(1), make_run(2, status="in_progress", duration_ms=None)])
        OptimizationEngine(RuleRegistry([RecordingRule()])).analyze(runs)

        assert seen == {"runs": [2, 1], "completed": [1]}

    def test_rule_errors_propagate(self):
        class BrokenRule(OptimizationRule):
            rule_id = "broken"

            def evaluate(self, runs, completed):
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            OptimizationEngine(RuleRegistry([BrokenRule()])).analyze([make_run(1)])

    def test_tip_to_dict_omits_missing_impact(self):
        tip = OptimizationTip(
            id="x", title="t", description="d", severity=TipSeverity.INFO, category=TipCategory.COST
        )

        assert "impact" not in tip.to_dict()
        assert tip.to_dict()["severity"] == "info"


class TestQueueRules:
    def test_high_queue_wait_warning(self):
        runs = newest_first(make_runs(5, queue_wait_ms=150_000))

        tip = evaluate("high-queue-wait", runs)

        assert tip.severity == TipSeverity.WARNING
        assert tip.category == TipCategory.PERFORMANCE
        assert tip.impact == "~2.5m wasted per run"

    def test_high_queue_wait_critical(self):
        runs = newest_first(make_runs(5, queue_wait_ms=400_000))

        assert evaluate("high-queue-wait", runs).severity == TipSeverity.CRITICAL

    def test_high_queue_wait_needs_five_samples(self):
        runs = newest_first(make_runs(4, queue_wait_ms=400_000))

        assert evaluate("high-queue-wait", runs) is None

    def test_short_queue_wait_is_quiet(self):
        runs = newest_first(make_runs(10, queue_wait_ms=100_000))

        assert evaluate("high-queue-wait", runs) is None

    def test_queue_sla_breach(self):
        runs = [make_run(i, queue_wait_ms=60_000) for i in range(1, 10)]
        runs.append(make_run(10, queue_wait_ms=1_000_000))

        tip = evaluate("queue-sla-breach", newest_first(runs))

        assert tip.severity == TipSeverity.CRITICAL
        assert tip.title == "Queue wait SLA breach (p95 > 5 min)"

    def test_queue_within_sla(self):
        runs = newest_first(make_runs(10, queue_wait_ms=60_000))

        assert evaluate("queue-sla-breach", runs) is None


class TestReliabilityRules:
    def test_low_success_rate_warning(self):
        runs = with_conclusions(["success"] * 7 + ["failure"] * 3)

        tip = evaluate("low-success-rate", runs)

        assert tip.title == "Low success rate (70%)"
        assert tip.severity == TipSeverity.WARNING
        assert tip.category == TipCategory.RELIABILITY

    def test_low_success_rate_critical(self):
        runs = with_conclusions(["success"] * 4 + ["failure"] * 6)

        assert evaluate("low-success-rate", runs).severity == TipSeverity.CRITICAL

    def test_success_rate_at_eighty_percent_is_quiet(self):
        runs = with_conclusions(["success"] * 8 + ["failure"] * 2)

        assert evaluate("low-success-rate", runs) is None

    def test_success_rate_needs_ten_completed(self):
        runs = with_conclusions(["failure"] * 9)

        assert evaluate("low-success-rate", runs) is None

    def test_high_rerun_rate_warning_at_ten_percent(self):
        runs = [make_run(i) for i in range(1, 10)] + [make_run(10, run_attempt=2)]

        tip = evaluate("high-rerun-rate", newest_first(runs))

        assert tip.severity == TipSeverity.WARNING
        assert tip.title == "High re-run rate (10%)"
        assert tip.impact == "~1 unnecessary re-runs"

    def test_high_rerun_rate_critical(self):
        runs = [make_run(i, run_attempt=2 if i <= 3 else 1) for i in range(1, 11)]

        assert evaluate("high-rerun-rate", newest_first(runs)).severity == TipSeverity.CRITICAL

    def test_no_reruns(self):
        assert evaluate("high-rerun-rate", newest_first(make_runs(10))) is None

    @pytest.mark.parametrize(
        "leading,severity",
        [(3, TipSeverity.WARNING), (4, TipSeverity.WARNING), (5, TipSeverity.CRITICAL)],
    )
    def test_failure_streak(self, leading, severity):
        runs = with_conclusions(["failure"] * leading + ["success"] * 5)

        tip = evaluate("failure-streak", runs)

        assert tip.title == f"{leading} consecutive failures"
        assert tip.severity == severity

    def test_short_failure_streak_is_quiet(self):
        runs = with_conclusions(["failure"] * 2 + ["success"] + ["failure"] * 5)

        assert evaluate("failure-streak", runs) is None

    def test_leading_failures_skips_unfinished_runs(self):
        runs = [
            make_run(10, status="in_progress", duration_ms=None),
            make_run(9, conclusion="failure"),
            make_run(8, status="queued", queue_wait_ms=None),
            make_run(7, conclusion="failure"),
            make_run(6, conclusion="success"),
            make_run(5, conclusion="failure"),
        ]

        assert leading_failures(newest_first(runs)) == 2

    def test_timed_out_critical_above_ten_percent(self):
        runs = with_conclusions(["timed_out"] * 2 + ["success"] * 8)

        tip = evaluate("timed-out-runs", runs)

        assert tip.severity == TipSeverity.CRITICAL
        assert tip.title == "2 timed-out runs (20%)"

    def test_timed_out_warning_at_ten_percent(self):
        runs = with_conclusions(["timed_out"] * 2 + ["success"] * 18)

        assert evaluate("timed-out-runs", runs).severity == TipSeverity.WARNING

    def test_single_timeout_is_quiet(self):
        runs = with_conclusions(["timed_out"] + ["success"] * 9)

        assert evaluate("timed-out-runs", runs) is None


class TestPerformanceRules:
    def test_duration_increasing_warning_at_twenty_percent(self):
        older = [make_run(i, duration_ms=300_000) for i in range(1, 6)]
        recent = [make_run(i, duration_ms=360_000) for i in range(6, 11)]

        tip = evaluate("duration-increasing", newest_first(older + recent))

        assert tip.severity == TipSeverity.WARNING
        assert tip.title == "Duration increasing (+20%)"
        assert tip.impact == "+1m per run"

    def test_duration_increasing_critical(self):
        older = [make_run(i, duration_ms=300_000) for i in range(1, 6)]
        recent = [make_run(i, duration_ms=500_000) for i in range(6, 11)]

        tip = evaluate("duration-increasing", newest_first(older + recent))

        assert tip.severity == TipSeverity.CRITICAL

    def test_duration_increase_only_looks_at_recent_fifty(self):
        ancient = [make_run(i, duration_ms=100_000) for i in range(1, 11)]
        recent = [make_run(i, duration_ms=300_000) for i in range(11, 61)]

        assert evaluate("duration-increasing", newest_first(ancient + recent)) is None

    def test_duration_increase_needs_ten_samples(self):
        older = [make_run(i, duration_ms=100_000) for i in range(1, 5)]
        recent = [make_run(i, duration_ms=900_000) for i in range(5, 10)]

        assert evaluate("duration-increasing", newest_first(older + recent)) is None

    def test_long_duration_info(self):
        runs = newest_first(make_runs(5, duration_ms=900_000))

        tip = evaluate("long-duration", runs)

        assert tip.severity == TipSeverity.INFO
        assert tip.title == "Long average duration (15m)"
        assert tip.impact is None

    def test_long_duration_impact_above_twenty_minutes(self):
        runs = newest_first(make_runs(5, duration_ms=25 * 60_000))

        tip = evaluate("long-duration", runs)

        assert tip.severity == TipSeverity.INFO
        assert tip.impact == "Significant CI queue time"

    def test_long_duration_warning_above_thirty_minutes(self):
        runs = newest_first(make_runs(5, duration_ms=35 * 60_000))

        assert evaluate("long-duration", runs).severity == TipSeverity.WARNING

    def test_short_duration_is_quiet(self):
        assert evaluate("long-duration", newest_first(make_runs(5))) is None


class TestCostRules:
    def test_high_cancel_rate(self):
        runs = with_conclusions(["cancelled"] * 2 + ["success"] * 8)

        tip = evaluate("high-cancel-rate", runs)

        assert tip.severity == TipSeverity.INFO
        assert tip.category == TipCategory.COST
        assert tip.title == "High cancellation rate (20%)"

    def test_low_cancel_rate_is_quiet(self):
        runs = with_conclusions(["cancelled"] + ["success"] * 9)

        assert evaluate("high-cancel-rate", runs) is None

    def _week(self, weekend_count, total=20):
        saturday = BASE_TIME + timedelta(days=5)
        runs = [
            make_run(i, created_at=saturday + timedelta(minutes=i))
            for i in range(1, weekend_count + 1)
        ]
        runs += [
            make_run(i, created_at=BASE_TIME + timedelta(minutes=i))
            for i in range(weekend_count + 1, total + 1)
        ]
        return newest_first(runs)

    def test_weekend_runs(self):
        tip = evaluate("weekend-runs", self._week(4))

        assert tip.title == "20% of runs on weekends"
        assert tip.impact == "4 weekend runs"
        assert tip.category == TipCategory.COST

    def test_few_weekend_runs_is_quiet(self):
        assert evaluate("weekend-runs", self._week(3)) is None

    def test_weekend_runs_needs_twenty_runs(self):
        assert evaluate("weekend-runs", self._week(10, total=19)) is None
