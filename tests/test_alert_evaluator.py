"""Tests for alert rule evaluation, scope resolution and deduplication."""

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import timedelta

import pytest
from sqlalchemy import text

from ci_insights.alerts import (
    AlertRuleEvaluator,
    AlertStore,
    SqlAlertStore,
    evaluate_alert_rules_for_repo,
    resolve_scopes,
)
from ci_insights.alerts import evaluator as evaluator_module
from ci_insights.domain.models import AlertEvent, AlertRule
from ci_insights.persistence import (
    AlertEventRepository,
    AlertRuleRepository,
    PersistenceError,
    RunRepository,
    get_session,
)
from ci_insights.utils.timestamps import utc_now

from tests.helpers import BASE_TIME, make_run

NOW = BASE_TIME + timedelta(days=1)


def fixed_clock():
    return NOW


def seed_runs(conclusions, repo="acme/api", end=NOW, first_id=1, **kwargs):
    """Store completed runs one hour apart ending just before ``end``, newest first."""
    runs = [
        make_run(first_id + i, created_at=end - timedelta(hours=i + 1), conclusion=conclusion, **kwargs)
        for i, conclusion in enumerate(conclusions)
    ]
    with get_session() as session:
        RunRepository(session).upsert_runs(repo, runs)
    return runs


def create_rule(**fields):
    values = {"scope": "repo:acme/api", "metric": "failure_rate", "threshold": 20}
    values.update(fields)
    with get_session() as session:
        return AlertRuleRepository(session).create(AlertRule(**values))


def stored_events():
    with get_session() as session:
        return AlertEventRepository(session).list_recent()


class TestResolveScopes:
    def test_repo_and_org(self):
        assert resolve_scopes("acme/api") == ["repo:acme/api", "org:acme"]

    def test_empty_owner_has_no_org_scope(self):
        assert resolve_scopes("/api") == ["repo:/api"]

    def test_key_without_slash(self):
        assert resolve_scopes("acme") == ["repo:acme", "org:acme"]


class TestEvaluateAgainstDatabase:
    """End-to-end evaluation over the SQL store with a fixed clock."""

    def test_failure_rate_fires_once(self, database):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        rule = create_rule()
        evaluator = AlertRuleEvaluator(clock=fixed_clock)

        assert evaluator.evaluate_for_repo("acme/api") == 1

        events = stored_events()
        assert len(events) == 1
        event = events[0]
        assert event.rule_id == rule.id
        assert event.scope == "repo:acme/api"
        assert event.metric == "failure_rate"
        assert event.value == 30
        assert event.fired_at == NOW
        assert event.details == {
            "repo": "acme/api",
            "threshold": 20.0,
            "window_hours": 24,
            "triggered_at": "2025-11-04T09:00:00.000000Z",
        }

    def test_second_evaluation_is_deduplicated(self, database):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        create_rule()
        evaluator = AlertRuleEvaluator(clock=fixed_clock)

        assert evaluator.evaluate_for_repo("acme/api") == 1
        assert evaluator.evaluate_for_repo("acme/api") == 0
        assert len(stored_events()) == 1

    def test_fires_again_after_window_passes(self, database):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        create_rule(window_hours=48)
        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 1

        later = NOW + timedelta(hours=49)
        seed_runs(["failure"] * 5 + ["success"] * 5, end=later, first_id=100)

        assert AlertRuleEvaluator(clock=lambda: later).evaluate_for_repo("acme/api") == 1
        assert sorted(e.value for e in stored_events()) == [30, 50]

    def test_below_threshold_does_not_fire(self, database):
        seed_runs(["failure"] + ["success"] * 9)
        create_rule()

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 0
        assert stored_events() == []

    def test_threshold_is_inclusive(self, database):
        seed_runs(["failure"] * 2 + ["success"] * 8)
        create_rule()

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 1

    def test_runs_outside_window_are_ignored(self, database):
        seed_runs(["failure"] * 5, end=NOW - timedelta(hours=30))
        create_rule()

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 0

    def test_disabled_rules_are_ignored(self, database):
        seed_runs(["failure"] * 10)
        create_rule(enabled=False)

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 0

    def test_org_rule_applies_to_repo(self, database):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        rule = create_rule(scope="org:acme")
        create_rule(scope="org:other")

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 1
        assert [e.rule_id for e in stored_events()] == [rule.id]
        assert stored_events()[0].scope == "org:acme"

    def test_other_repo_history_is_ignored(self, database):
        seed_runs(["failure"] * 10, repo="acme/web")
        create_rule()

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 0

    def test_duration_p95_in_minutes(self, database):
        seed_runs(["success"] * 10, duration_ms=300_000)
        create_rule(metric="duration_p95", threshold=5)

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 1
        assert stored_events()[0].value == 5

    def test_success_streak_counts_leading_failures(self, database):
        seed_runs(["failure"] * 3 + ["success"] + ["failure"] * 4)
        create_rule(metric="success_streak", threshold=3)

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 1
        assert stored_events()[0].value == 3

    def test_success_streak_without_runs_does_not_fire(self, database):
        create_rule(metric="success_streak", threshold=0)

        assert AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api") == 0

    def test_unknown_metric_is_skipped(self, database, caplog):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        unknown = create_rule()
        create_rule()
        with get_session() as session:
            session.execute(
                text("UPDATE alert_rules SET metric = 'flake_rate' WHERE id = :id"),
                {"id": unknown.id},
            )

        with caplog.at_level(logging.WARNING, logger="ci_insights.alerts.evaluator"):
            fired = AlertRuleEvaluator(clock=fixed_clock).evaluate_for_repo("acme/api")

        assert fired == 1
        assert any(
            getattr(record, "event", None) == "alerts.rule.unknown_metric"
            for record in caplog.records
        )

    def test_store_failure_keeps_earlier_events(self, database):
        seed_runs(["failure"] * 3 + ["success"] * 7)
        first = create_rule()
        create_rule(metric="duration_p95", threshold=1)

        class BrokenStore(SqlAlertStore):
            def query_p95_duration(self, repo_key, window_hours):
                raise PersistenceError("disk I/O error")

        @contextmanager
        def broken_scope():
            with get_session() as session:
                yield BrokenStore(session, clock=fixed_clock)

        evaluator = AlertRuleEvaluator(store_factory=broken_scope, clock=fixed_clock)

        with pytest.raises(PersistenceError):
            evaluator.evaluate_for_repo("acme/api")

        assert [e.rule_id for e in stored_events()] == [first.id]

    def test_module_function_uses_current_time(self, database):
        now = utc_now()
        seed_runs(["failure"] * 3 + ["success"] * 7, end=now)
        create_rule()

        assert evaluate_alert_rules_for_repo("acme/api") == 1
        assert evaluate_alert_rules_for_repo("acme/api") == 0


class FakeStore(AlertStore):
    """In-memory AlertStore with canned metric values."""

    def __init__(self, rules=None, failure_rate=None, p95_duration=None, p95_queue_wait=None,
                 conclusions=None, now=NOW):
        self.rules = rules or {}
        self.failure_rate = failure_rate
        self.p95_duration = p95_duration
        self.p95_queue_wait = p95_queue_wait
        self.conclusions = conclusions or []
        self.now = now
        self.events = []
        self.conclusion_limits = []

    def list_enabled_rules_for_scope(self, scope):
        return [rule for rule in self.rules.get(scope, []) if rule.enabled]

    def has_recent_event(self, rule_id, window_hours):
        since = self.now - timedelta(hours=window_hours)
        return any(e.rule_id == rule_id and e.fired_at >= since for e in self.events)

    def query_failure_rate(self, repo_key, window_hours):
        return self.failure_rate

    def query_p95_duration(self, repo_key, window_hours):
        return self.p95_duration

    def query_p95_queue_wait(self, repo_key, window_hours):
        return self.p95_queue_wait

    def query_recent_conclusions(self, repo_key, limit):
        self.conclusion_limits.append(limit)
        return self.conclusions[:limit]

    def insert_alert_event(self, rule_id, scope, metric, value, details):
        event = AlertEvent(
            id=len(self.events) + 1,
            rule_id=rule_id,
            scope=scope,
            metric=metric,
            value=value,
            fired_at=self.now,
            details=details,
        )
        self.events.append(event)
        return event


def rule(rule_id, metric="failure_rate", threshold=20, scope="repo:acme/api", **fields):
    return AlertRule(id=rule_id, scope=scope, metric=metric, threshold=threshold, **fields)


def evaluator_for(store, **kwargs):
    return AlertRuleEvaluator(store_factory=lambda: nullcontext(store), clock=fixed_clock, **kwargs)


class TestEvaluateWithFakeStore:
    """Metric conversion and scheduling rules, isolated from SQL."""

    def test_failure_rate_rounds_half_up(self):
        store = FakeStore({"repo:acme/api": [rule(1, threshold=13)]}, failure_rate=12.5)

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 1
        assert store.events[0].value == 13

    def test_p95_converted_to_whole_minutes(self):
        store = FakeStore(
            {"repo:acme/api": [rule(1, metric="duration_p95", threshold=2)]},
            p95_duration=89_999.6,
        )

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 1
        assert store.events[0].value == 2

    def test_queue_wait_p95_below_threshold(self):
        store = FakeStore(
            {"repo:acme/api": [rule(1, metric="queue_wait_p95", threshold=5)]},
            p95_queue_wait=269_000,
        )

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 0

    def test_no_data_does_not_fire(self):
        store = FakeStore({"repo:acme/api": [rule(1, threshold=0)]}, failure_rate=None)

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 0

    def test_rule_listed_under_two_scopes_evaluated_once(self):
        shared = rule(7, threshold=10)
        store = FakeStore(
            {"repo:acme/api": [shared], "org:acme": [shared]}, failure_rate=50
        )

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 1
        assert len(store.events) == 1

    def test_success_streak_respects_limit(self):
        store = FakeStore(
            {"repo:acme/api": [rule(1, metric="success_streak", threshold=3)]},
            conclusions=["failure"] * 10,
        )

        assert evaluator_for(store, recent_conclusions_limit=2).evaluate_for_repo("acme/api") == 0
        assert store.conclusion_limits == [2]

    def test_success_streak_of_zero_can_fire_at_zero_threshold(self):
        store = FakeStore(
            {"repo:acme/api": [rule(1, metric="success_streak", threshold=0)]},
            conclusions=["success", "failure"],
        )

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 1
        assert store.events[0].value == 0

    def test_unknown_metric_does_not_stop_other_rules(self):
        odd = AlertRule.model_construct(
            id=1, scope="repo:acme/api", metric="flake_rate", threshold=1, window_hours=24,
            channel="browser", destination=None, enabled=True, created_at=None,
        )
        store = FakeStore({"repo:acme/api": [odd, rule(2)]}, failure_rate=40)

        assert evaluator_for(store).evaluate_for_repo("acme/api") == 1
        assert [e.rule_id for e in store.events] == [2]

    def test_concurrent_evaluations_fire_once(self):
        store = FakeStore({"repo:acme/api": [rule(11)]}, failure_rate=90)
        barrier = threading.Barrier(4)
        results = []

        def worker():
            barrier.wait()
            results.append(evaluator_for(store).evaluate_for_repo("acme/api"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(results) == 1
        assert len(store.events) == 1

    def test_rule_lock_shared_while_held(self):
        lock = evaluator_module._lock_for_rule(41)

        assert evaluator_module._lock_for_rule(41) is lock
        assert evaluator_module._lock_for_rule(42) is not lock

    def test_rule_locks_released_after_evaluation(self):
        store = FakeStore({"repo:acme/api": [rule(43), rule(44, threshold=99)]}, failure_rate=50)

        evaluator_for(store).evaluate_for_repo("acme/api")

        assert 43 not in evaluator_module._rule_locks
        assert 44 not in evaluator_module._rule_locks

    def test_log_context_restored_after_evaluation(self):
        from ci_insights.logging.context import get_log_context

        store = FakeStore({"repo:acme/api": [rule(1)]}, failure_rate=50)
        evaluator_for(store).evaluate_for_repo("acme/api")

        assert get_log_context() == {}
