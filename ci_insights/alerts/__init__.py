"""Threshold alert rules evaluated against stored run history."""

from .evaluator import AlertRuleEvaluator, evaluate_alert_rules_for_repo
from .scopes import resolve_scopes
from .store import AlertStore, SqlAlertStore, sql_store_scope

__all__ = [
    "evaluate_alert_rules_for_repo",
    "AlertRuleEvaluator",
    "resolve_scopes",
    "AlertStore",
    "SqlAlertStore",
    "sql_store_scope",
]
