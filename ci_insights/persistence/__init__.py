"""Persistence layer for run history and alert state.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - RunRepository: workflow run history and alert metric queries
    - AlertRuleRepository: CRUD operations for alert rules
    - AlertEventRepository: append-only alert events and dedup lookups

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Required record not found
    - DataIntegrityError: Constraint violations

Example usage:
    >>> from ci_insights.persistence import init_database, get_session, RunRepository
    >>> init_database("sqlite:///./data/ci_insights.db")
    >>> with get_session() as session:
    ...     runs = RunRepository(session).get_runs("acme/api", limit=200)
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import AlertEventRepository, AlertRuleRepository, RunRepository

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "RunRepository",
    "AlertRuleRepository",
    "AlertEventRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
