"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers, the alert
evaluator in particular, can catch every storage failure with one clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - Engine or session factory used before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when a required database record is not found.

    Optional lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated (duplicate key, dangling rule_id)."""

    pass
