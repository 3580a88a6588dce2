"""Shared pytest fixtures."""

import pytest

from ci_insights.logging.context import clear_log_context
from ci_insights.persistence import close_database, init_database


@pytest.fixture
def database():
    """Fresh in-memory SQLite database for one test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture(autouse=True)
def clean_log_context():
    """Keep log_context() fields from leaking between tests."""
    clear_log_context()
    yield
    clear_log_context()
