"""Test helper utilities for CI Insights tests."""

from .runs import BASE_TIME, make_run, make_runs, newest_first

__all__ = ["BASE_TIME", "make_run", "make_runs", "newest_first"]
