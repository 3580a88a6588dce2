"""Utility functions for time handling and shared statistics."""

from .stats import (
    MS_PER_DAY,
    MS_PER_HOUR,
    MS_PER_MINUTE,
    format_duration_ms,
    format_minutes,
    mean,
    percentile,
    positive_values,
    round_half_up,
    sample_stddev,
)
from .timestamps import (
    elapsed_ms,
    ensure_utc,
    format_timestamp,
    from_storage,
    hours_ago,
    to_storage,
    utc_now,
)

__all__ = [
    # Timestamps
    "utc_now",
    "ensure_utc",
    "format_timestamp",
    "to_storage",
    "from_storage",
    "elapsed_ms",
    "hours_ago",
    # Statistics
    "percentile",
    "mean",
    "sample_stddev",
    "round_half_up",
    "positive_values",
    "format_minutes",
    "format_duration_ms",
    "MS_PER_MINUTE",
    "MS_PER_HOUR",
    "MS_PER_DAY",
]
