"""Small numeric helpers shared by the analytics modules.

Every helper returns a finite number for empty input instead of raising, so
callers can degrade to conservative defaults on sparse data.
"""

import math
from typing import Iterable, Sequence

MS_PER_MINUTE = 60_000
MS_PER_HOUR = 3_600_000
MS_PER_DAY = 86_400_000


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile of an ascending sequence.

    Args:
        sorted_values: Values sorted ascending
        p: Fraction in [0, 1]

    Returns:
        Interpolated value, or 0 for an empty sequence

    Example:
        >>> percentile([1, 2, 3, 4], 0.5)
        2.5
    """
    if not sorted_values:
        return 0
    idx = p * (len(sorted_values) - 1)
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] + (sorted_values[hi] - sorted_values[lo]) * (idx - lo)


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    return sum(values) / len(values) if values else 0


def sample_stddev(values: Sequence[float], avg: float) -> float:
    """Sample standard deviation (n - 1 divisor); 0 with fewer than two values."""
    if len(values) < 2:
        return 0
    variance = sum((v - avg) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with ties going toward positive infinity.

    Python's round() uses banker's rounding; thresholds and reported values in
    this package are defined with half-up rounding instead.

    Example:
        >>> round_half_up(2.5)
        3
        >>> round_half_up(-2.25, 1)
        -2.2
    """
    if ndigits == 0:
        return int(math.floor(value + 0.5))
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def positive_values(values: Iterable) -> list:
    """Keep defined values greater than zero."""
    return [v for v in values if v is not None and v > 0]


def format_minutes(ms: float) -> str:
    """Compact minutes/hours label, e.g. '2.5m' or '1.2h'."""
    minutes = round_half_up(ms / MS_PER_MINUTE, 1)
    if minutes >= 60:
        return f"{round_half_up(minutes / 60, 1):g}h"
    return f"{minutes:g}m"


def format_duration_ms(ms: float) -> str:
    """Clock-style duration label: '1h 5m', '3m 20s' or '45s'."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"
