"""Non-fatal configuration checks."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Inspect a raw configuration mapping for settings that are valid but suspicious.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    anomaly = config_dict.get("anomaly", {})
    if isinstance(anomaly, dict):
        threshold = anomaly.get("z_threshold")
        if isinstance(threshold, (int, float)) and 0 < threshold < 1.5:
            warning_messages.append(
                f"Low anomaly z_threshold ({threshold}) will flag many ordinary runs"
            )

        window = anomaly.get("baseline_window")
        if isinstance(window, int) and window > 200:
            warning_messages.append(
                f"Large baseline_window ({window}) makes baselines slow to react to change"
            )

        min_samples = anomaly.get("min_samples")
        if isinstance(min_samples, int) and min_samples < 3:
            warning_messages.append(
                f"min_samples={min_samples} gives very noisy baselines on cold start"
            )

    alerts = config_dict.get("alerts", {})
    if isinstance(alerts, dict):
        limit = alerts.get("recent_conclusions_limit")
        if isinstance(limit, int) and limit < 10:
            warning_messages.append(
                f"recent_conclusions_limit={limit} caps success_streak alerts at {limit}"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message through the warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
