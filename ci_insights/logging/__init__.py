"""Structured logging helpers shared by every ci_insights component."""

import logging
from typing import Optional


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges a fixed component tag into each call's extras."""

    def process(self, msg, kwargs):
        """Merge the adapter's component field with the call-site extras.

        Extras passed at the call site win over the adapter defaults.
        """
        call_extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **call_extra}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Return a logger, optionally tagged with a component name.

    Args:
        name: Logger name (typically __name__)
        component: Component label injected into every record (e.g. "alerts")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="alerts")
        >>> logger.info("Rule fired", extra={"event": "alerts.rule.fired"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
