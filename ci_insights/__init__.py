"""CI Insights: delivery metrics, anomaly detection, optimization advice and
threshold alerts derived from CI run history."""

__version__ = "0.1.0"
