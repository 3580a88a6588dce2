"""Configuration schema models using Pydantic."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class AnomalyConfig(BaseModel):
    """Rolling-baseline anomaly detection settings."""

    z_threshold: float = Field(
        2.0, gt=0, le=10, description="Flag runs whose |z| exceeds this many stddevs"
    )
    baseline_window: int = Field(
        20, ge=2, le=500, description="Preceding runs used for each baseline"
    )
    min_samples: int = Field(
        5, ge=2, description="Baseline size required before detection starts"
    )
    min_stddev_ms: float = Field(
        1.0, ge=0, description="Baselines with a smaller stddev are treated as constant"
    )

    @model_validator(mode="after")
    def validate_window(self):
        """min_samples can never exceed the window it is drawn from."""
        if self.min_samples > self.baseline_window:
            raise ValueError(
                f"min_samples ({self.min_samples}) cannot exceed "
                f"baseline_window ({self.baseline_window})"
            )
        return self


class AlertsConfig(BaseModel):
    """Alert rule evaluation settings."""

    recent_conclusions_limit: int = Field(
        100, ge=1, le=1000, description="Completed runs scanned for the success_streak metric"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for CI Insights."""

    anomaly: AnomalyConfig = Field(
        default_factory=AnomalyConfig, description="Anomaly detection settings"
    )
    alerts: AlertsConfig = Field(
        default_factory=AlertsConfig, description="Alert evaluation settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
