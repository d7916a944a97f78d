"""Plant Maintenance — Configuration Management.

Strictly-typed configuration system using pydantic-settings.
All settings are loaded from environment variables with validation.

    - Secrets use SecretStr to prevent accidental logging
    - Invalid watermarks or simulator ranges cause immediate startup failure
    - All configuration is immutable after initialization
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThresholdSettings(BaseSettings):
    """Utilization watermarks used by the machine lifecycle.

    Attributes:
        warning_watermark: Ratio at which operators are warned (non-blocking).
        maintenance_watermark: Ratio at which a Running machine is moved to Maintenance.
        elevated_band: Ratio at which the utilization band turns 'elevated'.
    """

    model_config = SettingsConfigDict(
        env_prefix="THRESHOLD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    warning_watermark: float = Field(default=0.95, gt=0, le=1.0, description="Operator warning watermark")
    maintenance_watermark: float = Field(default=0.98, gt=0, le=1.0, description="Auto-maintenance watermark")
    elevated_band: float = Field(default=0.85, gt=0, le=1.0, description="Elevated utilization band")

    @model_validator(mode="after")
    def validate_watermark_order(self) -> "ThresholdSettings":
        """Warning must fire strictly before the maintenance transition."""
        if not self.elevated_band < self.warning_watermark < self.maintenance_watermark:
            raise ValueError(
                "Watermarks must satisfy elevated_band < warning_watermark < maintenance_watermark"
            )
        return self


class MonitorSettings(BaseSettings):
    """Live monitor simulator configuration.

    Attributes:
        enabled: Start the simulator with the API server.
        tick_interval_seconds: Delay between ticks.
        increment_min: Smallest stroke increment per tick.
        increment_max: Largest stroke increment per tick.
        cycle_time_min: Lower bound of the simulated cycle time (seconds).
        cycle_time_max: Upper bound of the simulated cycle time (seconds).
        seed: Optional seed for a reproducible random source.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Run the simulator at startup")
    tick_interval_seconds: float = Field(default=2.0, gt=0, le=3600, description="Tick interval (seconds)")
    increment_min: int = Field(default=1, ge=0, description="Minimum stroke increment")
    increment_max: int = Field(default=5, ge=0, description="Maximum stroke increment")
    cycle_time_min: float = Field(default=12.0, gt=0, description="Minimum cycle time (seconds)")
    cycle_time_max: float = Field(default=15.0, gt=0, description="Maximum cycle time (seconds)")
    seed: int | None = Field(default=None, description="Random seed (None = OS entropy)")

    @model_validator(mode="after")
    def validate_ranges(self) -> "MonitorSettings":
        if self.increment_min > self.increment_max:
            raise ValueError("MONITOR_INCREMENT_MIN must not exceed MONITOR_INCREMENT_MAX")
        if self.cycle_time_min > self.cycle_time_max:
            raise ValueError("MONITOR_CYCLE_TIME_MIN must not exceed MONITOR_CYCLE_TIME_MAX")
        return self


class NotificationSettings(BaseSettings):
    """Maintenance notification delivery.

    Attributes:
        webhook_url: Optional endpoint that receives every notification as JSON.
        history_size: Number of notifications kept in memory for the dashboard.
        timeout_seconds: Webhook POST timeout.
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    webhook_url: str | None = Field(default=None, description="Webhook URL for notifications")
    history_size: int = Field(default=500, ge=1, le=100000, description="In-memory notification history")
    timeout_seconds: float = Field(default=10.0, gt=0, le=120, description="Webhook timeout (seconds)")


class LLMSettings(BaseSettings):
    """AI recommendation provider configuration.

    Attributes:
        provider: Which backend answers recommendation requests.
        openai_api_key: OpenAI API key (SecretStr).
        openai_model: OpenAI chat model.
        ollama_host: Base URL of a local Ollama server.
        ollama_model: Ollama model tag.
        timeout_seconds: Request timeout for either provider.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: Literal["openai", "ollama"] = Field(default="openai", description="LLM provider")
    openai_api_key: SecretStr | None = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model")
    ollama_host: str = Field(default="http://localhost:11434", description="Ollama base URL")
    ollama_model: str = Field(default="llama3.1:8b", description="Ollama model")
    timeout_seconds: float = Field(default=60.0, gt=0, le=600, description="Provider timeout (seconds)")

    @field_validator("ollama_host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class LogSettings(BaseSettings):
    """Logging configuration for observability.

    Attributes:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format: Log output format (json for production, text for development).
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log format (json for production)",
    )


class Settings(BaseSettings):
    """Root application settings aggregating all configuration sections.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        app_name: Application name for identification.
        app_version: Application version string.
        environment: Deployment environment.
        debug: Enable debug mode (never in production!).
        seed_demo_data: Load the demo fleet into the store at startup.
        sentry_dsn: Sentry DSN; unset disables error forwarding.

    Example:
        >>> settings = get_settings()
        >>> settings.thresholds.maintenance_watermark
        0.98
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="Plant Maintenance", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    debug: bool = Field(default=False, description="Debug mode (disable in production!)")
    seed_demo_data: bool = Field(default=True, description="Seed the demo fleet at startup")
    sentry_dsn: SecretStr | None = Field(default=None, description="Sentry DSN (error monitoring disabled when unset)")

    # Nested configuration sections
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)
    monitor: MonitorSettings = Field(default_factory=MonitorSettings)
    notify: NotificationSettings = Field(default_factory=NotificationSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Enforce strict settings in production."""
        if self.environment == "production":
            if self.debug:
                raise ValueError("Debug mode must be disabled in production")
            if self.log.level == "DEBUG":
                raise ValueError("DEBUG log level is not allowed in production")
            if self.seed_demo_data:
                raise ValueError("Demo data must not be seeded in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Returns:
        Settings: Validated application configuration.

    Raises:
        ValidationError: If settings are invalid.
            This will cause immediate application startup failure.
    """
    return Settings()


def validate_startup() -> None:
    """Validate all required configuration at application startup.

    Raises:
        SystemExit: If configuration validation fails.
    """
    try:
        settings = get_settings()
        print(f"✓ Configuration loaded for environment: {settings.environment}")
        print(
            f"✓ Watermarks: warning={settings.thresholds.warning_watermark} "
            f"maintenance={settings.thresholds.maintenance_watermark}"
        )
        print(f"✓ Monitor tick: {settings.monitor.tick_interval_seconds}s")
        print(f"✓ LLM provider: {settings.llm.provider}")
        print(f"✓ Log level: {settings.log.level}")
    except Exception as e:
        print(f"✗ Configuration validation failed: {e}")
        raise SystemExit(1) from e
