"""
Shared Configuration - Engine Settings and Environment Management
Centralized configuration for the recipe engine.

This module provides:
- Environment-based configuration (RECIPE_* variables, optional .env file)
- Type-safe settings with validation
- Execution defaults for recipe runs
- Browser and HTTP transport defaults
- Logging configuration
"""
from typing import Optional, List
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


WAIT_POLICIES = ("immediate", "dom_ready", "network_idle")


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EngineSettings(BaseSettings):
    """Recipe execution settings."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    page_load_timeout_ms: int = Field(30000, description="Default navigation timeout")
    min_page_load_timeout_ms: int = Field(1000, description="Lower bound for step timeouts")
    default_wait_policy: str = Field("dom_ready", description="immediate, dom_ready or network_idle")
    system_language: str = Field("en", description="Seeded as $SYSTEM_LANGUAGE")
    system_region: str = Field("US", description="Seeded as $SYSTEM_REGION")
    trace_sample_values: int = Field(3, description="Values kept per trace entry")
    max_loop_iterations: int = Field(500, description="Upper bound for one loop expansion")

    @field_validator("default_wait_policy")
    @classmethod
    def validate_wait_policy(cls, v):
        if v not in WAIT_POLICIES:
            raise ValueError(f"Wait policy must be one of {', '.join(WAIT_POLICIES)}")
        return v

    @field_validator("page_load_timeout_ms", "min_page_load_timeout_ms")
    @classmethod
    def validate_timeout(cls, v):
        if v < 0:
            raise ValueError("Timeouts must not be negative")
        return v

    @field_validator("max_loop_iterations")
    @classmethod
    def validate_max_iterations(cls, v):
        if v < 1:
            raise ValueError("Max loop iterations must be at least 1")
        return v


class BrowserSettings(BaseSettings):
    """Playwright browser defaults."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_BROWSER_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    headless: bool = Field(True)
    viewport_width: int = Field(1920)
    viewport_height: int = Field(1080)
    user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    locale: str = Field("en-US")


class HttpSettings(BaseSettings):
    """HTTP transport defaults for the httpx based adapters."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_HTTP_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    timeout: float = Field(15.0, description="Request timeout in seconds")
    max_redirects: int = Field(5)
    verify_ssl: bool = Field(True)

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("HTTP timeout must be positive")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_LOG_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    level: LogLevel = Field(LogLevel.INFO)
    format: str = Field("colored", description="json, colored or standard")
    file: Optional[str] = Field(None)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "colored", "standard"):
            raise ValueError("Log format must be json, colored or standard")
        return v


class Settings(BaseSettings):
    """Main engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="RECIPE_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    environment: Environment = Field(Environment.DEVELOPMENT)

    # Component settings
    engine: EngineSettings = EngineSettings()
    browser: BrowserSettings = BrowserSettings()
    http: HttpSettings = HttpSettings()
    logging: LoggingSettings = LoggingSettings()

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get engine settings."""
    return settings


def get_engine_settings() -> EngineSettings:
    """Get recipe execution settings."""
    return settings.engine


def validate_configuration() -> List[str]:
    """
    Validate the current configuration and return any errors.

    Returns:
        List of validation error messages
    """
    errors = []

    engine = settings.engine
    if engine.page_load_timeout_ms < engine.min_page_load_timeout_ms:
        errors.append("page_load_timeout_ms is below min_page_load_timeout_ms")
    if engine.trace_sample_values < 0:
        errors.append("trace_sample_values must not be negative")
    if settings.is_production() and settings.logging.format != "json":
        errors.append("JSON log format is expected in production")

    return errors
