"""Centralized configuration management using Pydantic Settings.

This module provides typed configuration for the service, loaded from
environment variables with sensible defaults.

Usage:
    from script_runner.config import get_settings
    settings = get_settings()
    timeout_ms = settings.sandbox.timeout_ms
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes")
    return bool(v)


class SandboxSettings(BaseSettings):
    """Script sandbox configuration."""

    model_config = SettingsConfigDict(env_prefix="SANDBOX_", extra="ignore")

    enabled: bool = Field(default=True, description="Enable sandbox")
    timeout_ms: int = Field(default=300, gt=0, description="Default execution time budget")
    max_heap_bytes: int = Field(default=16 * 1024 * 1024, gt=0, description="Default heap ceiling")
    heap_headroom: float = Field(
        default=2.0, ge=1.0, description="Hard heap limit as a multiple of the ceiling"
    )
    startup_timeout_sec: float = Field(default=5.0, gt=0, description="Worker startup timeout")
    poll_interval_ms: float = Field(default=5.0, gt=0, description="Heap flag poll interval")
    prefer_heap_verdict: bool = Field(
        default=True, description="Report heap exhaustion over timeout when both trip"
    )
    max_script_length: int = Field(default=100_000, gt=0, description="Largest accepted script")
    max_timeout_ms: int = Field(default=5000, gt=0, description="Cap for per-request time budgets")
    max_heap_cap_bytes: int = Field(
        default=64 * 1024 * 1024, gt=0, description="Cap for per-request heap ceilings"
    )
    warmup: bool = Field(default=True, description="Run a warm-up script on startup")
    python_executable: str = Field(default="", description="Interpreter for worker processes")

    @field_validator("enabled", "prefer_heap_verdict", "warmup", mode="before")
    @classmethod
    def parse_flags(cls, v):
        return _parse_bool(v)


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=7690, description="Bind port")
    workers: int = Field(default=1, ge=1, description="Uvicorn worker processes")


class CorsSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    origins_raw: str = Field(
        default="*",
        validation_alias="CORS_ORIGINS",
    )
    origins_regex: str = Field(
        default="",
        validation_alias="CORS_ORIGINS_REGEX",
        description="Regex pattern for origins",
    )

    @property
    def origins(self) -> list[str]:
        """Parse comma-separated origins into list."""
        return [o.strip() for o in self.origins_raw.split(",") if o.strip()]

    @property
    def allow_credentials(self) -> bool:
        """Credentials not allowed with wildcard origins."""
        return self.origins != ["*"] and not self.origins_regex


class DebugSettings(BaseSettings):
    """Debug flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    request: bool = Field(default=False, alias="request_debug")
    sandbox: bool = Field(default=False, alias="sandbox_debug")
    log_level: str = Field(default="INFO", alias="log_level")

    @field_validator("request", "sandbox", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class FeatureSettings(BaseSettings):
    """Feature flags configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    metrics: bool = Field(default=False, alias="feature_metrics")

    @field_validator("*", mode="before")
    @classmethod
    def parse_bool(cls, v):
        return _parse_bool(v)


class Settings:
    """Main application settings combining all configuration sections.

    This is not a BaseSettings subclass to avoid env var conflicts.
    Each subsetting is loaded independently with its own prefix.
    """

    def __init__(self) -> None:
        self.sandbox = SandboxSettings()
        self.server = ServerSettings()
        self.cors = CorsSettings()
        self.debug = DebugSettings()
        self.features = FeatureSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance (singleton pattern)."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear cached settings (useful for testing)."""
    get_settings.cache_clear()
