"""
Jakson — Application Configuration
====================================

What:  The configuration an Application is constructed with.
How:   A frozen pydantic-settings model. The embedding program usually passes
       values explicitly (Config(type="test", port=3000)); anything it omits is
       read from APP_* environment variables or a .env file, then defaults.
Who:   Read by Application (port, host) and by setup_logging (log_level).
When:  Built once by the embedding program; read-only afterwards.

Projects extend it by subclassing:

    class MyConfig(Config):
        database_url: str = "postgresql://localhost/app"
"""

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigType(str, Enum):
    """The environment an application runs in."""

    DEVELOPMENT = "development"
    TEST = "test"
    INTEGRATION_TEST = "integration-test"
    STAGING = "staging"
    PRODUCTION = "production"


class Config(BaseSettings):
    """
    Application settings.

    Attributes:
        type:       Environment tag, one of ConfigType.
        port:       TCP port the server listens on. 0 picks a free port.
        host:       Interface to bind.
        log_level:  Logging level name used by setup_logging().
    """

    type: ConfigType = Field(default=ConfigType.DEVELOPMENT)
    port: int = Field(default=3000, ge=0, le=65535)

    # ── Ambient ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )
