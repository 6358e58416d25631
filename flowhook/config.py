"""flowhook configuration using pydantic-settings.

Values come from environment variables (or a .env file) and cover the
HTTP, LLM and code-runner nodes, test listening and the execution log.
Secrets should NEVER be logged or exposed in error messages.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are immutable after initialization.
    Secrets are wrapped in SecretStr to prevent accidental exposure.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Encryption
    encryption_key: SecretStr | None = Field(
        default=None,
        description="Fernet key for credential encryption at rest",
    )

    # HTTP node
    http_default_timeout: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Request timeout in seconds when an HTTP node configures none",
    )
    http_platform_timeout: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Platform socket timeout; larger node timeouts override it",
    )

    # LLM node
    llm_default_timeout: int = Field(default=60, ge=1, le=3600)
    llm_connect_timeout: int = Field(default=30, ge=1, le=300)

    # External code runner
    code_runner_command: str = Field(
        default="node",
        description="Executable of the external script runtime (space separated arguments allowed)",
    )
    code_runner_timeout: int = Field(default=30, ge=1, le=3600)

    # Templates
    template_timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        description="Timezone used by the built-in {{now}} variable",
    )

    # Test-mode webhook listening
    test_listen_ttl: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="Lifetime of a test-listen session in seconds",
    )
    test_listen_timeout: int = Field(
        default=120,
        ge=1,
        le=86400,
        description="Seconds after which a listening session reports a timeout",
    )
    test_capture_ttl: int = Field(default=60, ge=1, le=86400)

    # Schedule triggers
    schedule_poll_interval: int = Field(
        default=60,
        ge=0,
        le=86400,
        description="Seconds between schedule trigger checks (0 disables the poller)",
    )

    # Execution log
    execution_log_size: int = Field(
        default=500,
        ge=1,
        le=100000,
        description="Number of finished execution records kept in memory",
    )

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed origins",
    )

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """Validate CORS origins format."""
        origins = [o.strip() for o in v.split(",") if o.strip()]
        if not origins:
            raise ValueError("At least one CORS origin must be specified")
        return v

    @field_validator("template_timezone")
    @classmethod
    def validate_template_timezone(cls, v: str) -> str:
        """Reject timezone names the zoneinfo database does not know."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def code_runner_argv(self) -> list[str]:
        """Get the code runner command split into argv parts."""
        return self.code_runner_command.split()

    def get_masked_key(self, key_name: str) -> str:
        """Get a masked version of a secret key for logging.

        Only shows first 8 characters followed by '...'
        """
        secret = getattr(self, key_name, None)
        if secret is None:
            return "<not set>"
        if isinstance(secret, SecretStr):
            value = secret.get_secret_value()
        else:
            value = str(secret)
        if len(value) <= 8:
            return "***"
        return f"{value[:8]}..."


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the application lifetime.
    """
    return Settings()


# Export commonly used settings accessors
settings = get_settings()
