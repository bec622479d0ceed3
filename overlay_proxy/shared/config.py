"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        env_ignore_empty=True,
    )

    allow_origin: str = Field(
        default="*",
        description="Value of Access-Control-Allow-Origin on every CORS response",
    )
    allowed_hosts: str = Field(
        default="app.overlays.uno",
        description="Comma-separated upstream hosts eligible as forwarding targets",
    )
    auth_token: str | None = Field(
        default=None,
        description="Shared secret required in X-Proxy-Token (unset disables the check)",
    )
    host: str = Field(default="0.0.0.0", description="Listen address")
    port: int = Field(default=8080, ge=1, le=65535, description="Listen port")
    log_level: str = Field(default="INFO", description="Logging level")
    request_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Total upstream timeout in seconds (unset imposes none)",
    )

    @property
    def allowed_host_set(self) -> frozenset[str]:
        """Allowlist entries, each trimmed of surrounding whitespace."""
        return frozenset(entry.strip() for entry in self.allowed_hosts.split(","))


@lru_cache
def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()
