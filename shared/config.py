"""
Shared configuration management for the authorization engine.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHZ_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", description="Deployment label")
    log_level: str = Field(default="info", description="Logging level")
    service_name: str = Field(default="authz", description="Logger prefix")


class AuthzSettings(BaseConfig):
    """Decision engine configuration."""

    # Matching
    empty_principals_match_none: bool = Field(
        default=False,
        description="Treat an explicit empty principals list as matching nobody"
    )

    # Diagnostics
    slow_evaluation_ms: float = Field(
        default=50.0,
        ge=0,
        description="Evaluations slower than this are logged as warnings"
    )

    # Id generation
    policy_id_prefix: str = Field(default="policy", min_length=1)
    permission_id_prefix: str = Field(default="perm", min_length=1)


@lru_cache()
def get_settings() -> AuthzSettings:
    """Get the process-wide engine settings."""
    return AuthzSettings()
