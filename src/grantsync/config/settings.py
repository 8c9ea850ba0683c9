from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GRANTSYNC_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    HOST: str = Field(default="0.0.0.0", description="Bind host")
    PORT: int = Field(default=7920, description="Bind port")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level for the CLI")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///grantsync_dev.db")
    SCHEMA_MODE: str = Field(
        default="create_all",
        description="create_all: auto-create tables (dev), external: tables are managed elsewhere",
    )

    # ACL
    ACL_ENFORCE: bool = Field(
        default=True, description="Deny requests the permission registry does not allow"
    )
    ASSOCIATION_RULES_FILE: str = Field(
        default="",
        description="Optional YAML file with association rule overrides",
    )
    ROOT_ROLE: str = Field(
        default="root", description="Role that bypasses every permission check"
    )
    ROLE_HEADER: str = Field(default="x-role", description="Current role header name")
    USER_HEADER: str = Field(default="x-user-id", description="Current user header name")
    SEED_ON_START: bool = Field(
        default=False, description="Seed default roles and scopes before the first rebuild"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
