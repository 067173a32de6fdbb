"""
Configuration management using Pydantic Settings.
Loads from environment variables and .env files (cascading).

.env Precedence (highest to lowest):
1. Environment variables (already set in os.environ)
2. Project .env (current directory / project root)
3. User .env (~/.nacos_naming/.env) - fallback for pip installs
"""

import logging
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, EnvSettingsSource, PydanticBaseSettingsSource, SettingsConfigDict

from nacos_naming.constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_FIRST_FETCH_TIMEOUT_SECONDS,
    DEFAULT_GROUP,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_STALENESS_CEILING_SECONDS,
)

logger = logging.getLogger(__name__)


def get_user_env_path() -> Path:
    """Get path to user .env file (~/.nacos_naming/.env)."""
    return Path.home() / ".nacos_naming" / ".env"


def load_env_files() -> None:
    """Load .env files in precedence order.

    With override=False the FIRST value loaded wins, so the project .env is
    loaded before the user fallback.
    """
    load_dotenv(override=False)

    user_env = get_user_env_path()
    if user_env.exists():
        load_dotenv(user_env, override=False)
        logger.debug(f"Loaded fallback user .env from {user_env}")


# Load .env files at module import
load_env_files()


class Settings(BaseSettings):
    """Process-wide defaults loaded from environment variables.

    These only seed ClientConfig defaults (CLI, load_client_config); every
    NamingClient still owns its own validated ClientConfig.
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Registry endpoint and credentials
    nacos_ip_addr: str = Field(default="127.0.0.1", alias="NACOS_IP_ADDR")
    nacos_port: int = Field(default=DEFAULT_PORT, alias="NACOS_PORT")
    nacos_username: str = Field(default="", alias="NACOS_USERNAME")
    nacos_password: str = Field(default="", alias="NACOS_PASSWORD")
    nacos_namespace_id: str = Field(default="", alias="NACOS_NAMESPACE_ID", description="Empty string selects the public namespace")
    nacos_group_name: str = Field(default=DEFAULT_GROUP, alias="NACOS_GROUP_NAME")

    # Cache behaviour
    cache_ttl_seconds: float = Field(default=DEFAULT_CACHE_TTL_SECONDS, alias="CACHE_TTL_SECONDS")
    staleness_ceiling_seconds: float = Field(
        default=DEFAULT_STALENESS_CEILING_SECONDS,
        alias="STALENESS_CEILING_SECONDS",
        description="Cached data older than this is refused even if no refresh succeeded",
    )
    first_fetch_timeout_seconds: float = Field(default=DEFAULT_FIRST_FETCH_TIMEOUT_SECONDS, alias="FIRST_FETCH_TIMEOUT_SECONDS")
    fallback_to_unhealthy: bool = Field(default=False, alias="FALLBACK_TO_UNHEALTHY")

    # Retry and timeout configuration
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, alias="MAX_RETRIES")
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS, alias="REQUEST_TIMEOUT_SECONDS", description="Timeout in seconds for one registry HTTP call"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Read os.environ only; .env files were already merged into it by load_env_files()."""
        return (
            init_settings,
            EnvSettingsSource(settings_cls),
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
