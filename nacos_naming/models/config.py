"""Client configuration model with YAML file support."""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from nacos_naming.constants import (
    DEFAULT_AUTH_GRACE_SECONDS,
    DEFAULT_RETRY_BASE_SECONDS,
    DEFAULT_RETRY_CAP_SECONDS,
    MAX_REFRESH_INTERVAL_SECONDS,
)
from nacos_naming.errors import ConfigError
from nacos_naming.settings import settings

logger = logging.getLogger(__name__)

# Option names accepted from load-test scripts and YAML files (camelCase) -> field names
OPTION_ALIASES: Final[dict[str, str]] = {
    "ipAddr": "ip_addr",
    "namespaceId": "namespace_id",
    "groupName": "group_name",
    "group": "group_name",
    "cacheTtlSeconds": "cache_ttl_seconds",
    "stalenessCeilingSeconds": "staleness_ceiling_seconds",
    "firstFetchTimeoutSeconds": "first_fetch_timeout_seconds",
    "fallbackToUnhealthy": "fallback_to_unhealthy",
    "requestTimeoutSeconds": "request_timeout_seconds",
    "maxRetries": "max_retries",
}


def normalize_option_keys(options: Mapping[str, Any]) -> dict[str, Any]:
    """Translate camelCase option names to field names; other keys pass through."""
    return {OPTION_ALIASES.get(key, key): value for key, value in options.items()}


def get_user_config_path() -> Path:
    """Get path to user config (~/.nacos_naming/config.yaml)."""
    return Path.home() / ".nacos_naming" / "config.yaml"


# =============================================================================
# Client Configuration Schema
# =============================================================================


class ClientConfig(BaseModel):
    """Validated options for one NamingClient."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ip_addr: str
    port: int = Field(..., ge=1, le=65535)
    username: str = ""
    password: str = Field(default="", repr=False)
    namespace_id: str  # required; "" selects the public namespace
    group_name: str = settings.nacos_group_name

    cache_ttl_seconds: float = Field(default=settings.cache_ttl_seconds, gt=0)
    staleness_ceiling_seconds: float = Field(default=settings.staleness_ceiling_seconds, gt=0)
    first_fetch_timeout_seconds: float = Field(default=settings.first_fetch_timeout_seconds, gt=0)
    fallback_to_unhealthy: bool = settings.fallback_to_unhealthy

    request_timeout_seconds: float = Field(default=settings.request_timeout_seconds, gt=0)
    max_retries: int = Field(default=settings.max_retries, ge=1)
    retry_base_seconds: float = Field(default=DEFAULT_RETRY_BASE_SECONDS, gt=0)
    retry_cap_seconds: float = Field(default=DEFAULT_RETRY_CAP_SECONDS, gt=0)
    auth_grace_seconds: float = Field(default=DEFAULT_AUTH_GRACE_SECONDS, ge=0)

    @model_validator(mode="before")
    @classmethod
    def accept_script_option_names(cls, data: Any) -> Any:
        """Accept the camelCase names used by load-test scripts (ipAddr, namespaceId)."""
        if isinstance(data, Mapping):
            return normalize_option_keys(data)
        return data

    @field_validator("ip_addr")
    @classmethod
    def validate_ip_addr(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ip_addr must be a non-empty host")
        return v

    @field_validator("group_name")
    @classmethod
    def validate_group_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("group_name must not be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_ttl_within_ceiling(self) -> "ClientConfig":
        """Ensure the staleness ceiling does not cut in before the normal TTL."""
        if self.staleness_ceiling_seconds < self.cache_ttl_seconds:
            raise ValueError(
                f"staleness_ceiling_seconds ({self.staleness_ceiling_seconds}) must be >= cache_ttl_seconds ({self.cache_ttl_seconds})"
            )
        return self

    @property
    def endpoint(self) -> str:
        """Base URL of the registry."""
        return f"http://{self.ip_addr}:{self.port}"

    @property
    def refresh_interval_seconds(self) -> float:
        """Timer period: half the TTL, capped at 10s."""
        return min(self.cache_ttl_seconds / 2, MAX_REFRESH_INTERVAL_SECONDS)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.username)

    @classmethod
    def build(cls, options: "ClientConfig | Mapping[str, Any] | None" = None, **overrides: Any) -> "ClientConfig":
        """Validate options into a ClientConfig.

        Raises:
            ConfigError: If any option is missing or invalid
        """
        if isinstance(options, ClientConfig):
            if not overrides:
                return options
            options = options.model_dump()

        data = normalize_option_keys(options or {})
        data.update(normalize_option_keys(overrides))
        try:
            return cls(**data)
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors())
            raise ConfigError(f"Invalid client configuration: {problems}") from e


# =============================================================================
# Configuration Loading
# =============================================================================


def settings_defaults() -> dict[str, Any]:
    """Client options derived from environment settings."""
    return {
        "ip_addr": settings.nacos_ip_addr,
        "port": settings.nacos_port,
        "username": settings.nacos_username,
        "password": settings.nacos_password,
        "namespace_id": settings.nacos_namespace_id,
        "group_name": settings.nacos_group_name,
    }


def load_yaml_options(path: Path) -> dict[str, Any]:
    """Read client options from a YAML mapping.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        error_msg = f"""
Configuration Error: Invalid YAML in client config

File: {path}
Error: {e}

To fix:
1. Validate YAML syntax: python -c "import yaml; yaml.safe_load(open('{path}'))"
2. Or delete the file to use environment defaults: rm {path}
"""
        logger.error(error_msg)
        raise ConfigError(error_msg) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Client config {path} must contain a mapping, got {type(data).__name__}")
    return normalize_option_keys(data)


def load_client_config(config_path: Path | None = None, **overrides: Any) -> ClientConfig:
    """Load client configuration.

    Layers, lowest to highest: environment settings, YAML file, overrides.

    Args:
        config_path: Explicit YAML file. When omitted, ~/.nacos_naming/config.yaml
                     is used if it exists.
        **overrides: Options that win over every other layer (None values ignored)

    Returns:
        Validated ClientConfig

    Raises:
        ConfigError: If the explicit file is missing or the result is invalid
    """
    data = settings_defaults()

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Client config not found: {config_path}")
        data.update(load_yaml_options(config_path))
    else:
        user_config = get_user_config_path()
        if user_config.exists():
            data.update(load_yaml_options(user_config))
            logger.debug(f"Loaded user client config from {user_config}")

    data.update({k: v for k, v in normalize_option_keys(overrides).items() if v is not None})
    return ClientConfig.build(data)
