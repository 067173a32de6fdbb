"""nacos-naming: healthy-instance resolution client for Nacos-style naming registries."""

from importlib.metadata import PackageNotFoundError, version

from nacos_naming.client import NamingClient
from nacos_naming.errors import (
    AuthError,
    ClosedError,
    ConfigError,
    NamingError,
    NoHealthyInstanceError,
    NoInstanceError,
    RegistryRequestError,
    SelectionTimeoutError,
    UnreachableError,
)
from nacos_naming.models.config import ClientConfig
from nacos_naming.models.instance import Instance, ServiceView

try:
    __version__ = version("nacos-naming")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "AuthError",
    "ClientConfig",
    "ClosedError",
    "ConfigError",
    "Instance",
    "NamingClient",
    "NamingError",
    "NoHealthyInstanceError",
    "NoInstanceError",
    "RegistryRequestError",
    "SelectionTimeoutError",
    "ServiceView",
    "UnreachableError",
    "__version__",
]
