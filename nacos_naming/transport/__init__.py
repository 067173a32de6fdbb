"""Registry transports."""

from nacos_naming.transport.base import NamingTransport
from nacos_naming.transport.http import NacosHttpTransport

__all__ = ["NacosHttpTransport", "NamingTransport"]
