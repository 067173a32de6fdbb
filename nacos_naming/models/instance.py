"""Instance and service-view snapshots."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nacos_naming.constants import DEFAULT_GROUP, GROUP_SEPARATOR


def grouped_name(service_name: str, group_name: str | None = None) -> str:
    """Build the registry key for a service ("GROUP@@service").

    A name that already carries a group is returned unchanged.
    """
    if GROUP_SEPARATOR in service_name:
        return service_name
    return f"{group_name or DEFAULT_GROUP}{GROUP_SEPARATOR}{service_name}"


def split_grouped_name(name: str) -> tuple[str, str]:
    """Split "GROUP@@service" into (group, service). Bare names get DEFAULT_GROUP."""
    if GROUP_SEPARATOR not in name:
        return DEFAULT_GROUP, name
    group, service = name.split(GROUP_SEPARATOR, 1)
    return group, service


class Instance(BaseModel):
    """One network endpoint registered under a service name.

    Frozen: a refresh replaces instances wholesale, and a health change
    produces a copy via with_health().
    """

    model_config = ConfigDict(frozen=True)

    service_name: str
    ip: str
    port: int = Field(..., ge=0, le=65535)
    weight: float = Field(default=1.0, ge=0)
    healthy: bool = True
    enabled: bool = True
    ephemeral: bool = True
    cluster_name: str = "DEFAULT"
    instance_id: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)
    last_updated: float = 0.0

    @property
    def address(self) -> str:
        return f"{self.ip}:{self.port}"

    def with_health(self, healthy: bool, at: float) -> "Instance":
        """Return a copy with a new health flag and timestamp."""
        return self.model_copy(update={"healthy": healthy, "last_updated": at})

    @classmethod
    def from_registry(cls, service_name: str, host: dict[str, Any], fetched_at: float) -> "Instance":
        """Build an Instance from a Nacos "hosts" entry (camelCase keys)."""
        return cls(
            service_name=service_name,
            ip=host["ip"],
            port=host["port"],
            weight=host.get("weight", 1.0),
            healthy=host.get("healthy", True),
            enabled=host.get("enabled", True),
            ephemeral=host.get("ephemeral", True),
            cluster_name=host.get("clusterName") or "DEFAULT",
            instance_id=host.get("instanceId") or "",
            metadata={str(k): str(v) for k, v in (host.get("metadata") or {}).items()},
            last_updated=fetched_at,
        )


@dataclass(frozen=True)
class ServiceView:
    """Last-known instance list for one service.

    An empty `instances` tuple means the registry reported zero instances;
    "never fetched" is represented by the absence of a view.
    """

    service_name: str
    instances: tuple[Instance, ...]
    fetched_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.ttl

    @property
    def healthy_instances(self) -> tuple[Instance, ...]:
        return tuple(i for i in self.instances if i.healthy and i.enabled)
