"""Last-known instance lists, one ServiceView per service."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

from nacos_naming.models.instance import Instance, ServiceView

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, ServiceView | None], None]
StaleHandler = Callable[[str], object]


class InstanceCache:
    """Stale-while-revalidate store of ServiceViews.

    get() never blocks: it returns whatever is held (possibly stale, possibly
    None) and hands stale or missing names to `on_stale`, which is expected
    to start a background refresh. put() swaps the whole view in one
    assignment and then notifies change listeners. The refresh coordinator
    holds lock(name) for every write it makes to an entry.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic, on_stale: StaleHandler | None = None):
        self._ttl = ttl
        self._clock = clock
        self._on_stale = on_stale
        self._views: dict[str, ServiceView] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[ChangeListener] = []

    def set_stale_handler(self, handler: StaleHandler | None) -> None:
        self._on_stale = handler

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def lock(self, service_name: str) -> asyncio.Lock:
        """Per-service lock serializing writers of one entry."""
        lock = self._locks.get(service_name)
        if lock is None:
            lock = self._locks[service_name] = asyncio.Lock()
        return lock

    def peek(self, service_name: str) -> ServiceView | None:
        """Current view without triggering a refresh."""
        return self._views.get(service_name)

    def get(self, service_name: str) -> ServiceView | None:
        """Current view; signals a refresh when it is stale or absent."""
        view = self._views.get(service_name)
        if view is None or view.is_stale(self._clock()):
            if self._on_stale is not None:
                self._on_stale(service_name)
        return view

    def put(self, service_name: str, instances: Iterable[Instance]) -> ServiceView:
        """Replace the view for a service with a fresh snapshot."""
        view = ServiceView(
            service_name=service_name,
            instances=tuple(instances),
            fetched_at=self._clock(),
            ttl=self._ttl,
        )
        self._views[service_name] = view
        logger.debug(f"[CACHE] put {service_name}: {len(view.instances)} instance(s), {len(view.healthy_instances)} healthy")
        self._notify(service_name, view)
        return view

    def set_health(self, service_name: str, ip: str, port: int, healthy: bool) -> bool:
        """Flip one instance's health flag by replacing it within its view.

        The view keeps its fetched_at so staleness is unaffected.

        Returns:
            True if a matching instance was found
        """
        view = self._views.get(service_name)
        if view is None:
            return False

        now_wall = time.time()
        found = False
        instances = []
        for inst in view.instances:
            if inst.ip == ip and inst.port == port:
                found = True
                if inst.healthy != healthy:
                    inst = inst.with_health(healthy, now_wall)
            instances.append(inst)
        if not found:
            return False

        updated = ServiceView(service_name=service_name, instances=tuple(instances), fetched_at=view.fetched_at, ttl=view.ttl)
        self._views[service_name] = updated
        logger.info(f"[CACHE] {service_name} {ip}:{port} marked {'healthy' if healthy else 'unhealthy'}")
        self._notify(service_name, updated)
        return True

    def remove(self, service_name: str) -> None:
        if self._views.pop(service_name, None) is not None:
            self._notify(service_name, None)
        self._locks.pop(service_name, None)

    def clear(self) -> None:
        names = list(self._views)
        self._views.clear()
        self._locks.clear()
        for name in names:
            self._notify(name, None)

    def service_names(self) -> list[str]:
        return list(self._views)

    def _notify(self, service_name: str, view: ServiceView | None) -> None:
        for listener in self._listeners:
            listener(service_name, view)
