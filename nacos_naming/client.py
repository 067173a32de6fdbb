"""Public entry point: construct once, resolve healthy instances many times."""

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from typing import Any

from nacos_naming.core.cache import InstanceCache
from nacos_naming.core.connection import ConnectionManager
from nacos_naming.core.refresh import RefreshCoordinator
from nacos_naming.core.selector import HealthSelector
from nacos_naming.errors import ClosedError, NoInstanceError
from nacos_naming.models.config import ClientConfig
from nacos_naming.models.instance import Instance, grouped_name
from nacos_naming.transport.base import NamingTransport
from nacos_naming.transport.http import NacosHttpTransport
from nacos_naming.utils.retry import BackoffPolicy, SleepFn

logger = logging.getLogger(__name__)


class NamingClient:
    """Resolves one healthy instance of a named service.

    Construction only validates options; the registry is contacted on the
    first query. Each client owns its session, cache and refresh timer, and
    close() releases all of them.

    Example:
        async with NamingClient({"ipAddr": "127.0.0.1", "port": 8848, "namespaceId": "test"}) as client:
            instance = await client.select_one_healthy_instance("eff-pts-agent")
    """

    def __init__(
        self,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        transport: NamingTransport | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        **options: Any,
    ):
        """
        Args:
            config: ClientConfig or option mapping (ipAddr/ip_addr, port, username,
                    password, namespaceId/namespace_id, ...)
            transport: Registry transport (defaults to NacosHttpTransport)
            rng: Random source for weighted selection
            clock: Monotonic time source for TTL and session expiry
            sleep: Sleep used between retries
            **options: Extra options overriding `config`

        Raises:
            ConfigError: If options are missing or invalid
        """
        self.config = ClientConfig.build(config, **options)
        self._clock = clock
        self._closed = False

        self._transport = transport or NacosHttpTransport(self.config)
        policy = BackoffPolicy(
            base=self.config.retry_base_seconds,
            cap=self.config.retry_cap_seconds,
            max_attempts=self.config.max_retries,
        )

        self._connection = ConnectionManager(self.config, self._transport, policy, clock=clock, sleep=sleep)
        self._cache = InstanceCache(ttl=self.config.cache_ttl_seconds, clock=clock)
        self._coordinator = RefreshCoordinator(
            self.config, self._cache, self._connection, self._transport, policy, clock=clock, sleep=sleep
        )
        self._cache.set_stale_handler(self._coordinator.schedule_refresh)
        self._selector = HealthSelector(self._cache, rng=rng, fallback_to_unhealthy=self.config.fallback_to_unhealthy)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cache(self) -> InstanceCache:
        return self._cache

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedError("NamingClient is closed")

    def _key(self, service_name: str, group_name: str | None) -> str:
        if not service_name:
            raise NoInstanceError("Service name must not be empty")
        return grouped_name(service_name, group_name or self.config.group_name)

    async def select_one_healthy_instance(self, service_name: str, group_name: str | None = None) -> Instance:
        """Return one healthy instance of a service.

        The first query for a service subscribes to it and waits for the
        initial fetch. Later queries are served from cache; a stale entry is
        returned immediately while a background refresh runs.

        Args:
            service_name: Service to resolve
            group_name: Registry group (defaults to the configured group)

        Returns:
            The selected Instance

        Raises:
            NoInstanceError: Unknown/empty service, or cached data past the staleness ceiling
            NoHealthyInstanceError: All instances unhealthy and fallback disabled
            SelectionTimeoutError: First fetch exceeded first_fetch_timeout_seconds
            AuthError, UnreachableError: First fetch failed
            ClosedError: Client closed before or during the call
        """
        self._ensure_open()
        key = self._key(service_name, group_name)
        self._coordinator.start()

        if not self._coordinator.is_subscribed(key):
            self._coordinator.subscribe(key)

        view = self._cache.get(key)
        if view is None:
            view = await self._coordinator.wait_for_first_fetch(key, self.config.first_fetch_timeout_seconds)
            self._ensure_open()

        age = view.age(self._clock())
        if age > self.config.staleness_ceiling_seconds:
            raise NoInstanceError(
                f"Cached instances for '{key}' are {age:.1f}s old, beyond the "
                f"{self.config.staleness_ceiling_seconds}s staleness ceiling; registry refreshes are failing"
            )

        return self._selector.select_one(key)

    async def subscribe(self, service_name: str, group_name: str | None = None) -> None:
        """Hold a reference on a service and make sure its first fetch is done."""
        self._ensure_open()
        key = self._key(service_name, group_name)
        self._coordinator.start()
        self._coordinator.subscribe(key)
        await self._coordinator.wait_for_first_fetch(key, self.config.first_fetch_timeout_seconds)

    def unsubscribe(self, service_name: str, group_name: str | None = None) -> None:
        """Release a reference; the last one stops refreshing and evicts the cache entry."""
        self._coordinator.unsubscribe(self._key(service_name, group_name))

    async def close(self) -> None:
        """Cancel background work, drop cached data and release the session (idempotent)."""
        if self._closed:
            return
        self._closed = True
        await self._coordinator.close()
        self._cache.clear()
        await self._connection.close()
        logger.info(f"[CLIENT] Closed client for {self.config.endpoint}")

    async def __aenter__(self) -> "NamingClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
