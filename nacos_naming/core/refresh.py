"""Background refresh: subscriptions, periodic ticks and deduplicated fetches."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from nacos_naming.core.cache import InstanceCache
from nacos_naming.core.connection import ConnectionManager
from nacos_naming.errors import AuthError, ClosedError, RegistryRequestError, SelectionTimeoutError, UnreachableError
from nacos_naming.models.config import ClientConfig
from nacos_naming.models.instance import Instance, ServiceView, split_grouped_name
from nacos_naming.transport.base import NamingTransport
from nacos_naming.utils.retry import BackoffPolicy, SleepFn, call_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """Interest in one service; removed when ref_count drops to zero."""

    service_name: str
    ref_count: int = 0


class RefreshCoordinator:
    """Owns every fetch from the registry.

    At most one fetch task exists per service name (`_pending`). A failed
    fetch leaves the cached view untouched: callers keep getting the last
    good instance list until a refresh succeeds.
    """

    def __init__(
        self,
        config: ClientConfig,
        cache: InstanceCache,
        connection: ConnectionManager,
        transport: NamingTransport,
        policy: BackoffPolicy,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._config = config
        self._cache = cache
        self._connection = connection
        self._transport = transport
        self._policy = policy
        self._clock = clock
        self._sleep = sleep
        self._subscriptions: dict[str, Subscription] = {}
        self._pending: dict[str, asyncio.Task[ServiceView]] = {}
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, service_name: str) -> Subscription:
        sub = self._subscriptions.get(service_name)
        if sub is None:
            sub = self._subscriptions[service_name] = Subscription(service_name)
            logger.info(f"[REFRESH] Subscribed to {service_name}")
        sub.ref_count += 1
        return sub

    def unsubscribe(self, service_name: str) -> None:
        """Drop one reference; the last one cancels refreshes and evicts the view."""
        sub = self._subscriptions.get(service_name)
        if sub is None:
            return
        sub.ref_count -= 1
        if sub.ref_count > 0:
            return

        del self._subscriptions[service_name]
        task = self._pending.pop(service_name, None)
        if task is not None and not task.done():
            task.cancel()
        self._cache.remove(service_name)
        logger.info(f"[REFRESH] Unsubscribed from {service_name}")

    def is_subscribed(self, service_name: str) -> bool:
        return service_name in self._subscriptions

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    # =========================================================================
    # Fetching
    # =========================================================================

    def is_pending(self, service_name: str) -> bool:
        task = self._pending.get(service_name)
        return task is not None and not task.done()

    def schedule_refresh(self, service_name: str) -> asyncio.Task[ServiceView]:
        """Start a fetch for `service_name` unless one is already running.

        Returns:
            The task fetching the service (new or already in flight)

        Raises:
            ClosedError: Coordinator was closed
        """
        if self._closed:
            raise ClosedError("Refresh coordinator is closed")

        task = self._pending.get(service_name)
        if task is not None and not task.done():
            return task

        task = asyncio.get_running_loop().create_task(self._refresh(service_name), name=f"refresh:{service_name}")
        self._pending[service_name] = task
        task.add_done_callback(lambda t: self._on_refresh_done(service_name, t))
        return task

    def _on_refresh_done(self, service_name: str, task: asyncio.Task[ServiceView]) -> None:
        if self._pending.get(service_name) is task:
            del self._pending[service_name]
        # Mark the exception as retrieved; _refresh already logged it
        if not task.cancelled():
            task.exception()

    async def _refresh(self, service_name: str) -> ServiceView:
        # Held across fetch and put so a push arriving mid-fetch is applied after it
        async with self._cache.lock(service_name):
            return await self._fetch_and_store(service_name)

    async def _fetch_and_store(self, service_name: str) -> ServiceView:
        try:
            instances = await call_with_backoff(lambda: self._fetch_once(service_name), self._policy, sleep=self._sleep)
        except RegistryRequestError as e:
            kept = self._cache.peek(service_name)
            keep_note = f"keeping {len(kept.instances)} cached instance(s)" if kept is not None else "nothing cached"
            logger.warning(f"[REFRESH] Refresh of {service_name} failed after {self._policy.max_attempts} attempts ({keep_note}): {e}")
            raise UnreachableError(f"Could not fetch instances for '{service_name}': {e}") from e
        except (AuthError, UnreachableError, ClosedError) as e:
            logger.warning(f"[REFRESH] Refresh of {service_name} failed, cache untouched: {type(e).__name__}: {e}")
            raise

        if self._closed:
            raise ClosedError("Refresh coordinator closed during fetch")
        return self._cache.put(service_name, instances)

    async def _fetch_once(self, service_name: str) -> list[Instance]:
        """One fetch attempt. A rejected token triggers a single re-login."""
        group_name, bare_name = split_grouped_name(service_name)
        session = await self._connection.ensure_session()
        try:
            return await self._transport.fetch_instances(session, bare_name, group_name)
        except AuthError:
            logger.info(f"[REFRESH] Token rejected while fetching {service_name}, re-authenticating")
            self._connection.invalidate(session)
            session = await self._connection.ensure_session()
            return await self._transport.fetch_instances(session, bare_name, group_name)

    async def wait_for_first_fetch(self, service_name: str, timeout: float) -> ServiceView:
        """Block until the service has a view, starting a fetch if needed.

        Raises:
            SelectionTimeoutError: No fetch finished within `timeout` seconds
            ClosedError: Coordinator closed while waiting
            AuthError, UnreachableError: The fetch itself failed
        """
        view = self._cache.peek(service_name)
        if view is not None:
            return view

        task = self.schedule_refresh(service_name)
        try:
            # shield: a timed-out waiter must not cancel the shared fetch
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as e:
            raise SelectionTimeoutError(f"First fetch of '{service_name}' did not complete within {timeout}s") from e
        except asyncio.CancelledError:
            if self._closed or task.cancelled():
                raise ClosedError(f"Client closed while fetching '{service_name}'") from None
            raise

    def _accepts_updates(self, service_name: str) -> bool:
        return not self._closed and service_name in self._subscriptions

    async def apply_push(self, service_name: str, instances: Iterable[Instance]) -> ServiceView | None:
        """Apply an instance list pushed by the registry for a subscribed service.

        Waits for an in-flight fetch of the same service, so the pushed list
        is never overwritten by an older fetch result.
        """
        instances = list(instances)
        async with self._cache.lock(service_name):
            if not self._accepts_updates(service_name):
                logger.debug(f"[REFRESH] Ignoring push for unsubscribed {service_name}")
                return None
            return self._cache.put(service_name, instances)

    async def apply_health(self, service_name: str, ip: str, port: int, healthy: bool) -> bool:
        """Apply a pushed health change for one instance of a subscribed service."""
        async with self._cache.lock(service_name):
            if not self._accepts_updates(service_name):
                return False
            return self._cache.set_health(service_name, ip, port, healthy)

    # =========================================================================
    # Timer
    # =========================================================================

    def tick(self) -> list[asyncio.Task[ServiceView]]:
        """Schedule a fetch for every subscription whose view is stale or absent."""
        now = self._clock()
        scheduled = []
        for name in list(self._subscriptions):
            view = self._cache.peek(name)
            if view is None or view.is_stale(now):
                scheduled.append(self.schedule_refresh(name))
        if scheduled:
            logger.debug(f"[REFRESH] tick scheduled {len(scheduled)} refresh(es)")
        return scheduled

    def start(self) -> None:
        """Start the periodic timer (idempotent). Needs a running event loop."""
        if self._closed or (self._timer is not None and not self._timer.done()):
            return
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(), name="refresh-timer")
        logger.debug(f"[REFRESH] Timer started, interval={self._config.refresh_interval_seconds}s")

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _run_timer(self) -> None:
        interval = self._config.refresh_interval_seconds
        while not self._closed:
            await asyncio.sleep(interval)
            self.tick()

    async def drain(self) -> None:
        """Wait for every in-flight fetch to settle (errors are swallowed here, already logged)."""
        while pending := [t for t in self._pending.values() if not t.done()]:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Cancel the timer and every pending fetch."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._pending.values())
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._pending.clear()
        self._subscriptions.clear()
        self._timer = None
        logger.debug(f"[REFRESH] Closed, cancelled {len(tasks)} task(s)")
