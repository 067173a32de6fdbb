"""Session ownership: login, proactive re-login, teardown."""

import asyncio
import logging
import time
from collections.abc import Callable

from nacos_naming.errors import ClosedError, RegistryRequestError, UnreachableError
from nacos_naming.models.config import ClientConfig
from nacos_naming.models.session import Session
from nacos_naming.transport.base import NamingTransport
from nacos_naming.utils.retry import BackoffPolicy, SleepFn, call_with_backoff

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Keeps one live Session for the registry.

    ensure_session() is cheap when the current token is outside the grace
    window. Otherwise callers queue on a single lock so that only one login
    request is in flight; late arrivals reuse the session it produced.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: NamingTransport,
        policy: BackoffPolicy,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._config = config
        self._transport = transport
        self._policy = policy
        self._clock = clock
        self._sleep = sleep
        self._session: Session | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def session(self) -> Session | None:
        return self._session

    def _is_usable(self, session: Session | None) -> bool:
        return session is not None and not session.expires_within(self._clock(), self._config.auth_grace_seconds)

    async def ensure_session(self) -> Session:
        """Return a session whose token is valid beyond the grace window.

        Raises:
            AuthError: Credentials rejected (not retried)
            UnreachableError: Transport kept failing for the whole retry budget
            ClosedError: Manager was closed
        """
        if self._closed:
            raise ClosedError("Connection manager is closed")

        session = self._session
        if self._is_usable(session):
            return session  # type: ignore[return-value]

        async with self._lock:
            if self._closed:
                raise ClosedError("Connection manager is closed")
            # Another caller may have logged in while we waited
            if self._is_usable(self._session):
                return self._session  # type: ignore[return-value]
            self._session = await self._login()
            return self._session

    async def _login(self) -> Session:
        cfg = self._config
        reason = "initial" if self._session is None else "expiring"
        logger.info(f"[SESSION] Authenticating ({reason}) endpoint={cfg.endpoint} user={cfg.username or '<anonymous>'}")

        try:
            token = await call_with_backoff(
                lambda: self._transport.authenticate(cfg.username, cfg.password),
                self._policy,
                sleep=self._sleep,
            )
        except RegistryRequestError as e:
            logger.error(f"[SESSION] Registry unreachable after {self._policy.max_attempts} attempts: {e}")
            raise UnreachableError(f"Registry {cfg.endpoint} unreachable after {self._policy.max_attempts} attempts: {e}") from e

        expires_at = self._clock() + token.ttl_seconds if token.ttl_seconds is not None else None
        return Session(
            endpoint=cfg.endpoint,
            username=cfg.username,
            namespace_id=cfg.namespace_id,
            token=token.access_token,
            expires_at=expires_at,
        )

    def invalidate(self, session: Session | None = None) -> None:
        """Drop the current session so the next ensure_session() logs in again.

        When `session` is given, only that exact session is dropped; a newer
        one obtained concurrently is kept.
        """
        if session is None or self._session is session:
            logger.info("[SESSION] Session invalidated")
            self._session = None

    async def close(self) -> None:
        """Release the session and the transport's connections."""
        if self._closed:
            return
        self._closed = True
        self._session = None
        await self._transport.close()
        logger.debug("[SESSION] Closed")
