"""Nacos Open API (v1) transport over a pooled httpx client."""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from nacos_naming.constants import ERROR_PREVIEW_MAX_LENGTH
from nacos_naming.errors import AuthError, RegistryRequestError
from nacos_naming.models.config import ClientConfig
from nacos_naming.models.instance import Instance
from nacos_naming.models.session import AuthToken, Session

logger = logging.getLogger(__name__)

LOGIN_PATH = "/nacos/v1/auth/login"
INSTANCE_LIST_PATH = "/nacos/v1/ns/instance/list"


class NacosHttpTransport:
    """Talks to a Nacos server over HTTP.

    The httpx.AsyncClient is the connection pool; it is created lazily so
    constructing a transport never opens a socket.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._http_transport = http_transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.endpoint,
                timeout=self._config.request_timeout_seconds,
                transport=self._http_transport,
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request, translating network failures into RegistryRequestError."""
        try:
            return await self._get_client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RegistryRequestError(f"{method} {path} timed out after {self._config.request_timeout_seconds}s") from e
        except httpx.HTTPError as e:
            raise RegistryRequestError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

    async def authenticate(self, username: str, password: str) -> AuthToken:
        """Log in and return the access token.

        With an empty username the registry is assumed to run without auth and
        a non-expiring empty token is returned without a request.
        """
        if not username:
            return AuthToken(access_token="", ttl_seconds=None)

        logger.debug(f"[HTTP] login user={username} endpoint={self._config.endpoint}")
        response = await self._request("POST", LOGIN_PATH, data={"username": username, "password": password})

        if response.status_code in (401, 403):
            raise AuthError(f"Registry rejected credentials for user '{username}' (HTTP {response.status_code})")
        if response.status_code != 200:
            raise RegistryRequestError(f"Login failed with HTTP {response.status_code}: {response.text[:ERROR_PREVIEW_MAX_LENGTH]}")

        try:
            body = response.json()
            token = body["accessToken"]
        except (ValueError, KeyError, TypeError) as e:
            raise RegistryRequestError(f"Unexpected login response: {response.text[:ERROR_PREVIEW_MAX_LENGTH]}") from e

        ttl = body.get("tokenTtl")
        return AuthToken(access_token=token, ttl_seconds=float(ttl) if ttl is not None else None)

    async def fetch_instances(self, session: Session, service_name: str, group_name: str) -> list[Instance]:
        """List every instance of a service, healthy or not."""
        params = {
            "serviceName": service_name,
            "groupName": group_name,
            "namespaceId": session.namespace_id,
            "healthyOnly": "false",
        }
        if session.token:
            params["accessToken"] = session.token

        response = await self._request("GET", INSTANCE_LIST_PATH, params=params)

        if response.status_code in (401, 403):
            raise AuthError(f"Registry rejected session token (HTTP {response.status_code})")
        if response.status_code == 404:
            logger.debug(f"[HTTP] service {group_name}/{service_name} not found, treating as empty")
            return []
        if response.status_code != 200:
            raise RegistryRequestError(
                f"Instance list for {service_name} failed with HTTP {response.status_code}: {response.text[:ERROR_PREVIEW_MAX_LENGTH]}"
            )

        try:
            hosts = response.json().get("hosts") or []
        except (ValueError, AttributeError) as e:
            raise RegistryRequestError(f"Unexpected instance list response: {response.text[:ERROR_PREVIEW_MAX_LENGTH]}") from e

        fetched_at = self._clock()
        try:
            return [Instance.from_registry(service_name, host, fetched_at) for host in hosts]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise RegistryRequestError(f"Malformed host entry for {service_name}: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
