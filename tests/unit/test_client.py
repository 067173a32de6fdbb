"""Unit tests for the NamingClient facade."""

import asyncio

import pytest

from nacos_naming.client import NamingClient
from nacos_naming.errors import (
    AuthError,
    ClosedError,
    ConfigError,
    NoHealthyInstanceError,
    NoInstanceError,
    SelectionTimeoutError,
    UnreachableError,
)
from tests.fixtures.registry_fakes import host


class TestConstruction:
    """Config validation happens up front and nothing connects."""

    def test_valid_options_do_not_connect(self, fake_transport):
        client = NamingClient({"ipAddr": "127.0.0.1", "port": 8848, "namespaceId": "test"}, transport=fake_transport)

        assert client.config.ip_addr == "127.0.0.1"
        assert client.config.namespace_id == "test"
        assert fake_transport.auth_calls == 0
        assert fake_transport.fetch_calls == []

    @pytest.mark.parametrize(
        "options",
        [
            {"ipAddr": "", "port": 8848, "namespaceId": "test"},
            {"ipAddr": "   ", "port": 8848, "namespaceId": "test"},
            {"ipAddr": "127.0.0.1", "port": 0, "namespaceId": "test"},
            {"ipAddr": "127.0.0.1", "port": 65536, "namespaceId": "test"},
            {"ipAddr": "127.0.0.1", "port": 8848},
            {"port": 8848, "namespaceId": "test"},
        ],
    )
    def test_invalid_options_raise_config_error(self, options, fake_transport):
        with pytest.raises(ConfigError):
            NamingClient(options, transport=fake_transport)

    def test_keyword_options(self, fake_transport):
        client = NamingClient(ip_addr="10.1.1.1", port=8848, namespace_id="", transport=fake_transport)
        assert client.config.endpoint == "http://10.1.1.1:8848"

    def test_default_transport_is_http(self):
        from nacos_naming.transport.http import NacosHttpTransport

        client = NamingClient({"ipAddr": "127.0.0.1", "port": 8848, "namespaceId": "test"})
        assert isinstance(client._transport, NacosHttpTransport)


class TestScenarios:
    """End-to-end selection behaviour against the fake registry."""

    @pytest.mark.asyncio
    async def test_only_healthy_instance_is_returned(self, make_client, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1", healthy=True), host("10.0.0.2", healthy=False)])
        client = make_client()

        for _ in range(200):
            instance = await client.select_one_healthy_instance("svc-a")
            assert instance.ip == "10.0.0.1"
            assert instance.port == 9000

    @pytest.mark.asyncio
    async def test_zero_instances_raises_no_instance(self, make_client, fake_transport):
        fake_transport.register("svc-b", [])
        client = make_client()

        with pytest.raises(NoInstanceError):
            await client.select_one_healthy_instance("svc-b")

        # Zero instances is a populated (empty) view, not "never fetched"
        view = client.cache.peek("DEFAULT_GROUP@@svc-b")
        assert view is not None
        assert view.instances == ()

    @pytest.mark.asyncio
    async def test_failing_refresh_serves_last_known_until_ceiling(self, make_client, fake_transport, fake_clock):
        fake_transport.register("svc-c", [host("10.0.0.3")])
        client = make_client(cache_ttl_seconds=10, staleness_ceiling_seconds=60)

        first = await client.select_one_healthy_instance("svc-c")
        assert first.ip == "10.0.0.3"

        fake_transport.fail("svc-c")
        for _ in range(5):
            fake_clock.advance(11)  # past TTL, below the ceiling
            instance = await client.select_one_healthy_instance("svc-c")
            assert instance.ip == "10.0.0.3"
            await client.coordinator.drain()

        fake_clock.advance(10)  # 65s since the last good fetch
        with pytest.raises(NoInstanceError, match="staleness ceiling"):
            await client.select_one_healthy_instance("svc-c")

    @pytest.mark.asyncio
    async def test_all_unhealthy_raises(self, make_client, fake_transport):
        fake_transport.register("svc-d", [host("10.0.0.1", healthy=False)])
        client = make_client()

        with pytest.raises(NoHealthyInstanceError):
            await client.select_one_healthy_instance("svc-d")

    @pytest.mark.asyncio
    async def test_all_unhealthy_with_fallback_returns_instance(self, make_client, fake_transport):
        fake_transport.register("svc-d", [host("10.0.0.1", healthy=False)])
        client = make_client(fallback_to_unhealthy=True)

        instance = await client.select_one_healthy_instance("svc-d")
        assert instance.ip == "10.0.0.1"
        assert instance.healthy is False

    @pytest.mark.asyncio
    async def test_group_is_passed_to_transport(self, make_client, fake_transport):
        fake_transport.register("svc-g", [host("10.0.0.9")], group="blue")
        client = make_client()

        instance = await client.select_one_healthy_instance("svc-g", group_name="blue")

        assert instance.ip == "10.0.0.9"
        assert fake_transport.fetch_calls == [("blue", "svc-g")]

    @pytest.mark.asyncio
    async def test_empty_service_name_rejected(self, make_client):
        client = make_client()
        with pytest.raises(NoInstanceError):
            await client.select_one_healthy_instance("")


class TestCaching:
    """Stale-while-revalidate behaviour seen through the facade."""

    @pytest.mark.asyncio
    async def test_fresh_cache_does_not_refetch(self, make_client, fake_transport, fake_clock):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        client = make_client()

        for _ in range(50):
            await client.select_one_healthy_instance("svc-a")
            fake_clock.advance(0.1)

        assert fake_transport.fetch_count("svc-a") == 1
        assert fake_transport.auth_calls == 1

    @pytest.mark.asyncio
    async def test_stale_cache_returns_immediately_and_refreshes_in_background(self, make_client, fake_transport, fake_clock):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        client = make_client(cache_ttl_seconds=10)
        await client.select_one_healthy_instance("svc-a")

        fake_transport.register("svc-a", [host("10.0.0.2")])
        fake_clock.advance(11)

        # Served from the stale view while the refresh is scheduled
        stale = await client.select_one_healthy_instance("svc-a")
        assert stale.ip == "10.0.0.1"
        assert client.coordinator.is_pending("DEFAULT_GROUP@@svc-a")

        await client.coordinator.drain()
        fresh = await client.select_one_healthy_instance("svc-a")
        assert fresh.ip == "10.0.0.2"

    @pytest.mark.asyncio
    async def test_concurrent_first_queries_share_one_fetch(self, make_client, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        client = make_client()

        results = await asyncio.gather(*[client.select_one_healthy_instance("svc-a") for _ in range(20)])

        assert {r.ip for r in results} == {"10.0.0.1"}
        assert fake_transport.fetch_count("svc-a") == 1
        assert fake_transport.auth_calls == 1


class TestFirstFetchFailures:
    """Errors surfaced on the blocking first-fetch path."""

    @pytest.mark.asyncio
    async def test_first_fetch_timeout(self, make_client, fake_transport):
        fake_transport.register("svc-slow", [host("10.0.0.1")])
        fake_transport.fetch_gate = asyncio.Event()
        client = make_client(first_fetch_timeout_seconds=0.05)

        with pytest.raises(SelectionTimeoutError):
            await client.select_one_healthy_instance("svc-slow")

        # The shared fetch survives the waiter's timeout
        assert client.coordinator.is_pending("DEFAULT_GROUP@@svc-slow")
        fake_transport.fetch_gate.set()
        await client.coordinator.drain()
        instance = await client.select_one_healthy_instance("svc-slow")
        assert instance.ip == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_timeout_is_builtin_timeout_error(self, make_client, fake_transport):
        fake_transport.fetch_gate = asyncio.Event()
        client = make_client(first_fetch_timeout_seconds=0.01)

        with pytest.raises(TimeoutError):
            await client.select_one_healthy_instance("svc-slow")
        fake_transport.fetch_gate.set()

    @pytest.mark.asyncio
    async def test_unreachable_registry(self, make_client, fake_transport, recorded_sleep):
        fake_transport.fail("svc-x")
        client = make_client()

        with pytest.raises(UnreachableError):
            await client.select_one_healthy_instance("svc-x")

        assert fake_transport.fetch_count("svc-x") == 5
        assert recorded_sleep.delays == [0.2, 0.4, 0.8, 1.6]

    @pytest.mark.asyncio
    async def test_bad_credentials(self, make_client, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        fake_transport.auth_failures = [AuthError("bad password")]
        client = make_client(username="nacos", password="wrong")

        with pytest.raises(AuthError):
            await client.select_one_healthy_instance("svc-a")
        assert fake_transport.fetch_calls == []


class TestLifecycle:
    """close() and subscription management."""

    @pytest.mark.asyncio
    async def test_select_after_close_raises(self, make_client, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        client = make_client()
        await client.select_one_healthy_instance("svc-a")

        await client.close()

        assert client.closed
        assert fake_transport.closed
        assert client.cache.service_names() == []
        with pytest.raises(ClosedError):
            await client.select_one_healthy_instance("svc-a")

    @pytest.mark.asyncio
    async def test_close_interrupts_in_flight_first_fetch(self, make_client, fake_transport):
        fake_transport.fetch_gate = asyncio.Event()
        client = make_client(first_fetch_timeout_seconds=5)

        waiter = asyncio.create_task(client.select_one_healthy_instance("svc-a"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await client.close()

        with pytest.raises(ClosedError):
            await waiter

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_client):
        client = make_client()
        await client.close()
        await client.close()
        assert client.closed

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        async with NamingClient({"ipAddr": "127.0.0.1", "port": 8848, "namespaceId": "test"}, transport=fake_transport) as client:
            await client.select_one_healthy_instance("svc-a")
            assert client.coordinator.running

        assert client.closed
        assert not client.coordinator.running

    @pytest.mark.asyncio
    async def test_unsubscribe_evicts_after_last_reference(self, make_client, fake_transport):
        fake_transport.register("svc-a", [host("10.0.0.1")])
        client = make_client()

        await client.subscribe("svc-a")
        await client.subscribe("svc-a")
        key = "DEFAULT_GROUP@@svc-a"
        assert client.coordinator.subscriptions[key].ref_count == 2

        client.unsubscribe("svc-a")
        assert client.cache.peek(key) is not None

        client.unsubscribe("svc-a")
        assert not client.coordinator.is_subscribed(key)
        assert client.cache.peek(key) is None
