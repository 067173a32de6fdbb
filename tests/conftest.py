"""Pytest configuration for nacos_naming tests."""

import random
from typing import Any

import pytest

from nacos_naming.client import NamingClient
from nacos_naming.models.config import ClientConfig
from tests.fixtures.registry_fakes import FakeClock, FakeTransport, RecordingSleep

BASE_OPTIONS = {"ipAddr": "127.0.0.1", "port": 8848, "namespaceId": "test"}


@pytest.fixture
def client_config():
    return ClientConfig.build(BASE_OPTIONS)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def recorded_sleep():
    return RecordingSleep()


@pytest.fixture
async def make_client(fake_transport, fake_clock, recorded_sleep):
    """Factory for NamingClients wired to the fakes; closes them after the test."""
    clients: list[NamingClient] = []

    def _make(**options: Any) -> NamingClient:
        client = NamingClient(
            {**BASE_OPTIONS, **options},
            transport=fake_transport,
            rng=random.Random(1234),
            clock=fake_clock,
            sleep=recorded_sleep,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


@pytest.fixture
def isolated_home(tmp_path, monkeypatch):
    """Point Path.home() at an empty directory so no user config leaks in."""
    monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path)
    return tmp_path


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
