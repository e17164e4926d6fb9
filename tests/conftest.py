"""Pytest configuration and shared fixtures."""

import pytest

from valu_api import MockHostChannel, ValuApi


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def channel():
    """In-memory host channel."""
    return MockHostChannel()


@pytest.fixture
def api(channel):
    """Client attached to the channel, not yet connected."""
    client = ValuApi(channel)
    yield client
    client.close()


@pytest.fixture
def connected_api(channel, api):
    """Client that has received api:ready from the host."""
    channel.send_ready(application_id="valu-host")
    return api
