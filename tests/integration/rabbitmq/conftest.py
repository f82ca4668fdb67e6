"""Pytest fixtures for RabbitMQ integration tests.

A RabbitMQ broker is started once per session with testcontainers, so
these tests need a running Docker daemon.
"""

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from testcontainers.rabbitmq import RabbitMqContainer

from ratchet.integrations.rabbitmq import RabbitEventBus, RabbitSettings


@pytest.fixture(scope="session")
def rabbit_url() -> Iterator[str]:
    with RabbitMqContainer("rabbitmq:3.13") as container:
        host = container.get_container_host_ip()
        port = container.get_exposed_port(5672)
        yield f"amqp://guest:guest@{host}:{port}/"


@pytest_asyncio.fixture
async def rabbit_bus(
    rabbit_url: str, request: pytest.FixtureRequest
) -> AsyncIterator[RabbitEventBus]:
    """Create a connected bus whose queues are prefixed with the test name."""
    settings = RabbitSettings(
        url=rabbit_url,
        exchange_name=f"events.{request.node.name}",
        queue_prefix=f"{request.node.name}.",
        max_attempts=3,
        initial_delay=0.05,
    )
    bus = RabbitEventBus(settings)
    await bus.init()
    try:
        yield bus
    finally:
        await bus.terminate()
