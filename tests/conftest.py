"""Central test fixtures - imports from the shared shop domain."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from ratchet.application import (
    AggregateRepository,
    DocumentOutbox,
    InMemoryDocumentStore,
    ModelSerializer,
    OutboxSettings,
    RepositorySettings,
)
from ratchet.testing import RecordingPublisher
from tests.fixtures.shop import Cart


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Create an in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def publisher() -> RecordingPublisher:
    """Create a publish callback that records published events."""
    return RecordingPublisher()


@pytest.fixture
def outbox_settings() -> OutboxSettings:
    """Outbox settings with a short sweep interval."""
    return OutboxSettings(monitoring_interval=0.05, claim_timeout=60.0)


@pytest_asyncio.fixture
async def outbox(
    store: InMemoryDocumentStore,
    publisher: RecordingPublisher,
    outbox_settings: OutboxSettings,
) -> AsyncIterator[DocumentOutbox]:
    """Create an outbox without starting its sweep."""
    outbox = DocumentOutbox(store, publisher, outbox_settings)
    yield outbox
    await outbox.terminate()


@pytest_asyncio.fixture
async def repository(
    store: InMemoryDocumentStore, outbox: DocumentOutbox
) -> AsyncIterator[AggregateRepository[Cart]]:
    """Create a cart repository wired to the outbox."""
    repository = AggregateRepository(
        store,
        ModelSerializer(Cart),
        RepositorySettings(collection="carts"),
        outbox=outbox,
    )
    await repository.initialize_schema()
    yield repository
    await repository.close()
