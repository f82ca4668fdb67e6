"""Pytest fixtures for MongoDB integration tests."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from ratchet.integrations.mongodb import MongoConfiguration, MongoDocumentStore

# Assumes a single-node replica set is running locally on port 27017
LOCAL_MONGO_URI = "mongodb://localhost:27017/?replicaSet=rs0&directConnection=true"


@pytest_asyncio.fixture
async def mongo_config(request: pytest.FixtureRequest) -> AsyncIterator[MongoConfiguration]:
    """Create a MongoConfiguration on a fresh database, closed after the test."""
    config = MongoConfiguration(uri=LOCAL_MONGO_URI, database=f"test_{request.node.name}"[:63])
    await config.client.drop_database(config.database)
    try:
        yield config
    finally:
        await config.on_shutdown()


@pytest.fixture
def mongo_store(mongo_config: MongoConfiguration) -> MongoDocumentStore:
    return MongoDocumentStore(mongo_config)
