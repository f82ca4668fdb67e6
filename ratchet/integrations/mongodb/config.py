"""MongoDB configuration using pydantic-settings."""

from functools import cached_property
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase


class MongoConfiguration(BaseSettings):
    """Configuration and factory for MongoDB resources.

    Implements the HasLifecycle protocol; the client is closed on shutdown.

    All settings can be configured via environment variables with the
    RATCHET_MONGO_ prefix. For example:
    - RATCHET_MONGO_URI=mongodb://localhost:27017/?replicaSet=rs0
    - RATCHET_MONGO_DATABASE=myapp

    Transactions require a replica set (a single-node one is enough).

    Attributes:
        uri: MongoDB connection URI.
        database: Database name to use.
        max_pool_size: Maximum connections in the client pool.
        server_selection_timeout_ms: How long to wait for a suitable server.

    Example:
        >>> config = MongoConfiguration(database="shop")
        >>> store = MongoDocumentStore(config)
        >>> await config.on_shutdown()
    """

    model_config = SettingsConfigDict(env_prefix="RATCHET_MONGO_")

    uri: str = "mongodb://localhost:27017/?replicaSet=rs0"
    database: str = "ratchet"
    max_pool_size: int = 100
    server_selection_timeout_ms: int = 30000

    @cached_property
    def client(self) -> AsyncMongoClient[dict[str, Any]]:
        """Get the MongoDB async client, created lazily and cached."""
        return AsyncMongoClient(
            self.uri,
            maxPoolSize=self.max_pool_size,
            serverSelectionTimeoutMS=self.server_selection_timeout_ms,
        )

    @cached_property
    def db(self) -> AsyncDatabase[dict[str, Any]]:
        """Get the configured database."""
        return self.client[self.database]

    async def on_startup(self) -> None:
        """No-op; connections are established lazily."""
        pass

    async def on_shutdown(self) -> None:
        """Close the MongoDB client if it was created."""
        if "client" in self.__dict__:
            await self.client.close()
            del self.__dict__["client"]
            self.__dict__.pop("db", None)
