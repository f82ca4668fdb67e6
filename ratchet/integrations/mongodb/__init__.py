"""MongoDB integration for ratchet.

This module provides the MongoDB implementation of the DocumentStore used by
the aggregate repository and the outbox, using the async PyMongo driver.

Installation:
    pip install ratchet[mongodb]

Usage:
    >>> from ratchet.integrations.mongodb import MongoConfiguration, MongoDocumentStore
    >>>
    >>> config = MongoConfiguration(
    ...     uri="mongodb://localhost:27017/?replicaSet=rs0",
    ...     database="shop",
    ... )
    >>> store = MongoDocumentStore(config)
    >>>
    >>> repository = AggregateRepository(store, ModelSerializer(Cart), RepositorySettings(collection="carts"))
    >>> await repository.initialize_schema()
"""

from .collection import IndexDirection, IndexedCollection, IndexSpec
from .config import MongoConfiguration
from .store import MongoDocumentStore

__all__ = [
    "IndexDirection",
    "IndexedCollection",
    "IndexSpec",
    "MongoConfiguration",
    "MongoDocumentStore",
]
