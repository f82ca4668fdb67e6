"""MongoDB collection wrapper with index management and operation logging.

This module provides an IndexedCollection class that wraps a MongoDB
AsyncCollection with lazy index creation, session pass-through and a debug
log line for every operation.
"""

import logging
from datetime import datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection

from ...application.store import UpdateResult

LOGGER = logging.getLogger(__name__)

MAX_LOGGED_STRING = 100


def loggable(data: Any) -> Any:
    """Make a value safe and short enough to log.

    Long strings are truncated, datetimes rendered as ISO strings and
    sessions replaced by a placeholder.
    """
    if isinstance(data, str):
        if len(data) > MAX_LOGGED_STRING:
            return data[:MAX_LOGGED_STRING] + "...(more chars)"
        return data
    if isinstance(data, datetime):
        return data.isoformat()
    if isinstance(data, AsyncClientSession):
        return "(MongoSession instance)"
    if isinstance(data, (list, tuple)):
        return [loggable(item) for item in data]
    if isinstance(data, dict):
        return {key: loggable(value) for key, value in data.items()}
    return data


class IndexDirection(IntEnum):
    """Sort direction for MongoDB index fields."""

    ASC = ASCENDING
    """Ascending order (1)."""

    DESC = DESCENDING
    """Descending order (-1)."""


class IndexSpec(BaseModel):
    """Specification for a MongoDB index.

    Example:
        >>> # Unique index on the aggregate id
        >>> IndexSpec(keys=[("id", IndexDirection.ASC)], unique=True)
        >>>
        >>> # Compound index for the outbox sweep
        >>> IndexSpec(keys=[("status", IndexDirection.ASC), ("contextName", IndexDirection.ASC)])
    """

    keys: list[tuple[str, IndexDirection]]
    """(field_name, direction) tuples."""

    unique: bool = False
    """If True, enforce uniqueness."""

    async def apply(self, collection: AsyncCollection[dict[str, Any]]) -> None:
        """Apply this index specification to a collection."""
        kwargs: dict[str, Any] = {}
        if self.unique:
            kwargs["unique"] = True

        name = await collection.create_index(self.keys, **kwargs)
        LOGGER.debug(f"createIndex {loggable(self.keys)} {kwargs}. Created {name}")


class IndexedCollection:
    """A MongoDB collection wrapper with automatic index management.

    IndexedCollection wraps an AsyncCollection and handles:
    - Lazy index creation (indexes created on first use, outside any session)
    - Session pass-through so operations can join a transaction
    - Debug logging of every operation with its filter and outcome

    Example:
        >>> collection = IndexedCollection(
        ...     config.db["carts"],
        ...     indexes=[IndexSpec(keys=[("id", IndexDirection.ASC)], unique=True)],
        ... )
        >>> await collection.insert_many([{"id": "cart-1"}])
        >>> await collection.find_one({"id": "cart-1"})
    """

    def __init__(
        self,
        collection: AsyncCollection[dict[str, Any]],
        indexes: list[IndexSpec] | None = None,
    ) -> None:
        self._collection = collection
        self._indexes = indexes or []
        self._indexes_created = False

    @property
    def name(self) -> str:
        return self._collection.name

    def add_index(self, spec: IndexSpec) -> None:
        """Register an additional index, created on the next operation."""
        if spec not in self._indexes:
            self._indexes.append(spec)
            self._indexes_created = False

    async def ensure_indexes(self) -> None:
        """Create indexes if not already created."""
        if self._indexes_created:
            return

        for spec in self._indexes:
            await spec.apply(self._collection)

        self._indexes_created = True

    # ========== Find Operations ==========

    async def find_one(
        self,
        filter: dict[str, Any],
        projection: dict[str, Any] | None = None,
        session: AsyncClientSession | None = None,
    ) -> dict[str, Any] | None:
        await self.ensure_indexes()
        result: dict[str, Any] | None = await self._collection.find_one(
            filter, projection=projection, session=session
        )
        LOGGER.debug(f"{self.name}.findOne {loggable(filter)}. Found {loggable(result)}")
        return result

    async def find(
        self,
        filter: dict[str, Any],
        projection: dict[str, Any] | None = None,
        session: AsyncClientSession | None = None,
    ) -> list[dict[str, Any]]:
        await self.ensure_indexes()
        cursor = self._collection.find(filter, projection=projection, session=session)
        documents = [doc async for doc in cursor]
        LOGGER.debug(f"{self.name}.find {loggable(filter)}. Found {len(documents)} documents")
        return documents

    # ========== Insert Operations ==========

    async def insert_many(
        self,
        documents: list[dict[str, Any]],
        session: AsyncClientSession | None = None,
    ) -> list[Any]:
        await self.ensure_indexes()
        result = await self._collection.insert_many(documents, session=session)
        LOGGER.debug(f"{self.name}.insertMany {loggable(documents)}. Inserted {result.inserted_ids}")
        return list(result.inserted_ids)

    # ========== Update Operations ==========

    async def update_one(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        upsert: bool = False,
        session: AsyncClientSession | None = None,
    ) -> UpdateResult:
        await self.ensure_indexes()
        result = await self._collection.update_one(
            filter, update, upsert=upsert, session=session
        )
        outcome = UpdateResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=result.upserted_id,
        )
        LOGGER.debug(
            f"{self.name}.updateOne {loggable(filter)} {loggable(update)}. "
            f"Updated {outcome.model_dump()}"
        )
        return outcome
