"""MongoDB implementation of the DocumentStore.

Uses PyMongo's async API. Transactions run through
``AsyncClientSession.with_transaction``, which aborts on error and retries
the callback on transient write conflicts; duplicate key errors are
translated to ``UniqueKeyViolation`` so callers stay driver-agnostic.
"""

from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from ratchet.application.store import (
    Document,
    DocumentStore,
    Filter,
    UniqueKeyViolation,
    UpdateResult,
    new_document_id,
)

from .collection import IndexDirection, IndexedCollection, IndexSpec
from .config import MongoConfiguration

T = TypeVar("T")

MONGODB_DUPLICATE_KEY_ERROR = 11000
TRANSIENT_TRANSACTION_ERROR = "TransientTransactionError"


@contextmanager
def translate_duplicate_keys() -> Iterator[None]:
    """Re-raise MongoDB duplicate key failures as ``UniqueKeyViolation``."""
    try:
        yield
    except DuplicateKeyError as err:
        raise UniqueKeyViolation(str(err)) from err
    except BulkWriteError as err:
        write_errors = err.details.get("writeErrors", [])
        if any(error.get("code") == MONGODB_DUPLICATE_KEY_ERROR for error in write_errors):
            raise UniqueKeyViolation(str(err)) from err
        raise


class MongoDocumentStore(DocumentStore):
    """MongoDB-backed document store.

    Document ids are ULID strings stored in ``_id``, including documents
    created by upserts. Transactions require a replica set.

    Example:
        >>> config = MongoConfiguration(uri="mongodb://localhost:27017/?replicaSet=rs0")
        >>> store = MongoDocumentStore(config)
        >>> await store.ensure_unique_index("carts", "id")
        >>>
        >>> async def create(session):
        ...     await store.insert_many("carts", [{"id": "cart-1"}], session)
        >>>
        >>> await store.run_in_transaction(create)
    """

    def __init__(self, config: MongoConfiguration) -> None:
        self.config = config
        self._collections: dict[str, IndexedCollection] = {}

    def collection(self, name: str) -> IndexedCollection:
        """Get the wrapped collection ``name``."""
        if name not in self._collections:
            self._collections[name] = IndexedCollection(self.config.db[name])
        return self._collections[name]

    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        async with self.config.client.start_session() as session:
            with translate_duplicate_keys():
                result: T = await session.with_transaction(callback)
                return result

    def is_transient(self, error: BaseException) -> bool:
        return isinstance(error, PyMongoError) and error.has_error_label(
            TRANSIENT_TRANSACTION_ERROR
        )

    async def ensure_unique_index(self, collection: str, field: str) -> None:
        wrapped = self.collection(collection)
        wrapped.add_index(IndexSpec(keys=[(field, IndexDirection.ASC)], unique=True))
        await wrapped.ensure_indexes()

    async def ensure_index(self, collection: str, *fields: str) -> None:
        """Create a non-unique compound index on ``fields``."""
        wrapped = self.collection(collection)
        wrapped.add_index(IndexSpec(keys=[(field, IndexDirection.ASC) for field in fields]))
        await wrapped.ensure_indexes()

    async def find_one(
        self, collection: str, filter: Filter, session: Any = None
    ) -> Document | None:
        return await self.collection(collection).find_one(filter, session=session)

    async def find(self, collection: str, filter: Filter, session: Any = None) -> list[Document]:
        return await self.collection(collection).find(filter, session=session)

    async def find_ids(self, collection: str, filter: Filter, session: Any = None) -> list[str]:
        documents = await self.collection(collection).find(
            filter, projection={"_id": 1}, session=session
        )
        return [str(document["_id"]) for document in documents]

    async def insert_many(
        self, collection: str, documents: list[Document], session: Any = None
    ) -> list[str]:
        prepared = [{"_id": new_document_id(), **document} for document in documents]
        with translate_duplicate_keys():
            ids = await self.collection(collection).insert_many(prepared, session=session)
        return [str(document_id) for document_id in ids]

    async def update_one(
        self,
        collection: str,
        filter: Filter,
        changes: Document,
        *,
        session: Any = None,
        upsert: bool = False,
        set_on_insert: Document | None = None,
    ) -> UpdateResult:
        update: dict[str, Any] = {"$set": changes}
        on_insert = dict(set_on_insert or {})
        if upsert and "_id" not in filter and "_id" not in changes:
            on_insert.setdefault("_id", new_document_id())
        if on_insert:
            update["$setOnInsert"] = on_insert

        with translate_duplicate_keys():
            return await self.collection(collection).update_one(
                filter, update, upsert=upsert, session=session
            )
