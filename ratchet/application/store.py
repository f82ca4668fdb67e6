"""Versioned document store abstraction with an in-memory backend.

The document store is the only shared mutable resource of the repository
and the outbox. All cross-process mutual exclusion is delegated to it:
transactions group the writes of one save, and the atomic conditional
update (``update_one`` with a filter on the old value) acts as the
compare-and-swap primitive behind optimistic locking and outbox claims.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel
from ulid import ULID

from ..domain.exceptions import RatchetError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Document = dict[str, Any]
Filter = dict[str, Any]


class UniqueKeyViolation(RatchetError):
    """Raised when a write would break a unique index."""


class WriteConflict(RatchetError):
    """Raised when a transaction writes a document locked by another one.

    Transient: ``run_in_transaction`` aborts and retries the transaction.
    """


class UpdateResult(BaseModel):
    """Result of an update operation."""

    matched_count: int
    """Number of documents matched by the filter (0 or 1)."""

    modified_count: int
    """Number of documents actually changed."""

    upserted_id: Any | None = None
    """ID of the inserted document when the update upserted."""


class DocumentStore(ABC):
    """Transactional access to named document collections.

    Every write method accepts an optional ``session``, the handle passed to
    the callback of ``run_in_transaction``. Writes with a session become
    visible to others only when the transaction commits; writes without one
    are committed immediately.

    Filters are equality maps (``{"status": "scheduled"}``, where ``None``
    also matches a missing field) plus ``{"field": {"$lt": value}}``
    comparisons.
    """

    @abstractmethod
    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        """Run ``callback(session)`` inside a single transaction.

        Commits when the callback returns, aborts when it raises. Transient
        write conflicts abort and re-run the callback.

        Raises:
            UniqueKeyViolation: If a write violated a unique index.
        """
        ...

    @abstractmethod
    async def ensure_unique_index(self, collection: str, field: str) -> None:
        """Declare ``field`` unique within ``collection``."""
        ...

    async def ensure_index(self, collection: str, *fields: str) -> None:
        """Declare a lookup index on ``fields``. Stores without indexes ignore it."""
        return None

    def is_transient(self, error: BaseException) -> bool:
        """Whether ``error`` aborts the transaction only to have it retried.

        Code running inside ``run_in_transaction`` must let such errors
        propagate unchanged.
        """
        return isinstance(error, WriteConflict)

    @abstractmethod
    async def find_one(
        self, collection: str, filter: Filter, session: Any = None
    ) -> Document | None:
        """Find the first document matching ``filter``."""
        ...

    @abstractmethod
    async def find(self, collection: str, filter: Filter, session: Any = None) -> list[Document]:
        """Find all documents matching ``filter``."""
        ...

    @abstractmethod
    async def find_ids(self, collection: str, filter: Filter, session: Any = None) -> list[str]:
        """Find the ``_id`` of every document matching ``filter``."""
        ...

    @abstractmethod
    async def insert_many(
        self, collection: str, documents: list[Document], session: Any = None
    ) -> list[str]:
        """Insert documents, assigning a ULID ``_id`` where absent.

        Returns:
            The ids of the inserted documents, in input order.
        """
        ...

    @abstractmethod
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
        """Set ``changes`` on the first document matching ``filter``.

        With ``upsert``, a missing match inserts a document built from the
        equality terms of ``filter``, ``changes`` and ``set_on_insert``.
        """
        ...


def new_document_id() -> str:
    return str(ULID())


def matches(document: Document, filter: Filter) -> bool:
    """Evaluate a store filter against a document."""
    for field, expected in filter.items():
        actual = document.get(field)
        if isinstance(expected, dict) and "$lt" in expected:
            if actual is None or not actual < expected["$lt"]:
                return False
        elif actual != expected:
            return False
    return True


class _InMemorySession:
    """Staged writes and held locks of one in-memory transaction."""

    __slots__ = ("id", "writes")

    def __init__(self) -> None:
        self.id = new_document_id()
        self.writes: dict[tuple[str, str], Document] = {}


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store for development and testing.

    Transactions stage their writes and hold a write lock on every document
    they touch until commit or abort. A transaction writing a document that
    another open transaction holds raises ``WriteConflict``, which
    ``run_in_transaction`` turns into an abort-and-retry, the same way a
    MongoDB replica set behaves. Unique indexes are enforced against the
    committed data, the transaction's own writes and values reserved by
    other open transactions.

    Not intended for production use - data is lost on restart.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.ensure_unique_index("carts", "id")
        >>>
        >>> async def create(session):
        ...     await store.insert_many("carts", [{"id": "cart-1"}], session)
        >>>
        >>> await store.run_in_transaction(create)
        >>> await store.find_one("carts", {"id": "cart-1"})
        {'id': 'cart-1', '_id': '01J...'}
    """

    def __init__(self, conflict_retry_delay: float = 0.001) -> None:
        self.conflict_retry_delay = conflict_retry_delay
        self._collections: dict[str, dict[str, Document]] = {}
        self._unique_fields: dict[str, set[str]] = {}
        self._locks: dict[tuple[str, str], str] = {}
        self._reservations: dict[tuple[str, str, Any], str] = {}

    # ========== Transactions ==========

    async def run_in_transaction(self, callback: Callable[[Any], Awaitable[T]]) -> T:
        while True:
            session = _InMemorySession()
            try:
                result = await callback(session)
            except WriteConflict:
                self._abort(session)
                LOGGER.debug(f"Transaction {session.id} hit a write conflict, retrying")
                await asyncio.sleep(self.conflict_retry_delay)
                continue
            except BaseException:
                self._abort(session)
                raise
            self._commit(session)
            return result

    def _commit(self, session: _InMemorySession) -> None:
        for (collection, document_id), document in session.writes.items():
            self._collections.setdefault(collection, {})[document_id] = document
        self._release(session)

    def _abort(self, session: _InMemorySession) -> None:
        session.writes.clear()
        self._release(session)

    def _release(self, session: _InMemorySession) -> None:
        self._locks = {key: owner for key, owner in self._locks.items() if owner != session.id}
        self._reservations = {
            key: owner for key, owner in self._reservations.items() if owner != session.id
        }

    async def _autocommit(self, operation: Callable[[_InMemorySession], Awaitable[T]]) -> T:
        return await self.run_in_transaction(operation)

    # ========== Reads ==========

    def _view(self, collection: str, session: _InMemorySession | None) -> dict[str, Document]:
        view = dict(self._collections.get(collection, {}))
        if session is not None:
            for (name, document_id), document in session.writes.items():
                if name == collection:
                    view[document_id] = document
        return view

    async def ensure_unique_index(self, collection: str, field: str) -> None:
        self._unique_fields.setdefault(collection, set()).add(field)

    async def find_one(
        self, collection: str, filter: Filter, session: Any = None
    ) -> Document | None:
        for document in self._view(collection, session).values():
            if matches(document, filter):
                return copy.deepcopy(document)
        return None

    async def find(self, collection: str, filter: Filter, session: Any = None) -> list[Document]:
        return [
            copy.deepcopy(document)
            for document in self._view(collection, session).values()
            if matches(document, filter)
        ]

    async def find_ids(self, collection: str, filter: Filter, session: Any = None) -> list[str]:
        return [
            document_id
            for document_id, document in self._view(collection, session).items()
            if matches(document, filter)
        ]

    # ========== Writes ==========

    async def insert_many(
        self, collection: str, documents: list[Document], session: Any = None
    ) -> list[str]:
        if session is None:
            return await self._autocommit(
                lambda tx: self.insert_many(collection, documents, tx)
            )

        ids = []
        for document in documents:
            staged = copy.deepcopy(document)
            staged.setdefault("_id", new_document_id())
            if staged["_id"] in self._view(collection, session):
                raise UniqueKeyViolation(f"Duplicate _id {staged['_id']} in {collection}")
            self._stage(collection, staged, session)
            ids.append(staged["_id"])
        return ids

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
        if session is None:
            return await self._autocommit(
                lambda tx: self.update_one(
                    collection,
                    filter,
                    changes,
                    session=tx,
                    upsert=upsert,
                    set_on_insert=set_on_insert,
                )
            )

        for document in self._view(collection, session).values():
            if matches(document, filter):
                updated = {**document, **copy.deepcopy(changes)}
                self._stage(collection, updated, session)
                return UpdateResult(
                    matched_count=1, modified_count=int(updated != document)
                )

        if not upsert:
            return UpdateResult(matched_count=0, modified_count=0)

        inserted = {
            field: value for field, value in filter.items() if not isinstance(value, dict)
        }
        inserted.update(copy.deepcopy(changes))
        inserted.update(copy.deepcopy(set_on_insert or {}))
        inserted.setdefault("_id", new_document_id())
        if inserted["_id"] in self._view(collection, session):
            raise UniqueKeyViolation(f"Duplicate _id {inserted['_id']} in {collection}")
        self._stage(collection, inserted, session)
        return UpdateResult(matched_count=0, modified_count=0, upserted_id=inserted["_id"])

    def _stage(self, collection: str, document: Document, session: _InMemorySession) -> None:
        key = (collection, document["_id"])
        owner = self._locks.get(key)
        if owner is not None and owner != session.id:
            raise WriteConflict(f"Document {document['_id']} in {collection} is locked")

        self._check_unique(collection, document, session)
        self._locks[key] = session.id
        session.writes[key] = document

    def _check_unique(
        self, collection: str, document: Document, session: _InMemorySession
    ) -> None:
        view = self._view(collection, session)
        for field in self._unique_fields.get(collection, ()):
            value = document.get(field)
            if value is None:
                continue
            for other_id, other in view.items():
                if other_id != document["_id"] and other.get(field) == value:
                    raise UniqueKeyViolation(
                        f"Duplicate value {value!r} for unique field {field} in {collection}"
                    )
            reservation = (collection, field, value)
            owner = self._reservations.get(reservation)
            if owner is not None and owner != session.id:
                raise WriteConflict(f"Value {value!r} of {field} in {collection} is reserved")
            self._reservations[reservation] = session.id
