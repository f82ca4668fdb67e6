import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic_settings import BaseSettings, SettingsConfigDict

from ...domain import Aggregate, Event
from ...domain.exceptions import (
    AggregateNotFoundError,
    DuplicatedIdError,
    OptimisticLockError,
    RepoHookError,
)
from ..outbox import Outbox
from ..retry import TaskSupervisor
from ..store import DocumentStore, UniqueKeyViolation
from .serializer import AggregateSerializer

LOGGER = logging.getLogger(__name__)

A = TypeVar("A", bound=Aggregate)

VERSION_FIELD = "__version"
STORE_FIELDS = ("_id", VERSION_FIELD, "createdAt", "updatedAt")


class RepositorySettings(BaseSettings):
    """Settings for one aggregate repository.

    Attributes:
        collection: Collection holding one document per aggregate.
    """

    model_config = SettingsConfigDict(env_prefix="RATCHET_REPOSITORY_")

    collection: str


class RepoHooks(ABC):
    """Extension point running inside the save transaction.

    Typically used to maintain a read model in the same transaction as the
    aggregate. A failing hook aborts the whole save.
    """

    @abstractmethod
    async def on_save(self, document: dict[str, Any], session: Any) -> None:
        """Called after the aggregate document is written, with its session."""
        ...


class AggregateRepository(Generic[A]):
    """Loads and saves aggregates as single versioned documents.

    Every save is a conditional upsert on ``{id, __version}``: it succeeds
    only if the stored version still equals the version the aggregate was
    loaded at, and stores ``version + 1``. A stale or duplicate save hits the
    unique index on ``id`` and is reported as ``OptimisticLockError`` or
    ``DuplicatedIdError``. The repository never retries a conflicting save;
    callers reload and try again.

    Example:
        >>> repository = AggregateRepository(
        ...     store,
        ...     ModelSerializer(Cart),
        ...     RepositorySettings(collection="carts"),
        ...     outbox=outbox,
        ... )
        >>> await repository.initialize_schema()
        >>>
        >>> cart = await repository.get_by_id_or_raise("cart-1")
        >>> cart.items.append("A-1")
        >>> await repository.save_and_publish(cart, [ItemAdded(payload=...)])
    """

    def __init__(
        self,
        store: DocumentStore,
        serializer: AggregateSerializer[A],
        settings: RepositorySettings,
        hooks: RepoHooks | None = None,
        outbox: Outbox | None = None,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.serializer = serializer
        self.settings = settings
        self.hooks = hooks
        self.outbox = outbox
        self._logger = logger or LOGGER
        self._publications = TaskSupervisor()

    @property
    def collection(self) -> str:
        return self.settings.collection

    async def initialize_schema(self) -> None:
        """Create the unique index on ``id`` that backs optimistic locking."""
        await self.store.ensure_unique_index(self.collection, "id")

    # ========== Loading ==========

    async def get_by_id(self, aggregate_id: str) -> A | None:
        document = await self.store.find_one(self.collection, {"id": aggregate_id})
        self._logger.debug(f"Retrieving aggregate {aggregate_id}. Found: {document}")
        if document is None:
            return None

        version = document[VERSION_FIELD]
        aggregate = self.serializer.from_document(
            {key: value for key, value in document.items() if key not in STORE_FIELDS}
        )
        aggregate.version = version
        return aggregate

    async def get_by_id_or_raise(self, aggregate_id: str) -> A:
        aggregate = await self.get_by_id(aggregate_id)
        if aggregate is None:
            raise AggregateNotFoundError(f"Aggregate {aggregate_id} not found.")
        return aggregate

    # ========== Saving ==========

    async def save(self, aggregate: A) -> None:
        """Persist ``aggregate`` if its version is still the stored one.

        The instance itself is left untouched; reload it to continue working
        with the new version.

        Raises:
            DuplicatedIdError: On a first save of an id that already exists.
            OptimisticLockError: When another save happened since loading.
            RepoHookError: When the save hook failed. Nothing was written.
        """
        await self._save(aggregate, ())

    async def save_and_publish(self, aggregate: A, events: Sequence[Event[Any]] = ()) -> None:
        """Persist ``aggregate`` and schedule ``events`` in one transaction.

        Once committed, the scheduled events are published in the
        background. Publication failures are left to the outbox sweep and
        never reach the caller.

        Raises:
            RuntimeError: If the repository has no outbox.
            DuplicatedIdError: As for ``save``.
            OptimisticLockError: As for ``save``.
            RepoHookError: As for ``save``.
        """
        if self.outbox is None:
            raise RuntimeError("Outbox not configured")

        scheduled = await self._save(aggregate, events)
        if scheduled:
            self._publications.spawn(self.outbox.publish_events(scheduled))

    async def drain(self) -> None:
        """Wait for the background publications started by ``save_and_publish``."""
        await self._publications.drain()

    async def close(self) -> None:
        """Cancel background publications; the outbox sweep picks them up."""
        await self._publications.close()

    async def _save(self, aggregate: A, events: Sequence[Event[Any]]) -> list[str]:
        document = self.serializer.to_document(aggregate)
        version = aggregate.version

        async def write(session: Any) -> list[str]:
            await self._upsert(document, version, session)
            await self._run_hooks(document, session)
            if self.outbox is not None and events:
                return await self.outbox.schedule_events(events, session)
            return []

        try:
            return await self.store.run_in_transaction(write)
        except UniqueKeyViolation as err:
            if version == 0:
                raise DuplicatedIdError(
                    f"Cannot save aggregate with id: {aggregate.id} due to duplicated id."
                ) from err
            raise OptimisticLockError(
                f"Cannot save aggregate with id: {aggregate.id} due to optimistic locking."
            ) from err

    async def _upsert(self, document: dict[str, Any], version: int, session: Any) -> None:
        now = datetime.now(timezone.utc)
        await self.store.update_one(
            self.collection,
            {"id": document["id"], VERSION_FIELD: version},
            {**document, VERSION_FIELD: version + 1, "updatedAt": now},
            session=session,
            upsert=True,
            set_on_insert={"createdAt": now},
        )
        self._logger.debug(
            f"Aggregate with id {document['id']} and version {version} saved successfully. {document}"
        )

    async def _run_hooks(self, document: dict[str, Any], session: Any) -> None:
        if self.hooks is None:
            return
        try:
            await self.hooks.on_save(document, session)
        except Exception as err:
            if self.store.is_transient(err):
                raise
            raise RepoHookError(f"RepoHook onSave method failed with error: {err}") from err
        self._logger.debug("RepoHook onSave method executed successfully.")
