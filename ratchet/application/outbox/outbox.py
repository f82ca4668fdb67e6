"""Transactional outbox over a DocumentStore.

Events are scheduled in the same transaction as the aggregate change that
produced them, then published after commit. A background sweep republishes
whatever the post-commit publication missed, so every scheduled event is
eventually published at least once.

Concurrent publishers (several processes, or the post-commit publication
racing the sweep) never invoke the publish callback twice for the same
record: ownership is taken with an atomic ``scheduled -> processing``
conditional update and only the caller whose update matched publishes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import timedelta
from typing import Any

from ...domain import Event
from ..store import DocumentStore, new_document_id
from .config import OutboxSettings
from .record import OutboxRecord, OutboxStatus, utcnow
from .registry import EventTypeRegistry

LOGGER = logging.getLogger(__name__)

PublishEvents = Callable[[list[Event[Any]]], Awaitable[None]]


class Outbox(ABC):
    """Durable buffer of events awaiting publication."""

    @abstractmethod
    async def init(self) -> None:
        """Start the background sweep."""
        ...

    @abstractmethod
    async def terminate(self) -> None:
        """Stop the background sweep and wait for it to exit."""
        ...

    @abstractmethod
    async def schedule_events(self, events: Sequence[Event[Any]], session: Any) -> list[str]:
        """Record ``events`` as scheduled within the caller's transaction.

        Returns:
            The record ids, in input order. Empty when ``events`` is empty.
        """
        ...

    @abstractmethod
    async def publish_events(self, ids: Sequence[str]) -> None:
        """Publish the given scheduled records. Never raises for a single failure."""
        ...

    async def on_startup(self) -> None:
        await self.init()

    async def on_shutdown(self) -> None:
        await self.terminate()


class DocumentOutbox(Outbox):
    """Outbox persisted in a collection of the document store.

    Args:
        store: Document store holding the outbox collection. Scheduling uses
            the session of the caller's transaction on this store.
        publish_events: Callback receiving a list with one rebuilt event per
            publication. Raising marks the publication as failed; the record
            stays scheduled and the sweep retries it.
        settings: Collection name, context tag and sweep timing.
        event_types: Event types to rebuild stored envelopes as. Types of
            events scheduled through this outbox are added automatically;
            envelopes of unknown types are published as plain events.
        logger: Logger to use instead of the module logger.

    Example:
        >>> outbox = DocumentOutbox(store, event_bus.publish_all, OutboxSettings())
        >>> await outbox.init()
        >>>
        >>> async def save(session):
        ...     ...  # write the aggregate
        ...     return await outbox.schedule_events([ItemAdded(payload=...)], session)
        >>>
        >>> ids = await store.run_in_transaction(save)
        >>> await outbox.publish_events(ids)
    """

    def __init__(
        self,
        store: DocumentStore,
        publish_events: PublishEvents,
        settings: OutboxSettings | None = None,
        event_types: Iterable[type[Event[Any]]] = (),
        logger: logging.Logger | None = None,
    ):
        self._store = store
        self._publish = publish_events
        self.settings = settings or OutboxSettings()
        self.event_types = EventTypeRegistry(event_types)
        self._logger = logger or LOGGER
        self._stopping = asyncio.Event()
        self._sweep: asyncio.Task[None] | None = None

    @property
    def collection(self) -> str:
        return self.settings.collection

    # ========== Lifecycle ==========

    async def init(self) -> None:
        if self._sweep is not None and not self._sweep.done():
            return
        self._logger.debug(
            f"Starting outbox monitoring with interval "
            f"{int(self.settings.monitoring_interval * 1000)}ms"
        )
        await self._store.ensure_index(self.collection, "status", "contextName")
        self._stopping.clear()
        self._sweep = asyncio.get_running_loop().create_task(self._monitor())

    async def terminate(self) -> None:
        self._stopping.set()
        if self._sweep is not None:
            await self._sweep
            self._sweep = None
        self._logger.debug("Outbox monitoring stopped")

    # ========== Scheduling ==========

    async def schedule_events(self, events: Sequence[Event[Any]], session: Any) -> list[str]:
        if not events:
            return []

        for event in events:
            self._remember(event)

        scheduled_at = utcnow()
        documents = [
            OutboxRecord(
                id=new_document_id(),
                event=event.model_dump(mode="json"),
                scheduled_at=scheduled_at,
                context_name=self.settings.context_name,
            ).to_document()
            for event in events
        ]
        ids = await self._store.insert_many(self.collection, documents, session)
        self._logger.debug(f"Scheduled events {', '.join(ids)}")
        return ids

    # ========== Publication ==========

    async def publish_events(self, ids: Sequence[str]) -> None:
        await asyncio.gather(*(self._claim_and_publish(record_id) for record_id in ids))

    async def _claim_and_publish(self, record_id: str) -> None:
        claimed_at = utcnow()
        try:
            claim = await self._store.update_one(
                self.collection,
                {"_id": record_id, "status": OutboxStatus.SCHEDULED.value},
                {"status": OutboxStatus.PROCESSING.value, "claimedAt": claimed_at},
            )
        except Exception as err:
            self._logger.warning(f"Failed to claim event {record_id}. {err!r}")
            return

        if claim.matched_count != 1:
            self._logger.debug(f"Event {record_id} is already being processed.")
            return
        self._logger.debug(f"Event {record_id} is being processed.")

        try:
            document = await self._store.find_one(self.collection, {"_id": record_id})
            if document is None:
                return
            event = self.event_types.rebuild(OutboxRecord.model_validate(document).event)
            await self._publish([event])
        except Exception as err:
            self._logger.warning(f"Failed to publish event {record_id}. {err!r}")
            await self._release(record_id, claimed_at)
            return

        try:
            await self._store.update_one(
                self.collection,
                {
                    "_id": record_id,
                    "status": OutboxStatus.PROCESSING.value,
                    "claimedAt": claimed_at,
                },
                {"status": OutboxStatus.PUBLISHED.value, "publishedAt": utcnow()},
            )
        except Exception as err:
            # The claim expires and the sweep publishes the event again.
            self._logger.error(f"Failed to mark event {record_id} as published. {err!r}")

    async def _release(self, record_id: str, claimed_at: Any) -> None:
        try:
            await self._store.update_one(
                self.collection,
                {
                    "_id": record_id,
                    "status": OutboxStatus.PROCESSING.value,
                    "claimedAt": claimed_at,
                },
                {"status": OutboxStatus.SCHEDULED.value, "claimedAt": None},
            )
        except Exception as err:
            self._logger.error(f"Failed to release event {record_id}. {err!r}")

    def _remember(self, event: Event[Any]) -> None:
        # Only types declaring the routing key they carry can be registered.
        event_type = type(event)
        declared = event_type.model_fields["name"].default
        if declared == event.name and self.event_types.get(event.name) is None:
            self.event_types.register(event_type)

    # ========== Sweep ==========

    async def _monitor(self) -> None:
        watched: list[str] = []
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self.settings.monitoring_interval
                )
                return
            except TimeoutError:
                pass

            try:
                watched = await self._check_scheduled_events(watched)
            except Exception as err:
                self._logger.error(f"Failed to check scheduled events. {err!r}")
                watched = []

    async def _check_scheduled_events(self, watched: list[str]) -> list[str]:
        """Run one sweep cycle and return the ids to watch in the next one.

        Records seen as scheduled in two consecutive cycles were missed by
        their post-commit publication and are published now. Records seen
        for the first time are left to their own publication for one more
        cycle.
        """
        await self._revive_expired_claims()

        current = await self._store.find_ids(
            self.collection,
            {"status": OutboxStatus.SCHEDULED.value, "contextName": self.settings.context_name},
        )
        previously_watched = set(watched)
        to_publish = [record_id for record_id in current if record_id in previously_watched]
        if to_publish:
            self._logger.warning(f"Events {', '.join(to_publish)} are still scheduled.")
            await self.publish_events(to_publish)

        published = set(to_publish)
        return [record_id for record_id in current if record_id not in published]

    async def _revive_expired_claims(self) -> None:
        cutoff = utcnow() - timedelta(seconds=self.settings.claim_timeout)
        expired = await self._store.find(
            self.collection,
            {
                "status": OutboxStatus.PROCESSING.value,
                "contextName": self.settings.context_name,
                "claimedAt": {"$lt": cutoff},
            },
        )
        for document in expired:
            result = await self._store.update_one(
                self.collection,
                {
                    "_id": document["_id"],
                    "status": OutboxStatus.PROCESSING.value,
                    "claimedAt": document["claimedAt"],
                },
                {"status": OutboxStatus.SCHEDULED.value, "claimedAt": None},
            )
            if result.matched_count:
                self._logger.warning(
                    f"Event {document['_id']} was claimed at {document['claimedAt']} "
                    f"and never published. Scheduling it again."
                )
