"""Unit tests for the transactional outbox."""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Literal
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel

from ratchet.application import DocumentOutbox, InMemoryDocumentStore, OutboxSettings
from ratchet.application.outbox import EventTypeRegistry, OutboxRecord, OutboxStatus
from ratchet.application.outbox.record import utcnow
from ratchet.domain import Event
from ratchet.testing import RecordingPublisher, wait_for
from tests.fixtures.shop import CartCheckedOut, ItemAdded, cart_checked_out, item_added


async def schedule(
    store: InMemoryDocumentStore, outbox: DocumentOutbox, events: list[Event]
) -> list[str]:
    """Schedule events in their own transaction."""
    return await store.run_in_transaction(lambda session: outbox.schedule_events(events, session))


class TestScheduling:
    """Recording events in the caller's transaction."""

    @pytest.mark.asyncio
    async def test_schedules_one_record_per_event(
        self, store: InMemoryDocumentStore, outbox: DocumentOutbox
    ):
        """Each event becomes a scheduled record holding its envelope."""
        ids = await schedule(store, outbox, [item_added(), cart_checked_out()])

        assert len(ids) == 2
        record = OutboxRecord.model_validate(await store.find_one("outbox", {"_id": ids[0]}))
        assert record.status == OutboxStatus.SCHEDULED
        assert record.event == {"name": "ItemAdded", "payload": {"cart_id": "cart-1", "sku": "A-1"}}
        assert record.context_name is None
        assert record.published_at is None

    @pytest.mark.asyncio
    async def test_empty_schedule(self, store: InMemoryDocumentStore, outbox: DocumentOutbox):
        """Scheduling nothing writes nothing."""
        assert await schedule(store, outbox, []) == []
        assert await store.find("outbox", {}) == []

    @pytest.mark.asyncio
    async def test_rolled_back_transaction_leaves_no_record(
        self, store: InMemoryDocumentStore, outbox: DocumentOutbox
    ):
        """Records scheduled in an aborted transaction disappear with it."""

        async def fail(session):
            await outbox.schedule_events([item_added()], session)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.run_in_transaction(fail)

        assert await store.find("outbox", {}) == []


class TestPublishing:
    """Claim-and-publish of scheduled records."""

    @pytest.mark.asyncio
    async def test_publishes_each_record_once(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        publisher: RecordingPublisher,
    ):
        """Every record is published with a one-event list and marked published."""
        events = [item_added(), cart_checked_out()]
        ids = await schedule(store, outbox, events)

        await outbox.publish_events(ids)

        assert publisher.calls == [[events[0]], [events[1]]]
        assert isinstance(publisher.published[0], ItemAdded)
        for record_id in ids:
            record = OutboxRecord.model_validate(await store.find_one("outbox", {"_id": record_id}))
            assert record.status == OutboxStatus.PUBLISHED
            assert record.published_at is not None

    @pytest.mark.asyncio
    async def test_concurrent_publishers_invoke_callback_once_per_record(
        self, store: InMemoryDocumentStore, outbox_settings: OutboxSettings
    ):
        """Racing publishers never publish the same record twice."""
        publisher = RecordingPublisher(delay=0.02)
        outbox = DocumentOutbox(store, publisher, outbox_settings)
        ids = await schedule(store, outbox, [item_added(sku=str(n)) for n in range(3)])

        await asyncio.gather(*(outbox.publish_events(ids) for _ in range(5)))

        assert len(publisher.calls) == 3
        assert sorted(event.payload.sku for event in publisher.published) == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_published_record_is_not_published_again(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        publisher: RecordingPublisher,
    ):
        """Publishing an already published id is a no-op."""
        ids = await schedule(store, outbox, [item_added()])

        await outbox.publish_events(ids)
        await outbox.publish_events(ids)

        assert len(publisher.calls) == 1

    @pytest.mark.asyncio
    async def test_failed_publication_keeps_record_scheduled(
        self, store: InMemoryDocumentStore, outbox_settings: OutboxSettings, caplog
    ):
        """A failing callback is logged, never raised, and the record stays retryable."""
        outbox = DocumentOutbox(store, RecordingPublisher(fail=True), outbox_settings)
        [record_id] = await schedule(store, outbox, [item_added()])

        with caplog.at_level(logging.WARNING):
            await outbox.publish_events([record_id])

        document = await store.find_one("outbox", {"_id": record_id})
        assert document["status"] == "scheduled"
        assert document["claimedAt"] is None
        assert f"Failed to publish event {record_id}" in caplog.text

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(
        self, store: InMemoryDocumentStore, outbox_settings: OutboxSettings
    ):
        """A failing record does not prevent the other records from publishing."""

        async def publish(events: list[Event]) -> None:
            if events[0].name == "ItemAdded":
                raise RuntimeError("broker refused")

        outbox = DocumentOutbox(store, publish, outbox_settings)
        failing, succeeding = await schedule(store, outbox, [item_added(), cart_checked_out()])

        await outbox.publish_events([failing, succeeding])

        assert (await store.find_one("outbox", {"_id": failing}))["status"] == "scheduled"
        assert (await store.find_one("outbox", {"_id": succeeding}))["status"] == "published"

    @pytest.mark.asyncio
    async def test_unknown_id_is_ignored(self, outbox: DocumentOutbox, publisher):
        """Ids without a scheduled record are skipped silently."""
        await outbox.publish_events(["01HZZZZZZZZZZZZZZZZZZZZZZZ"])

        assert publisher.calls == []


class TestSweep:
    """Background republication of missed records."""

    @pytest.mark.asyncio
    async def test_cycle_publishes_only_records_seen_twice(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        publisher: RecordingPublisher,
    ):
        """Records are left alone on first sight and published on the second."""
        [first] = await schedule(store, outbox, [item_added()])

        watched = await outbox._check_scheduled_events([])
        assert watched == [first]
        assert publisher.calls == []

        [second] = await schedule(store, outbox, [cart_checked_out()])
        watched = await outbox._check_scheduled_events(watched)

        assert len(publisher.calls) == 1
        assert publisher.published[0].name == "ItemAdded"
        assert watched == [second]

    @pytest.mark.asyncio
    async def test_sweep_publishes_stuck_records(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        publisher: RecordingPublisher,
        caplog,
    ):
        """A running sweep publishes records nobody published."""
        ids = await schedule(store, outbox, [item_added(), cart_checked_out()])

        with caplog.at_level(logging.WARNING):
            await outbox.init()

            def all_published() -> None:
                assert len(publisher.calls) == 2

            await wait_for(all_published, timeout=2.0, interval=0.02)
            await outbox.terminate()

        assert f"Events {', '.join(ids)} are still scheduled." in caplog.text

    @pytest.mark.asyncio
    async def test_sweep_revives_expired_claims(
        self, store: InMemoryDocumentStore, publisher: RecordingPublisher
    ):
        """A record abandoned in processing is scheduled and published again."""
        outbox = DocumentOutbox(
            store, publisher, OutboxSettings(monitoring_interval=0.02, claim_timeout=1.0)
        )
        [record_id] = await schedule(store, outbox, [item_added()])
        await store.update_one(
            "outbox",
            {"_id": record_id},
            {"status": "processing", "claimedAt": utcnow() - timedelta(seconds=5)},
        )

        await outbox.init()
        try:

            def published() -> None:
                assert len(publisher.calls) == 1

            await wait_for(published, timeout=2.0, interval=0.02)
        finally:
            await outbox.terminate()

        assert (await store.find_one("outbox", {"_id": record_id}))["status"] == "published"

    @pytest.mark.asyncio
    async def test_sweep_leaves_live_claims_alone(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        publisher: RecordingPublisher,
    ):
        """A recent processing claim is not revived."""
        [record_id] = await schedule(store, outbox, [item_added()])
        await store.update_one(
            "outbox", {"_id": record_id}, {"status": "processing", "claimedAt": utcnow()}
        )

        await outbox._check_scheduled_events([])
        await outbox._check_scheduled_events([record_id])

        assert publisher.calls == []
        assert (await store.find_one("outbox", {"_id": record_id}))["status"] == "processing"

    @pytest.mark.asyncio
    async def test_sweep_only_sees_its_context(
        self, store: InMemoryDocumentStore, publisher: RecordingPublisher
    ):
        """Outboxes sharing a collection only republish their own records."""
        billing = DocumentOutbox(store, publisher, OutboxSettings(context_name="billing"))
        shipping = DocumentOutbox(store, publisher, OutboxSettings(context_name="shipping"))
        [billing_id] = await schedule(store, billing, [item_added()])
        await schedule(store, shipping, [cart_checked_out()])

        watched = await billing._check_scheduled_events([])

        assert watched == [billing_id]

    @pytest.mark.asyncio
    async def test_cycle_failure_is_logged_and_sweep_continues(
        self, store: InMemoryDocumentStore, outbox: DocumentOutbox, caplog
    ):
        """A failing cycle logs an error and the next cycle runs normally."""
        failing = AsyncMock(side_effect=[ConnectionError("store down"), [], [], [], []])

        with patch.object(store, "find_ids", failing), caplog.at_level(logging.ERROR):
            await outbox.init()

            def retried() -> None:
                assert failing.await_count >= 2

            await wait_for(retried, timeout=2.0, interval=0.02)
            await outbox.terminate()

        assert "Failed to check scheduled events" in caplog.text

    @pytest.mark.asyncio
    async def test_terminate_stops_sweep_promptly(
        self, store: InMemoryDocumentStore, publisher: RecordingPublisher
    ):
        """Terminate does not wait for a full monitoring interval."""
        outbox = DocumentOutbox(store, publisher, OutboxSettings(monitoring_interval=30))
        await outbox.init()

        await asyncio.wait_for(outbox.terminate(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_lifecycle_hooks_start_and_stop_sweep(
        self, store: InMemoryDocumentStore, outbox: DocumentOutbox
    ):
        """on_startup starts the sweep and on_shutdown stops it."""
        await outbox.on_startup()
        assert outbox._sweep is not None and not outbox._sweep.done()

        await outbox.on_shutdown()
        assert outbox._sweep is None


class TestEventTypes:
    """Rebuilding stored envelopes as events."""

    @pytest.mark.asyncio
    async def test_locally_defined_event_is_published(
        self, store: InMemoryDocumentStore, outbox: DocumentOutbox, publisher: RecordingPublisher
    ):
        """Types of scheduled events are remembered, wherever they are defined."""

        class GiftNotePayload(BaseModel):
            note: str

        class GiftNoteAdded(Event[GiftNotePayload]):
            name: Literal["GiftNoteAdded"] = "GiftNoteAdded"

        event = GiftNoteAdded(payload=GiftNotePayload(note="ribbon"))
        ids = await schedule(store, outbox, [event])

        await outbox.publish_events(ids)

        assert publisher.published == [event]
        record = await store.find_one("outbox", {"_id": ids[0]})
        assert record["status"] == OutboxStatus.PUBLISHED.value

    @pytest.mark.asyncio
    async def test_unknown_type_is_published_as_plain_event(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        outbox_settings: OutboxSettings,
    ):
        """Another outbox without the type publishes the stored envelope unchanged."""
        ids = await schedule(store, outbox, [item_added()])
        publisher = RecordingPublisher()
        other = DocumentOutbox(store, publisher, outbox_settings)

        await other.publish_events(ids)

        [event] = publisher.published
        assert not isinstance(event, ItemAdded)
        assert event.model_dump() == {
            "name": "ItemAdded",
            "payload": {"cart_id": "cart-1", "sku": "A-1"},
        }

    @pytest.mark.asyncio
    async def test_registered_types_rebuild_typed_events(
        self,
        store: InMemoryDocumentStore,
        outbox: DocumentOutbox,
        outbox_settings: OutboxSettings,
    ):
        ids = await schedule(store, outbox, [cart_checked_out()])
        publisher = RecordingPublisher()
        other = DocumentOutbox(store, publisher, outbox_settings, event_types=[CartCheckedOut])

        await other.publish_events(ids)

        assert publisher.published == [cart_checked_out()]
        assert isinstance(publisher.published[0], CartCheckedOut)


class TestEventTypeRegistry:
    def test_conflicting_registration_fails(self):
        """Two types cannot share a routing key."""

        class OtherItemAdded(Event[dict[str, Any]]):
            name: Literal["ItemAdded"] = "ItemAdded"

        registry = EventTypeRegistry([ItemAdded])
        registry.register(ItemAdded)

        with pytest.raises(ValueError, match="ItemAdded is already registered"):
            registry.register(OtherItemAdded)

    def test_type_without_routing_key_fails(self):
        with pytest.raises(TypeError):
            EventTypeRegistry([Event[dict[str, Any]]])
