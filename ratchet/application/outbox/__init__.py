from .config import OutboxSettings
from .outbox import DocumentOutbox, Outbox, PublishEvents
from .record import OutboxRecord, OutboxStatus
from .registry import EventTypeRegistry

__all__ = [
    "DocumentOutbox",
    "EventTypeRegistry",
    "Outbox",
    "OutboxRecord",
    "OutboxSettings",
    "OutboxStatus",
    "PublishEvents",
]
