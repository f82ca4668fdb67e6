from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OutboxStatus(str, Enum):
    """Lifecycle of an outbox record.

    ``scheduled -> processing -> published``. A failed or abandoned
    ``processing`` record goes back to ``scheduled``; ``published`` is final.
    """

    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PUBLISHED = "published"


def utcnow() -> datetime:
    """Current UTC time at millisecond precision, the resolution of BSON dates."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class OutboxRecord(BaseModel):
    """A durable note that an event must be published.

    Stored with camelCase keys::

        {
            "_id": "01J...",
            "event": {"name": "ItemAdded", "payload": {...}},
            "scheduledAt": datetime,
            "status": "scheduled",
            "claimedAt": None,
            "publishedAt": None,
            "contextName": None,
        }
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(alias="_id")
    event: dict[str, Any]
    scheduled_at: datetime
    status: OutboxStatus = OutboxStatus.SCHEDULED
    claimed_at: datetime | None = None
    published_at: datetime | None = None
    context_name: str | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="python") | {"status": self.status.value}
