"""Outbox configuration using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OutboxSettings(BaseSettings):
    """Settings for a document-store outbox.

    All settings can be configured via environment variables with the
    RATCHET_OUTBOX_ prefix, e.g. RATCHET_OUTBOX_CONTEXT_NAME=billing.

    Attributes:
        collection: Collection holding the outbox records.
        context_name: Tag partitioning one outbox collection between several
            bounded contexts. Each sweep only sees records with its own tag.
        monitoring_interval: Seconds between two sweep cycles.
        claim_timeout: Seconds after which a ``processing`` claim is
            considered abandoned and the record is scheduled again.
    """

    model_config = SettingsConfigDict(env_prefix="RATCHET_OUTBOX_")

    collection: str = "outbox"
    context_name: str | None = None
    monitoring_interval: float = Field(default=0.5, gt=0)
    claim_timeout: float = Field(default=60.0, gt=0)
