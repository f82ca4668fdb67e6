"""Ratchet - transactional outbox, versioned aggregate repository and message buses.

This module provides the public API for building message-driven backends.
"""

from .application import (
    AggregateRepository,
    DocumentOutbox,
    LocalCommandBus,
    LocalEventBus,
    LocalQueryBus,
    ModelSerializer,
    OutboxSettings,
    RepositorySettings,
    RetrySettings,
)
from .domain import Aggregate, Command, Event, Query, message_name

__all__ = [
    # Domain primitives
    "Aggregate",
    "Command",
    "Event",
    "Query",
    "message_name",
    # Persistence
    "AggregateRepository",
    "DocumentOutbox",
    "ModelSerializer",
    "OutboxSettings",
    "RepositorySettings",
    # Buses
    "LocalCommandBus",
    "LocalEventBus",
    "LocalQueryBus",
    "RetrySettings",
]
