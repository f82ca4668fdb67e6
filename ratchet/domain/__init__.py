"""Domain primitives for message-driven backends.

- Aggregate: Base class for versioned, optimistically locked aggregates
- Event: Base class for event messages (many handlers)
- Command: Base class for command messages (one handler)
- Query: Base class for query messages (one handler)
- Exceptions raised by repositories and buses
"""

from .aggregate import Aggregate
from .exceptions import (
    AggregateNotFoundError,
    ConcurrencyError,
    DuplicatedIdError,
    HandlerAlreadyRegisteredError,
    HandlerFailedError,
    HandlerNotFoundError,
    OptimisticLockError,
    RatchetError,
    RepoHookError,
)
from .message import Command, Event, Message, Query, message_name

__all__ = [
    "Aggregate",
    "Command",
    "Event",
    "Message",
    "Query",
    "message_name",
    # Exceptions
    "RatchetError",
    "AggregateNotFoundError",
    "ConcurrencyError",
    "DuplicatedIdError",
    "OptimisticLockError",
    "RepoHookError",
    "HandlerAlreadyRegisteredError",
    "HandlerNotFoundError",
    "HandlerFailedError",
]
