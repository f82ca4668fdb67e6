"""Application services: repository, outbox, buses and their plumbing.

This package contains the pieces a message-driven backend is assembled
from. Every component talks to storage through the DocumentStore
abstraction and logs through the standard library, so the same code runs
against MongoDB in production and the in-memory store in tests.
"""

from .aggregates import (
    AggregateRepository,
    AggregateSerializer,
    ModelSerializer,
    RepoHooks,
    RepositorySettings,
)
from .commands import (
    CommandContextManager,
    CommandHandler,
    ExecutionContextManager,
    LocalCommandBus,
)
from .events import EventHandler, LocalEventBus
from .lifecycle import HasLifecycle, Lifecycle
from .outbox import DocumentOutbox, Outbox, OutboxRecord, OutboxSettings, OutboxStatus
from .queries import LocalQueryBus, QueryHandler
from .retry import ExponentialBackoff, RetryMechanism, RetrySettings, TaskSupervisor
from .store import (
    DocumentStore,
    InMemoryDocumentStore,
    UniqueKeyViolation,
    UpdateResult,
    WriteConflict,
)

__all__ = [
    # Repository
    "AggregateRepository",
    "AggregateSerializer",
    "ModelSerializer",
    "RepoHooks",
    "RepositorySettings",
    # Outbox
    "DocumentOutbox",
    "Outbox",
    "OutboxRecord",
    "OutboxSettings",
    "OutboxStatus",
    # Buses
    "CommandContextManager",
    "CommandHandler",
    "EventHandler",
    "ExecutionContextManager",
    "LocalCommandBus",
    "LocalEventBus",
    "LocalQueryBus",
    "QueryHandler",
    # Retry
    "ExponentialBackoff",
    "RetryMechanism",
    "RetrySettings",
    "TaskSupervisor",
    # Storage
    "DocumentStore",
    "InMemoryDocumentStore",
    "UniqueKeyViolation",
    "UpdateResult",
    "WriteConflict",
    # Lifecycle
    "HasLifecycle",
    "Lifecycle",
]
