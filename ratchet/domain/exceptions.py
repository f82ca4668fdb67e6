"""Exceptions raised by repositories and buses."""


class RatchetError(Exception):
    """Base class for every error raised by ratchet."""


class AggregateNotFoundError(RatchetError):
    """Raised when an aggregate that must exist is absent from the store."""


class ConcurrencyError(RatchetError):
    """Raised when a save conflicts with another writer.

    Callers decide whether to reload and retry; the repository never
    retries a conflicting save on its own.
    """


class DuplicatedIdError(ConcurrencyError):
    """Raised when a first save collides with an aggregate created by someone else."""


class OptimisticLockError(ConcurrencyError):
    """Raised when the version presented on save is no longer the stored one."""


class RepoHookError(RatchetError):
    """Raised when a repository save hook fails; the save is rolled back."""


class HandlerAlreadyRegisteredError(RatchetError):
    """Raised when a second handler is registered for a single-handler key."""


class HandlerNotFoundError(RatchetError):
    """Raised by synchronous dispatch when no handler is registered."""


class HandlerFailedError(RatchetError):
    """Raised to a waiting caller when a handler failed on its last attempt."""
