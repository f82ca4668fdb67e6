import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from ulid import ULID


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context for tracking a logical operation through the buses.

    Attributes:
        correlation_id: Unique ID that traces an entire logical operation
            across commands, events and services. Constant throughout the flow.
        causation_id: ID of what directly caused the current operation.
        command_name: Routing key of the command being executed, if any.

    Examples:
        Create a new context at a system entry point:

        >>> ctx = ExecutionContext.create()
        >>> ctx.correlation_id == ctx.causation_id
        True

        Derive a child context for a command:

        >>> cmd_ctx = ctx.for_command("AddItem")
        >>> cmd_ctx.correlation_id == ctx.correlation_id
        True
    """

    correlation_id: ULID | None = None
    causation_id: ULID | None = None
    command_name: str | None = None

    @classmethod
    def create(cls, correlation_id: ULID | None = None) -> "ExecutionContext":
        """Create a new context, typically at a system entry point.

        Args:
            correlation_id: Optional correlation ID. A new one is generated
                when omitted. At entry points the causation is the
                correlation itself.

        Returns:
            A new ExecutionContext instance.
        """
        if correlation_id is None:
            correlation_id = ULID()

        return cls(
            correlation_id=correlation_id,
            causation_id=correlation_id,
            command_name=None,
        )

    def for_command(self, command_name: str) -> "ExecutionContext":
        """Create a child context for executing a command.

        The correlation_id is inherited, or generated when this context has
        none yet.
        """
        base = self if self.correlation_id is not None else ExecutionContext.create()
        return replace(base, command_name=command_name)

    def with_causation(self, causation_id: ULID) -> "ExecutionContext":
        """Create a copy with a different causation_id."""
        return replace(self, causation_id=causation_id)


_context: contextvars.ContextVar[ExecutionContext | None] = contextvars.ContextVar(
    "execution_context", default=None
)


def get_context() -> ExecutionContext:
    """Get the current execution context.

    If no context has been set, returns an empty ExecutionContext with all
    fields None.
    """
    ctx = _context.get()
    if ctx is None:
        return ExecutionContext()
    return ctx


def set_context(context: ExecutionContext) -> None:
    """Set the current execution context."""
    _context.set(context)


def clear_context() -> None:
    """Clear the current execution context."""
    _context.set(None)


@contextmanager
def use_context(context: ExecutionContext) -> Iterator[ExecutionContext]:
    """Make ``context`` current for the duration of the block.

    The previous context is restored on exit, even if the block raises.

    Example:
        >>> with use_context(ExecutionContext.create()) as ctx:
        ...     assert get_context() is ctx
    """
    token = _context.set(context)
    try:
        yield context
    finally:
        _context.reset(token)
