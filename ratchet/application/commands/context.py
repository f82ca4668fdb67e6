"""Ambient context around synchronous command execution."""

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol, TypeVar

from ...context import ExecutionContext, get_context, use_context
from ...domain import Command, message_name

TContext = TypeVar("TContext", covariant=True)


class CommandContextManager(Protocol[TContext]):
    """Opens the context a command handler runs in.

    The opened context is passed to the handler as a second argument, e.g. a
    unit of work, a database session or a trace context.
    """

    def open(self, command: Command[Any, Any]) -> AbstractAsyncContextManager[TContext]: ...


class ExecutionContextManager:
    """Runs each command in a child of the current ``ExecutionContext``.

    The correlation id of the caller is inherited, or created when the
    command is the entry point of a new flow.

    Example:
        >>> bus = LocalCommandBus(context_manager=ExecutionContextManager())
        >>>
        >>> class AddItemHandler:
        ...     async def handle(self, command: AddItem, context: ExecutionContext) -> str:
        ...         LOGGER.info(f"[{context.correlation_id}] adding item")
    """

    @asynccontextmanager
    async def open(self, command: Command[Any, Any]) -> AsyncIterator[ExecutionContext]:
        with use_context(get_context().for_command(message_name(command))) as context:
            yield context
