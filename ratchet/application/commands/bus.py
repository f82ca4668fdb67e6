"""In-process command bus."""

import logging
from typing import Any, Protocol, TypeVar

from ...domain import Command, message_name
from ...domain.exceptions import HandlerAlreadyRegisteredError, HandlerNotFoundError
from ..events.bus import handler_name
from ..retry import RetryMechanism, RetrySettings, TaskSupervisor, retry
from .context import CommandContextManager

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CommandHandler(Protocol):
    """Anything with an async ``handle`` method.

    Called as ``handle(command)``, or ``handle(command, context)`` when the
    bus has a context manager.
    """

    async def handle(self, command: Any, *context: Any) -> Any: ...


class LocalCommandBus:
    """Routes every command to the single handler registered for its name.

    ``send`` starts the handler in the background with the same retry policy
    as the event bus; ``send_sync`` runs it once and returns its result.

    Args:
        settings: Attempts and initial retry delay for ``send``.
        context_manager: Opens the context each handler invocation runs in.
            When set, handlers receive the opened context as a second
            argument.
        backoff: Retry delay policy. Defaults to exponential backoff from
            ``settings.initial_delay``.
        logger: Logger to use instead of the module logger.

    Example:
        >>> bus = LocalCommandBus(RetrySettings(max_attempts=3))
        >>> bus.register(AddItem, AddItemHandler(repository))
        >>> cart_id = await bus.send_sync(AddItem(payload=...))
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        context_manager: CommandContextManager[Any] | None = None,
        backoff: RetryMechanism | None = None,
        logger: logging.Logger | None = None,
    ):
        self.settings = settings or RetrySettings()
        self.context_manager = context_manager
        self.backoff = backoff or self.settings.backoff()
        self._logger = logger or LOGGER
        self._handlers: dict[str, CommandHandler] = {}
        self._deliveries = TaskSupervisor()

    def register(self, command_type: type[Command[Any, Any]] | str, handler: CommandHandler) -> None:
        """Register the handler of ``command_type``.

        Raises:
            HandlerAlreadyRegisteredError: If the command already has a handler.
        """
        name = message_name(command_type)
        if name in self._handlers:
            raise HandlerAlreadyRegisteredError(f"Command {name} is already registered")
        self._handlers[name] = handler

    async def send(self, command: Command[Any, Any]) -> None:
        """Start handling ``command`` in the background and return."""
        handler = self._handlers.get(command.name)
        if handler is None:
            self._logger.warning(f"No handler found for {command.name}")
            return
        self._deliveries.spawn(self._deliver(handler, command))

    async def send_sync(self, command: Command[Any, T]) -> T:
        """Handle ``command`` once and return the handler's result.

        Raises:
            HandlerNotFoundError: If no handler is registered.
        """
        handler = self._handlers.get(command.name)
        if handler is None:
            raise HandlerNotFoundError(f"No handler found for {command.name}")
        result: T = await self._invoke(handler, command)
        return result

    async def drain(self) -> None:
        """Wait for every command started by ``send``."""
        await self._deliveries.drain()

    async def close(self) -> None:
        await self._deliveries.close()

    async def _invoke(self, handler: CommandHandler, command: Command[Any, Any]) -> Any:
        if self.context_manager is None:
            return await handler.handle(command)
        async with self.context_manager.open(command) as context:
            return await handler.handle(command, context)

    async def _deliver(self, handler: CommandHandler, command: Command[Any, Any]) -> None:
        try:
            await retry(
                lambda: self._invoke(handler, command),
                max_attempts=self.settings.max_attempts,
                backoff=self.backoff,
                handler_name=handler_name(handler),
                message_name=command.name,
                kind="command",
                logger=self._logger,
            )
        except Exception as err:
            self._logger.error(
                f"{handler_name(handler)} failed to handle {command.name} command due to {err!r}"
            )

    async def on_startup(self) -> None:
        pass

    async def on_shutdown(self) -> None:
        await self.close()
