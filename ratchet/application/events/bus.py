"""In-process event bus with per-handler retries."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

from ...domain import Event, message_name
from ...domain.exceptions import HandlerFailedError
from ..retry import RetryMechanism, RetrySettings, TaskSupervisor, retry

LOGGER = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound=Event[Any], contravariant=True)


class EventHandler(Protocol[TEvent]):
    """Anything with an async ``handle(event)`` method."""

    async def handle(self, event: TEvent) -> None: ...


def handler_name(handler: object) -> str:
    return type(handler).__name__


class LocalEventBus:
    """Delivers events to every handler subscribed to their name.

    Handlers of one event run concurrently and independently: each one is
    retried with exponential backoff on its own, and a handler that keeps
    failing never affects the others.

    ``publish`` only starts the delivery and returns; handler failures that
    survive every attempt are logged at error level. Use
    ``publish_and_wait_for_handlers`` to wait for the handlers and get the
    final failure raised instead.

    Args:
        settings: Attempts per handler and initial retry delay.
        backoff: Retry delay policy. Defaults to exponential backoff from
            ``settings.initial_delay``.
        logger: Logger to use instead of the module logger.

    Example:
        >>> bus = LocalEventBus(RetrySettings(max_attempts=3))
        >>> bus.subscribe(ItemAdded, SendConfirmationEmail())
        >>> await bus.publish(ItemAdded(payload=...))
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        backoff: RetryMechanism | None = None,
        logger: logging.Logger | None = None,
    ):
        self.settings = settings or RetrySettings()
        self.backoff = backoff or self.settings.backoff()
        self._logger = logger or LOGGER
        self._handlers: dict[str, list[EventHandler[Any]]] = defaultdict(list)
        self._deliveries = TaskSupervisor()

    def subscribe(self, event_type: type[Event[Any]] | str, handler: EventHandler[Any]) -> None:
        """Add ``handler`` to the handlers of ``event_type``."""
        self._handlers[message_name(event_type)].append(handler)

    async def publish(self, event: Event[Any]) -> None:
        handlers = self._find_handlers(event)
        for handler in handlers:
            self._deliveries.spawn(self._deliver(handler, event))

    async def publish_all(self, events: Sequence[Event[Any]]) -> None:
        """Publish several events in order. Usable as an outbox publish callback."""
        for event in events:
            await self.publish(event)

    async def publish_and_wait_for_handlers(self, event: Event[Any]) -> None:
        """Publish ``event`` and wait until every handler has finished.

        Raises:
            HandlerFailedError: If a handler still failed on its last attempt.
                Other handlers still run to completion.
        """
        handlers = self._find_handlers(event)
        results = await asyncio.gather(
            *(self._handle(handler, event) for handler in handlers), return_exceptions=True
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                raise HandlerFailedError(
                    f"{handler_name(handler)} failed to handle {event.name} event due to {result!r}"
                ) from result

    async def drain(self) -> None:
        """Wait for every delivery started by ``publish``."""
        await self._deliveries.drain()

    async def close(self) -> None:
        """Cancel pending deliveries, including ones waiting for a retry."""
        await self._deliveries.close()

    def _find_handlers(self, event: Event[Any]) -> list[EventHandler[Any]]:
        handlers = list(self._handlers.get(event.name, ()))
        if not handlers:
            self._logger.warning(f"No handler found for {event.name}")
        return handlers

    async def _handle(self, handler: EventHandler[Any], event: Event[Any]) -> None:
        await retry(
            lambda: handler.handle(event),
            max_attempts=self.settings.max_attempts,
            backoff=self.backoff,
            handler_name=handler_name(handler),
            message_name=event.name,
            kind="event",
            logger=self._logger,
        )

    async def _deliver(self, handler: EventHandler[Any], event: Event[Any]) -> None:
        try:
            await self._handle(handler, event)
        except Exception as err:
            self._logger.error(
                f"{handler_name(handler)} failed to handle {event.name} event due to {err!r}"
            )

    async def on_startup(self) -> None:
        pass

    async def on_shutdown(self) -> None:
        await self.close()
