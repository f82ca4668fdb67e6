import logging
from typing import Any, Protocol, TypeVar

from ...domain import Query, message_name
from ...domain.exceptions import HandlerAlreadyRegisteredError, HandlerNotFoundError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class QueryHandler(Protocol):
    async def handle(self, query: Any) -> Any: ...


class LocalQueryBus:
    """Routes every query to the single handler registered for its name.

    Queries are read-only, so failures propagate to the caller immediately
    and retrying is left to it.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or LOGGER
        self._handlers: dict[str, QueryHandler] = {}

    def register(self, query_type: type[Query[Any, Any]] | str, handler: QueryHandler) -> None:
        name = message_name(query_type)
        if name in self._handlers:
            raise HandlerAlreadyRegisteredError(f"Query {name} is already registered")
        self._handlers[name] = handler
        self._logger.debug(f"Query {name} registered")

    async def execute(self, query: Query[Any, T]) -> T:
        handler = self._handlers.get(query.name)
        if handler is None:
            raise HandlerNotFoundError(f"No handler found for {query.name}")
        result: T = await handler.handle(query)
        return result
