"""Registry mapping routing keys to event types."""

from collections.abc import Iterable
from typing import Any

from ...domain import Event, message_name


class EventTypeRegistry:
    """Event types known to an outbox, keyed by routing key.

    Stored envelopes are rebuilt as the registered type of their ``name``.
    Envelopes with no registered type are rebuilt as a plain
    ``Event[dict[str, Any]]``, so they still publish with their original
    name and payload.

    Examples:
        >>> registry = EventTypeRegistry([ItemAdded])
        >>> registry.register(CartCheckedOut)
        >>> registry.rebuild({"name": "ItemAdded", "payload": {...}})
        ItemAdded(name='ItemAdded', payload=ItemAddedPayload(...))
    """

    def __init__(self, event_types: Iterable[type[Event[Any]]] = ()):
        self._types: dict[str, type[Event[Any]]] = {}
        for event_type in event_types:
            self.register(event_type)

    def register(self, event_type: type[Event[Any]]) -> None:
        """Register ``event_type`` under its routing key.

        Raises:
            ValueError: If another type is registered under the same key.
            TypeError: If the type does not declare a routing key.
        """
        name = message_name(event_type)
        registered = self._types.setdefault(name, event_type)
        if registered is not event_type:
            raise ValueError(
                f"Event {name} is already registered to {registered.__qualname__}"
            )

    def get(self, name: str) -> type[Event[Any]] | None:
        return self._types.get(name)

    def rebuild(self, envelope: dict[str, Any]) -> Event[Any]:
        event_type = self._types.get(envelope.get("name", ""))
        if event_type is None:
            return Event[dict[str, Any]].model_validate(envelope)
        return event_type.model_validate(envelope)
