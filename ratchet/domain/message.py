"""Message base classes for events, commands and queries.

Every message travels as a flat ``{name, payload}`` envelope. The ``name`` is
the routing key used by the buses, the outbox and the broker; concrete message
types declare it explicitly as the default of their ``name`` field so that two
classes sharing a short class name in different modules never collide.
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

TPayload = TypeVar("TPayload")
TResult = TypeVar("TResult")


class Message(BaseModel, Generic[TPayload]):
    """Base envelope shared by events, commands and queries.

    Attributes:
        name: Routing key of the message type.
        payload: Message data.

    Examples:
        >>> class ItemAddedPayload(BaseModel):
        ...     sku: str
        >>>
        >>> class ItemAdded(Event[ItemAddedPayload]):
        ...     name: Literal["ItemAdded"] = "ItemAdded"
        >>>
        >>> ItemAdded(payload=ItemAddedPayload(sku="A-1")).model_dump()
        {'name': 'ItemAdded', 'payload': {'sku': 'A-1'}}
    """

    model_config = ConfigDict(frozen=True)

    name: str
    payload: TPayload


class Event(Message[TPayload], Generic[TPayload]):
    """A fact that happened, delivered to any number of handlers."""


class Command(Message[TPayload], Generic[TPayload, TResult]):
    """An intention to change state, handled by exactly one handler.

    Type Parameters:
        TPayload: Command data.
        TResult: Type returned by the handler through ``send_sync``.
    """


class Query(Message[TPayload], Generic[TPayload, TResult]):
    """A read request, handled by exactly one handler.

    Type Parameters:
        TPayload: Query data.
        TResult: Type returned by the handler through ``execute``.
    """


def message_name(message: Message[Any] | type[Message[Any]] | str) -> str:
    """Resolve the routing key of a message type or instance.

    Args:
        message: A message instance, a message class declaring a default
            ``name``, or the key itself.

    Returns:
        The declared routing key.

    Raises:
        TypeError: If the message class does not declare a default name.
    """
    if isinstance(message, str):
        return message
    if isinstance(message, Message):
        return message.name

    field = message.model_fields.get("name")
    default = field.default if field is not None else None
    if not isinstance(default, str) or not default:
        raise TypeError(
            f"{message.__qualname__} must declare its routing key as the default of 'name'"
        )
    return default
