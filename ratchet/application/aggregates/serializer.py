from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from ...domain import Aggregate

A = TypeVar("A", bound=Aggregate)


class AggregateSerializer(ABC, Generic[A]):
    """Converts between an aggregate and its stored document.

    The document must carry the aggregate ``id`` under the ``id`` key. The
    version is handled by the repository and must not be part of it.
    """

    @abstractmethod
    def to_document(self, aggregate: A) -> dict[str, Any]: ...

    @abstractmethod
    def from_document(self, document: dict[str, Any]) -> A: ...


class ModelSerializer(AggregateSerializer[A]):
    """Serializer for pydantic aggregates, using their JSON-mode dump.

    Example:
        >>> serializer = ModelSerializer(Cart)
        >>> serializer.to_document(Cart(id="cart-1", items=["A-1"]))
        {'id': 'cart-1', 'items': ['A-1']}
    """

    def __init__(self, aggregate_type: type[A]):
        self.aggregate_type = aggregate_type

    def to_document(self, aggregate: A) -> dict[str, Any]:
        return aggregate.model_dump(mode="json")

    def from_document(self, document: dict[str, Any]) -> A:
        return self.aggregate_type.model_validate(document)
