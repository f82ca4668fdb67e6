from pydantic import BaseModel, ConfigDict, Field


class Aggregate(BaseModel):
    """Base class for aggregates persisted as one versioned record.

    The aggregate is the unit of optimistic-locking consistency. Its
    ``version`` is the number of successful saves the instance was loaded
    at, so it travels with the aggregate from ``get_by_id`` to ``save``
    and cannot be dropped by accident. A freshly constructed aggregate has
    version 0, which the repository treats as a first save.

    The version is not part of the serialized document; the repository
    stores it separately as ``__version``.

    Examples:
        >>> class Cart(Aggregate):
        ...     items: list[str] = []
        >>>
        >>> cart = Cart(id="cart-1")
        >>> await repository.save(cart)           # version 0 -> 1
        >>> loaded = await repository.get_by_id_or_raise("cart-1")
        >>> loaded.version
        1

    Attributes:
        id: Identifier, unique per collection.
        version: Stored version this instance was loaded at.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    version: int = Field(default=0, ge=0, exclude=True)

    def is_new(self) -> bool:
        """Whether this instance has never been saved."""
        return self.version == 0
