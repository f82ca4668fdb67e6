"""Shop domain shared by the unit and integration tests."""

from .aggregates import Cart
from .messages import (
    AddItem,
    AddItemPayload,
    CartCheckedOut,
    CartCheckedOutPayload,
    GetCart,
    GetCartPayload,
    ItemAdded,
    ItemAddedPayload,
    cart_checked_out,
    item_added,
)

__all__ = [
    "Cart",
    "AddItem",
    "AddItemPayload",
    "CartCheckedOut",
    "CartCheckedOutPayload",
    "GetCart",
    "GetCartPayload",
    "ItemAdded",
    "ItemAddedPayload",
    "cart_checked_out",
    "item_added",
]
