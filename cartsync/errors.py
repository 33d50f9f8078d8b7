"""
Cart error types and messages.

Centralized error messages to avoid string duplication.
"""
from typing import Optional

# Store errors
ERROR_VERSION_CONFLICT = "Cart was modified concurrently"
ERROR_STORE_UNAVAILABLE = "Cart service unavailable"

# Cart errors
ERROR_CART_NOT_FOUND = "Cart not found"
ERROR_ITEM_NOT_IN_CART = "Item not in cart"
ERROR_DUPLICATE_ITEM = "Duplicate line item"
ERROR_NON_POSITIVE_QUANTITY = "Line item quantity must be positive"

# Inventory errors
ERROR_INVENTORY_UNAVAILABLE = "Inventory service unavailable"


class CartError(Exception):
    """Base class for all cart errors."""


class Conflict(CartError):
    """Compare-and-set write lost against a concurrent writer."""

    def __init__(self, owner_key: str, expected_version: int, actual_version: Optional[int] = None):
        self.owner_key = owner_key
        self.expected_version = expected_version
        self.actual_version = actual_version
        found = "a concurrent write" if actual_version is None else f"version {actual_version}"
        super().__init__(f"{ERROR_VERSION_CONFLICT}: expected version {expected_version}, found {found}")


class NotFound(CartError):
    """Requested cart or line item does not exist."""


class InventoryUnavailable(CartError):
    """Inventory lookup failed for a product."""

    def __init__(self, product_id: str, reason: str = ""):
        self.product_id = product_id
        message = f"{ERROR_INVENTORY_UNAVAILABLE} for {product_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvariantViolation(CartError):
    """Cart breaks the unique-key or positive-quantity invariant."""


class StoreUnavailable(CartError):
    """Cart storage backend failed."""


__all__ = [
    "CartError",
    "Conflict",
    "NotFound",
    "InventoryUnavailable",
    "InvariantViolation",
    "StoreUnavailable",
    "ERROR_VERSION_CONFLICT",
    "ERROR_STORE_UNAVAILABLE",
    "ERROR_CART_NOT_FOUND",
    "ERROR_ITEM_NOT_IN_CART",
    "ERROR_DUPLICATE_ITEM",
    "ERROR_NON_POSITIVE_QUANTITY",
    "ERROR_INVENTORY_UNAVAILABLE",
]
