"""
Pre-checkout cart validation against live inventory and pricing.

Validation is read-only: it returns a ValidityReport and never writes the
cart. ``apply_report`` builds the adjusted cart for callers that want to
persist caps and removals.
"""
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from cartsync.config import PRICE_CHANGE_TOLERANCE
from cartsync.errors import InventoryUnavailable
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.services.inventory import InventoryLookup, InventoryRecord
from cartsync.services.money import relative_change, to_float
from .models import Cart, IdentityKey, LineItem, format_identity_key

logger = get_logger(__name__)


class RemovalReason(str, Enum):
    """Why a line item cannot go to checkout."""
    OUT_OF_STOCK = "out_of_stock"
    DELISTED = "delisted"
    PRICE_CHANGED = "price_changed"


@dataclass(frozen=True)
class RemovedItem:
    key: IdentityKey
    reason: RemovalReason


@dataclass(frozen=True)
class CappedItem:
    key: IdentityKey
    requested: int
    allowed: int


@dataclass(frozen=True)
class PriceChange:
    key: IdentityKey
    old_price: Decimal
    new_price: Decimal


@dataclass(frozen=True)
class ValidityReport:
    """Per-item outcome of validating a cart."""
    valid: bool
    removed_items: Tuple[RemovedItem, ...] = ()
    capped_items: Tuple[CappedItem, ...] = ()
    price_changes: Tuple[PriceChange, ...] = ()
    # Items whose inventory lookup failed; correctness cannot be confirmed
    unknown_items: Tuple[IdentityKey, ...] = ()
    empty: bool = False
    cart_version: int = 0

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "empty": self.empty,
            "cart_version": self.cart_version,
            "removed_items": [
                {"item": format_identity_key(r.key), "reason": r.reason.value}
                for r in self.removed_items
            ],
            "capped_items": [
                {"item": format_identity_key(c.key), "requested": c.requested, "allowed": c.allowed}
                for c in self.capped_items
            ],
            "price_changes": [
                {
                    "item": format_identity_key(p.key),
                    "old_price": to_float(p.old_price),
                    "new_price": to_float(p.new_price),
                }
                for p in self.price_changes
            ],
            "unknown_items": [format_identity_key(k) for k in self.unknown_items],
        }


async def _lookup(inventory: InventoryLookup, item: LineItem) -> Optional[InventoryRecord]:
    """Fetch the record for an item; None when inventory is unavailable."""
    try:
        return await inventory.lookup(item.product_id, item.variant_id)
    except InventoryUnavailable as e:
        logger.warning(f"Inventory unavailable for {format_identity_key(item.key)}: {e}")
        return None


async def validate(
    cart: Cart,
    inventory: InventoryLookup,
    price_tolerance: Decimal = PRICE_CHANGE_TOLERANCE,
) -> ValidityReport:
    """
    Check every line item of ``cart`` against ``inventory``.

    Policy per item:
    - lookup failed: listed as unknown, forces valid=False
    - delisted or zero stock: removed (``delisted`` / ``out_of_stock``)
    - price differs from the snapshot: recorded as a price change; removed
      with ``price_changed`` when the relative change exceeds price_tolerance
    - stock below the requested quantity: capped to stock

    Args:
        cart: Cart to validate (not modified)
        inventory: Live stock/price source
        price_tolerance: Max relative price change kept without re-confirmation

    Returns:
        ValidityReport; ``valid`` only for a non-empty cart with nothing
        removed, capped or unknown
    """
    if cart.is_empty:
        return ValidityReport(valid=False, empty=True, cart_version=cart.version)

    records = await asyncio.gather(*[_lookup(inventory, item) for item in cart.items])

    removed: List[RemovedItem] = []
    capped: List[CappedItem] = []
    price_changes: List[PriceChange] = []
    unknown: List[IdentityKey] = []

    for item, record in zip(cart.items, records):
        if record is None:
            unknown.append(item.key)
            continue

        if record.delisted:
            removed.append(RemovedItem(item.key, RemovalReason.DELISTED))
            continue

        if record.stock == 0:
            removed.append(RemovedItem(item.key, RemovalReason.OUT_OF_STOCK))
            continue

        if record.price != item.unit_price:
            price_changes.append(PriceChange(item.key, item.unit_price, record.price))
            if relative_change(item.unit_price, record.price) > price_tolerance:
                removed.append(RemovedItem(item.key, RemovalReason.PRICE_CHANGED))
                continue

        if record.stock < item.quantity:
            capped.append(CappedItem(item.key, item.quantity, record.stock))

    report = ValidityReport(
        valid=not (removed or capped or unknown),
        removed_items=tuple(removed),
        capped_items=tuple(capped),
        price_changes=tuple(price_changes),
        unknown_items=tuple(unknown),
        cart_version=cart.version,
    )
    if not report.valid:
        logger.info(
            f"Cart {sanitize_id_for_logging(cart.owner_key)} failed validation: "
            f"{len(removed)} removed, {len(capped)} capped, {len(unknown)} unknown"
        )
    return report


def apply_report(cart: Cart, report: ValidityReport) -> Cart:
    """
    New cart value with the report's removals and caps applied.

    Price changes within tolerance and unknown items are left untouched.
    The returned cart keeps ``cart.version`` as its compare-and-set base.
    """
    removed_keys = {r.key for r in report.removed_items}
    caps = {c.key: c.allowed for c in report.capped_items}

    items = [
        item.with_quantity(caps[item.key]) if item.key in caps else item
        for item in cart.items
        if item.key not in removed_keys
    ]
    return cart.with_items(items)
