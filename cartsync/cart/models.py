"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple

from cartsync.errors import (
    InvariantViolation,
    ERROR_DUPLICATE_ITEM,
    ERROR_NON_POSITIVE_QUANTITY,
)
from cartsync.services.money import to_decimal, round_money, multiply

# (product_id, variant_id)
IdentityKey = Tuple[str, Optional[str]]

GUEST_PREFIX = "guest:"
USER_PREFIX = "user:"


def guest_owner_key(session_id: str) -> str:
    return f"{GUEST_PREFIX}{session_id}"


def user_owner_key(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


def is_guest_key(owner_key: str) -> bool:
    return owner_key.startswith(GUEST_PREFIX)


def identity_sort_key(key: IdentityKey) -> Tuple[str, str]:
    """Lexical ordering for identity keys; a missing variant sorts first."""
    product_id, variant_id = key
    return (product_id, variant_id or "")


def format_identity_key(key: IdentityKey) -> str:
    product_id, variant_id = key
    return f"{product_id}:{variant_id}" if variant_id else product_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    # Stored timestamps are UTC; naive values come from older writers
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class MergedSource:
    """
    Guest cart already folded into a user cart.

    ``absorbed`` holds the highest quantity taken from the guest cart per
    identity key; a later merge of the same guest cart only adds what
    exceeds it.
    """
    owner_key: str
    version: int
    # Tells a recreated guest cart apart from the one merged earlier
    created_at: Optional[datetime] = None
    absorbed: Tuple[Tuple[IdentityKey, int], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "absorbed", tuple((tuple(key), qty) for key, qty in self.absorbed))

    def covers(self, cart: "Cart") -> bool:
        """True if this record is for the same stored guest cart."""
        return self.owner_key == cart.owner_key and self.created_at == cart.created_at

    def absorbed_quantity(self, key: IdentityKey) -> int:
        return next((qty for k, qty in self.absorbed if k == key), 0)

    def to_dict(self) -> dict:
        return {
            "owner_key": self.owner_key,
            "version": self.version,
            "created_at": _format_datetime(self.created_at),
            "absorbed": [
                {"product_id": key[0], "variant_id": key[1], "quantity": qty}
                for key, qty in self.absorbed
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MergedSource":
        return cls(
            owner_key=data["owner_key"],
            version=int(data["version"]),
            created_at=_parse_datetime(data.get("created_at")),
            absorbed=tuple(
                ((entry["product_id"], entry.get("variant_id")), int(entry["quantity"]))
                for entry in data.get("absorbed", [])
            ),
        )


@dataclass(frozen=True)
class LineItem:
    """Single line in a cart, identified by (product_id, variant_id)."""
    product_id: str
    quantity: int
    unit_price: Decimal  # Price snapshot taken when the item was added
    variant_id: Optional[str] = None
    added_at: Optional[datetime] = None

    def __post_init__(self):
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))

    @property
    def key(self) -> IdentityKey:
        return (self.product_id, self.variant_id)

    @property
    def total_price(self) -> Decimal:
        """Total price for all units at the snapshot price."""
        return round_money(multiply(self.unit_price, self.quantity))

    def with_quantity(self, quantity: int) -> "LineItem":
        return replace(self, quantity=quantity)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "added_at": _format_datetime(self.added_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            product_id=data["product_id"],
            variant_id=data.get("variant_id"),
            quantity=int(data["quantity"]),
            unit_price=to_decimal(data["unit_price"]),
            added_at=_parse_datetime(data.get("added_at")),
        )


@dataclass(frozen=True)
class Cart:
    """
    Shopping cart owned by a guest session or a user.

    Carts are immutable values: every change produces a new Cart that is
    written back whole through the store's compare-and-set ``put``.
    ``version`` is the stored version this value was read at (0 if the cart
    has never been stored).
    """
    owner_key: str
    items: Tuple[LineItem, ...] = ()
    version: int = 0
    updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    # Guest carts already folded into this cart
    merged_sources: Tuple[MergedSource, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "merged_sources", tuple(self.merged_sources))

    @classmethod
    def empty(cls, owner_key: str) -> "Cart":
        return cls(owner_key=owner_key)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total_items(self) -> int:
        """Total number of units in cart."""
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        """Sum of line totals at snapshot prices."""
        return round_money(sum((item.total_price for item in self.items), Decimal("0")))

    def find(self, key: IdentityKey) -> Optional[LineItem]:
        return next((item for item in self.items if item.key == key), None)

    def merged_source(self, owner_key: str) -> Optional[MergedSource]:
        return next((s for s in self.merged_sources if s.owner_key == owner_key), None)

    def with_items(self, items: List[LineItem]) -> "Cart":
        """New cart value with items replaced; zero-quantity lines are dropped."""
        return replace(self, items=tuple(item for item in items if item.quantity > 0))

    def check_invariants(self) -> None:
        """Raise InvariantViolation on duplicate keys or non-positive quantities."""
        seen = set()
        for item in self.items:
            if item.key in seen:
                raise InvariantViolation(
                    f"{ERROR_DUPLICATE_ITEM} {format_identity_key(item.key)} in {self.owner_key}"
                )
            seen.add(item.key)
            if item.quantity <= 0:
                raise InvariantViolation(
                    f"{ERROR_NON_POSITIVE_QUANTITY}: {format_identity_key(item.key)} "
                    f"has quantity {item.quantity} in {self.owner_key}"
                )

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "owner_key": self.owner_key,
            "items": [item.to_dict() for item in self.items],
            "version": self.version,
            "updated_at": _format_datetime(self.updated_at),
            "created_at": _format_datetime(self.created_at),
            "merged_sources": [source.to_dict() for source in self.merged_sources],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        """Create from dictionary. Does not check invariants; the store does."""
        return cls(
            owner_key=data["owner_key"],
            items=tuple(LineItem.from_dict(item) for item in data.get("items", [])),
            version=int(data.get("version", 0)),
            updated_at=_parse_datetime(data.get("updated_at")),
            created_at=_parse_datetime(data.get("created_at")),
            merged_sources=tuple(MergedSource.from_dict(s) for s in data.get("merged_sources", [])),
        )
