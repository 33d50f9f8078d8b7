"""
Guest-to-user cart merge.

``merge`` is a pure function: it reads two cart values and returns a new
one, touching no storage. The caller writes the result back with the user
cart's version as the compare-and-set base.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from .models import Cart, IdentityKey, LineItem, MergedSource, identity_sort_key, format_identity_key

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

# Most recent guest carts remembered on a user cart
MAX_MERGED_SOURCES = 20


@dataclass(frozen=True)
class MergeResult:
    """Merged cart plus which identity keys came from where."""
    merged_cart: Cart
    items_combined: FrozenSet[IdentityKey] = field(default_factory=frozenset)
    items_kept_from_guest: FrozenSet[IdentityKey] = field(default_factory=frozenset)
    items_kept_from_user: FrozenSet[IdentityKey] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        def keys(values):
            return sorted(format_identity_key(k) for k in values)

        return {
            "merged_cart": self.merged_cart.to_dict(),
            "items_combined": keys(self.items_combined),
            "items_kept_from_guest": keys(self.items_kept_from_guest),
            "items_kept_from_user": keys(self.items_kept_from_user),
        }


def _is_newer(candidate: Optional[datetime], baseline: Optional[datetime]) -> bool:
    # Missing or equal timestamps never beat the user item
    return candidate is not None and baseline is not None and candidate > baseline


def _combine(guest_item: LineItem, user_item: LineItem) -> LineItem:
    """Sum quantities; price snapshot and added_at follow the newer item."""
    source = guest_item if _is_newer(guest_item.added_at, user_item.added_at) else user_item
    return replace(source, quantity=guest_item.quantity + user_item.quantity)


def _ordered(items: List[LineItem]) -> List[LineItem]:
    return sorted(items, key=lambda item: (item.added_at or _EPOCH, identity_sort_key(item.key)))


def _unabsorbed(guest_cart: Cart, source: Optional[MergedSource]) -> List[LineItem]:
    """Guest items beyond the quantities an earlier merge already took."""
    if source is None:
        return list(guest_cart.items)
    pending = []
    for item in guest_cart.items:
        remaining = item.quantity - source.absorbed_quantity(item.key)
        if remaining > 0:
            pending.append(item.with_quantity(remaining))
    return pending


def _record_source(user_cart: Cart, guest_cart: Cart, previous: Optional[MergedSource]) -> Tuple[MergedSource, ...]:
    absorbed = {key: qty for key, qty in previous.absorbed} if previous else {}
    for item in guest_cart.items:
        absorbed[item.key] = max(absorbed.get(item.key, 0), item.quantity)
    source = MergedSource(
        owner_key=guest_cart.owner_key,
        version=guest_cart.version,
        created_at=guest_cart.created_at,
        absorbed=tuple(sorted(absorbed.items(), key=lambda entry: identity_sort_key(entry[0]))),
    )
    others = tuple(s for s in user_cart.merged_sources if s.owner_key != guest_cart.owner_key)
    return (others + (source,))[-MAX_MERGED_SOURCES:]


def merge(guest_cart: Cart, user_cart: Cart) -> MergeResult:
    """
    Merge a guest cart into a user cart.

    Keys present in one cart are kept as-is; keys present in both get the
    summed quantity. Items are ordered by added_at, then identity key.

    The user cart records each merged guest cart with its version and the
    quantities taken from it. Merging the same guest version again leaves
    the user cart unchanged, as does an empty guest cart. A guest cart
    written to since its last merge contributes only the quantities added
    since.
    """
    recorded = user_cart.merged_source(guest_cart.owner_key)
    # A guest cart deleted and recreated since is merged from scratch
    source = recorded if recorded is not None and recorded.covers(guest_cart) else None
    already_merged = source is not None and source.version == guest_cart.version
    if guest_cart.owner_key == user_cart.owner_key or already_merged or guest_cart.is_empty:
        return MergeResult(
            merged_cart=user_cart,
            items_kept_from_user=frozenset(item.key for item in user_cart.items),
        )

    guest_items: Dict[IdentityKey, LineItem] = {item.key: item for item in _unabsorbed(guest_cart, source)}
    user_items: Dict[IdentityKey, LineItem] = {item.key: item for item in user_cart.items}

    combined = set()
    from_guest = set()
    from_user = set()
    merged_items: List[LineItem] = []

    for key in guest_items.keys() | user_items.keys():
        guest_item = guest_items.get(key)
        user_item = user_items.get(key)
        if guest_item is not None and user_item is not None:
            merged_items.append(_combine(guest_item, user_item))
            combined.add(key)
        elif guest_item is not None:
            merged_items.append(guest_item)
            from_guest.add(key)
        else:
            merged_items.append(user_item)
            from_user.add(key)

    merged_cart = replace(
        user_cart,
        items=tuple(_ordered(merged_items)),
        merged_sources=_record_source(user_cart, guest_cart, source),
    )
    return MergeResult(
        merged_cart=merged_cart,
        items_combined=frozenset(combined),
        items_kept_from_guest=frozenset(from_guest),
        items_kept_from_user=frozenset(from_user),
    )
