"""Tests for guest-to-user cart merge"""
from decimal import Decimal

from cartsync.cart import Cart, LineItem, MergedSource, merge
from cartsync.cart.merge import MAX_MERGED_SOURCES
from conftest import at, item

GUEST = "guest:sess-1"
USER = "user:u-1"


def quantities(cart):
    return {line.product_id: line.quantity for line in cart.items}


def test_login_scenario_combines_shared_items():
    guest = Cart(GUEST, items=(item("A", 2, added=1), item("B", 1, added=2)))
    user = Cart(USER, items=(item("B", 3, added=3), item("C", 1, added=4)), version=5)

    result = merge(guest, user)

    assert quantities(result.merged_cart) == {"A": 2, "B": 4, "C": 1}
    assert result.items_combined == {("B", None)}
    assert result.items_kept_from_guest == {("A", None)}
    assert result.items_kept_from_user == {("C", None)}


def test_merged_cart_is_union_with_summed_quantities():
    guest = Cart(GUEST, items=(item("A", 1), item("B", 2, variant_id="red"), item("D", 7)))
    user = Cart(USER, items=(item("B", 5, variant_id="red"), item("B", 1, variant_id="blue"), item("E", 3)))

    merged = merge(guest, user).merged_cart
    keys = {line.key for line in merged.items}

    assert keys == {line.key for line in guest.items} | {line.key for line in user.items}
    assert merged.find(("B", "red")).quantity == 7
    assert merged.find(("B", "blue")).quantity == 1
    merged.check_invariants()


def test_merge_keeps_user_owner_and_version_as_base():
    guest = Cart(GUEST, items=(item("A", 1),), version=2)
    user = Cart(USER, items=(item("B", 1),), version=9)

    merged = merge(guest, user).merged_cart

    assert merged.owner_key == USER
    assert merged.version == 9
    assert merged.merged_source(GUEST).version == 2


def test_empty_guest_leaves_user_cart_unchanged():
    user = Cart(USER, items=(item("A", 2), item("B", 1)), version=3)

    result = merge(Cart.empty(GUEST), user)

    assert result.merged_cart == user
    assert result.items_combined == frozenset()
    assert result.items_kept_from_user == {("A", None), ("B", None)}


def test_empty_user_takes_guest_items_under_user_key():
    guest = Cart(GUEST, items=(item("A", 2, added=5), item("B", 1, added=1)))

    merged = merge(guest, Cart.empty(USER)).merged_cart

    assert merged.owner_key == USER
    assert [line.product_id for line in merged.items] == ["B", "A"]
    assert quantities(merged) == {"A": 2, "B": 1}


def test_both_empty_gives_empty_cart():
    merged = merge(Cart.empty(GUEST), Cart.empty(USER)).merged_cart

    assert merged.is_empty
    assert merged.owner_key == USER


def test_merging_cart_with_itself_does_not_double_count():
    user = Cart(USER, items=(item("A", 2),))

    assert merge(user, user).merged_cart == user


def test_repeated_merge_of_same_guest_is_noop():
    guest = Cart(GUEST, items=(item("A", 2),))
    user = Cart(USER, items=(item("A", 1),))

    once = merge(guest, user).merged_cart
    twice = merge(guest, once).merged_cart

    assert twice.find(("A", None)).quantity == 3
    assert twice == once


def test_merge_is_deterministic():
    guest = Cart(GUEST, items=(item("Z", 1, added=3), item("A", 1, added=3), item("M", 2)))
    user = Cart(USER, items=(item("M", 1, added=3), item("B", 4, added=1)))

    first = merge(guest, user)
    second = merge(guest, user)

    assert first == second


def test_ordering_by_added_at_then_key():
    guest = Cart(GUEST, items=(item("Z", 1, added=3), item("A", 1, added=3)))
    user = Cart(USER, items=(item("B", 4, added=1), item("C", 1, variant_id="x", added=3), item("C", 1, added=3)))

    merged = merge(guest, user).merged_cart

    assert [line.key for line in merged.items] == [
        ("B", None),
        ("A", None),
        ("C", None),
        ("C", "x"),
        ("Z", None),
    ]


def test_shared_item_uses_newer_snapshot():
    guest = Cart(GUEST, items=(item("A", 1, price="12.00", added=10),))
    user = Cart(USER, items=(item("A", 1, price="10.00", added=2),))

    line = merge(guest, user).merged_cart.find(("A", None))

    assert line.unit_price == Decimal("12.00")
    assert line.added_at == guest.items[0].added_at
    assert line.quantity == 2


def test_shared_item_tie_prefers_user_snapshot():
    guest = Cart(GUEST, items=(item("A", 1, price="12.00", added=2),))
    user = Cart(USER, items=(item("A", 1, price="10.00", added=2),))

    line = merge(guest, user).merged_cart.find(("A", None))

    assert line.unit_price == Decimal("10.00")


def test_shared_item_missing_timestamp_prefers_user_snapshot():
    guest = Cart(GUEST, items=(item("A", 1, price="12.00", added=50),))
    user = Cart(USER, items=(LineItem(product_id="A", quantity=1, unit_price="10.00"),))

    line = merge(guest, user).merged_cart.find(("A", None))

    assert line.unit_price == Decimal("10.00")


def test_merge_does_not_mutate_inputs():
    guest = Cart(GUEST, items=(item("A", 2),))
    user = Cart(USER, items=(item("A", 1),))
    guest_before, user_before = guest.to_dict(), user.to_dict()

    merge(guest, user)

    assert guest.to_dict() == guest_before
    assert user.to_dict() == user_before


def test_merged_sources_are_capped():
    sources = tuple(MergedSource(f"guest:old-{i}", 1) for i in range(MAX_MERGED_SOURCES))
    user = Cart(USER, items=(item("A", 1),), merged_sources=sources)

    merged = merge(Cart(GUEST, items=(item("B", 1),)), user).merged_cart

    assert len(merged.merged_sources) == MAX_MERGED_SOURCES
    assert merged.merged_sources[-1].owner_key == GUEST
    assert merged.merged_source("guest:old-0") is None


def test_guest_written_after_merge_adds_only_new_quantities():
    guest = Cart(GUEST, items=(item("A", 2),), version=1, created_at=at(0))
    once = merge(guest, Cart(USER, items=(item("C", 1),))).merged_cart

    grown = Cart(GUEST, items=(item("A", 3), item("B", 1, added=5)), version=2, created_at=at(0))
    result = merge(grown, once)

    assert quantities(result.merged_cart) == {"A": 3, "B": 1, "C": 1}
    assert result.items_combined == {("A", None)}
    assert result.items_kept_from_guest == {("B", None)}
    source = result.merged_cart.merged_source(GUEST)
    assert source.version == 2
    assert source.absorbed_quantity(("A", None)) == 3


def test_guest_quantity_lowered_after_merge_adds_nothing():
    guest = Cart(GUEST, items=(item("A", 3),), version=1, created_at=at(0))
    once = merge(guest, Cart.empty(USER)).merged_cart

    lowered = Cart(GUEST, items=(item("A", 1),), version=2, created_at=at(0))
    merged = merge(lowered, once).merged_cart

    assert quantities(merged) == {"A": 3}
    assert merged.merged_source(GUEST).absorbed_quantity(("A", None)) == 3


def test_recreated_guest_cart_is_merged_in_full():
    first = Cart(GUEST, items=(item("A", 2),), version=1, created_at=at(0))
    once = merge(first, Cart.empty(USER)).merged_cart

    # Same session key and version, but a new cart
    recreated = Cart(GUEST, items=(item("A", 2), item("B", 1)), version=1, created_at=at(60))
    merged = merge(recreated, once).merged_cart

    assert quantities(merged) == {"A": 4, "B": 1}
    assert len(merged.merged_sources) == 1
    assert merged.merged_source(GUEST).created_at == at(60)


def test_merged_sources_survive_serialization():
    guest = Cart(GUEST, items=(item("A", 2, variant_id="red"),), version=3, created_at=at(0))
    merged = merge(guest, Cart.empty(USER)).merged_cart

    assert Cart.from_dict(merged.to_dict()) == merged
