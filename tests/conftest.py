"""Pytest configuration and fixtures"""
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional, Tuple

import pytest

# Set test environment variables before cartsync.config is imported
os.environ.setdefault("CRON_SECRET", "test_cron_secret")
os.environ.setdefault("INVENTORY_API_URL", "https://inventory.test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from cartsync.cart.models import Cart, LineItem  # noqa: E402
from cartsync.cart.storage import InMemoryCartStore  # noqa: E402
from cartsync.errors import InventoryUnavailable  # noqa: E402
from cartsync.services.inventory import InventoryLookup, InventoryRecord  # noqa: E402


class FakeClock:
    """Settable clock for stores and cleanup."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeInventory(InventoryLookup):
    """In-memory inventory keyed by (product_id, variant_id)."""

    def __init__(self):
        self.records: Dict[Tuple[str, Optional[str]], InventoryRecord] = {}
        self.failing = set()
        self.calls = 0

    def set(self, product_id, stock, price, variant_id=None, delisted=False):
        self.records[(product_id, variant_id)] = InventoryRecord(stock=stock, price=price, delisted=delisted)

    def fail(self, product_id, variant_id=None):
        self.failing.add((product_id, variant_id))

    async def lookup(self, product_id, variant_id=None):
        self.calls += 1
        key = (product_id, variant_id)
        if key in self.failing:
            raise InventoryUnavailable(product_id, "timeout")
        record = self.records.get(key)
        if record is None:
            return InventoryRecord(stock=0, price=Decimal("0"), delisted=True)
        return record


def at(minutes: int) -> datetime:
    """Fixed timestamp offset in minutes from a common base."""
    return datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)


def item(product_id, quantity, price="10.00", variant_id=None, added=0) -> LineItem:
    """Line item shorthand for tests."""
    return LineItem(
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        unit_price=Decimal(price),
        added_at=at(added),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory cart store on a fixed clock"""
    return InMemoryCartStore(clock=clock)


@pytest.fixture
def inventory():
    return FakeInventory()


@pytest.fixture
def sample_cart():
    """Sample user cart with two lines"""
    return Cart(
        owner_key="user:user-123",
        items=(
            item("prod-1", 2, "100.00", added=1),
            item("prod-2", 1, "200.00", variant_id="large", added=2),
        ),
    )
