"""Cart manager service on top of the compare-and-set cart store."""
from typing import Callable, Optional, Tuple

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_random,
    retry_if_exception_type,
)

from cartsync.config import WRITE_MAX_ATTEMPTS
from cartsync.errors import Conflict, NotFound, ERROR_CART_NOT_FOUND, ERROR_ITEM_NOT_IN_CART
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.services.inventory import InventoryLookup
from cartsync.services.money import to_decimal, to_float
from .models import Cart, LineItem, utcnow
from .storage import CartStore, RedisCartStore
from .validation import ValidityReport, apply_report, validate

logger = get_logger(__name__)


class CartManager:
    """
    Manages shopping carts.

    Every change is a read-modify-write of the whole cart; a Conflict from
    a concurrent writer re-reads and re-applies the change, up to
    WRITE_MAX_ATTEMPTS times.
    """

    def __init__(self, store: Optional[CartStore] = None, max_attempts: int = WRITE_MAX_ATTEMPTS):
        self._store = store  # Lazy initialization
        self.max_attempts = max_attempts

    @property
    def store(self) -> CartStore:
        if self._store is None:
            self._store = RedisCartStore()
        return self._store

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random(0, 0.05),
            retry=retry_if_exception_type(Conflict),
            reraise=True,
        )

    async def _update(self, owner_key: str, change: Callable[[Cart], Cart]) -> Cart:
        async for attempt in self._retrying():
            with attempt:
                cart = await self.store.get_or_empty(owner_key)
                return await self.store.put(owner_key, change(cart))

    async def get_cart(self, owner_key: str) -> Optional[Cart]:
        return await self.store.get(owner_key)

    async def add_item(
        self,
        owner_key: str,
        product_id: str,
        quantity: int,
        unit_price,
        available_stock: int,
        variant_id: Optional[str] = None,
    ) -> Cart:
        """Add units of a product, creating the cart on first add."""
        if not product_id or not isinstance(product_id, str):
            raise ValueError("product_id must be a non-empty string")
        if not isinstance(quantity, int) or quantity < 1:
            raise ValueError("quantity must be a positive integer")
        if not isinstance(available_stock, int) or available_stock < 0:
            raise ValueError("available_stock must be a non-negative integer")
        price = to_decimal(unit_price)
        if price < 0:
            raise ValueError("unit_price must be a non-negative number")

        key = (product_id, variant_id)

        def change(cart: Cart) -> Cart:
            existing = cart.find(key)
            new_quantity = quantity + (existing.quantity if existing else 0)
            if new_quantity > available_stock:
                noun = "item" if available_stock == 1 else "items"
                raise ValueError(f"Only {available_stock} {noun} available in stock")

            if existing:
                # Price snapshot stays as of the first add
                items = [item.with_quantity(new_quantity) if item.key == key else item for item in cart.items]
            else:
                items = list(cart.items) + [
                    LineItem(
                        product_id=product_id,
                        variant_id=variant_id,
                        quantity=quantity,
                        unit_price=price,
                        added_at=utcnow(),
                    )
                ]
            return cart.with_items(items)

        return await self._update(owner_key, change)

    async def update_item_quantity(
        self,
        owner_key: str,
        product_id: str,
        quantity: int,
        variant_id: Optional[str] = None,
    ) -> Cart:
        """Set a line's quantity; zero or less removes the line."""
        if not isinstance(quantity, int):
            raise ValueError("quantity must be an integer")

        key = (product_id, variant_id)

        def change(cart: Cart) -> Cart:
            if cart.version == 0:
                raise NotFound(ERROR_CART_NOT_FOUND)
            if cart.find(key) is None:
                raise NotFound(ERROR_ITEM_NOT_IN_CART)
            items = [item.with_quantity(quantity) if item.key == key else item for item in cart.items]
            return cart.with_items(items)

        return await self._update(owner_key, change)

    async def remove_item(self, owner_key: str, product_id: str, variant_id: Optional[str] = None) -> Cart:
        """Remove a line from the cart."""
        return await self.update_item_quantity(owner_key, product_id, 0, variant_id)

    async def clear_cart(self, owner_key: str) -> Optional[Cart]:
        """Empty the cart. The empty cart stays stored so its version keeps counting."""
        cart = await self.store.get(owner_key)
        if cart is None:
            return None
        return await self._update(owner_key, lambda current: current.with_items([]))

    async def apply_validation(self, owner_key: str, inventory: InventoryLookup) -> Tuple[Cart, ValidityReport]:
        """
        Validate the cart and persist its caps and removals.

        Returns the (possibly rewritten) cart and the report it was built
        from. A cart needing no adjustment is not rewritten.
        """
        async for attempt in self._retrying():
            with attempt:
                cart = await self.store.get_or_empty(owner_key)
                report = await validate(cart, inventory)
                if not (report.removed_items or report.capped_items):
                    return cart, report
                adjusted = await self.store.put(owner_key, apply_report(cart, report))
                logger.info(
                    f"Applied validation to {sanitize_id_for_logging(owner_key)}: "
                    f"{len(report.removed_items)} removed, {len(report.capped_items)} capped"
                )
                return adjusted, report

    async def get_cart_summary(self, owner_key: str) -> dict:
        """Get cart summary for the storefront header and cart drawer."""
        cart = await self.store.get(owner_key)

        if cart is None or cart.is_empty:
            return {
                "is_empty": True,
                "total_items": 0,
                "items": [],
                "subtotal": 0.0,
                "version": cart.version if cart else 0,
            }

        return {
            "is_empty": False,
            "total_items": cart.total_items,
            "items": [
                {
                    "product_id": item.product_id,
                    "variant_id": item.variant_id,
                    "quantity": item.quantity,
                    "unit_price": to_float(item.unit_price),
                    "total": to_float(item.total_price),
                }
                for item in cart.items
            ],
            "subtotal": to_float(cart.subtotal),
            "version": cart.version,
        }
