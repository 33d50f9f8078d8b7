"""
Checkout preloading.

Warms identity, cart and validation ahead of checkout navigation so the
checkout page reads a ready snapshot instead of hitting inventory.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

from cartsync.auth.identity import IdentityProvider
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.services.inventory import InventoryLookup
from .models import Cart, guest_owner_key, user_owner_key
from .storage import CartStore
from .validation import ValidityReport, validate

logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSnapshot:
    user_id: Optional[str]
    owner_key: str
    cart: Cart
    report: ValidityReport

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "owner_key": self.owner_key,
            "cart": self.cart.to_dict(),
            "validation": self.report.to_dict(),
        }


class CheckoutPreloader:
    """
    Builds and caches checkout snapshots per owner key.

    A cached snapshot is reused while the stored cart version is unchanged.
    Concurrent preloads for the same owner key share one in-flight task.
    """

    def __init__(
        self,
        store: CartStore,
        inventory: InventoryLookup,
        identity: Optional[IdentityProvider] = None,
    ):
        self.store = store
        self.inventory = inventory
        self.identity = identity
        self._snapshots: Dict[str, CheckoutSnapshot] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    async def _resolve_owner(
        self,
        session_id: Optional[str],
        identity: Optional[IdentityProvider],
    ) -> tuple[Optional[str], Optional[str]]:
        identity = identity or self.identity
        if identity is None:
            raise ValueError("An identity provider is required")
        user_id = await identity.current_user()
        if user_id:
            return user_id, user_owner_key(user_id)
        if session_id:
            return None, guest_owner_key(session_id)
        return None, None

    async def preload(
        self,
        session_id: Optional[str] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> Optional[CheckoutSnapshot]:
        """
        Load identity, cart and validation for the active session.

        Returns None when there is neither a user nor a guest session.
        """
        user_id, owner_key = await self._resolve_owner(session_id, identity)
        if owner_key is None:
            return None
        return await self._load(user_id, owner_key)

    async def get_snapshot(
        self,
        session_id: Optional[str] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> Optional[CheckoutSnapshot]:
        """Cached snapshot if the cart has not changed since it was taken."""
        user_id, owner_key = await self._resolve_owner(session_id, identity)
        if owner_key is None:
            return None

        cached = self._snapshots.get(owner_key)
        if cached is not None:
            current = await self.store.get_or_empty(owner_key)
            # Deleted and recreated carts restart at version 1
            if (current.version, current.updated_at) == (cached.cart.version, cached.cart.updated_at):
                return cached
            self.invalidate(owner_key)

        return await self._load(user_id, owner_key)

    def invalidate(self, owner_key: str) -> None:
        self._snapshots.pop(owner_key, None)

    async def _load(self, user_id: Optional[str], owner_key: str) -> CheckoutSnapshot:
        task = self._inflight.get(owner_key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._build(user_id, owner_key))
            self._inflight[owner_key] = task
        return await asyncio.shield(task)

    async def _build(self, user_id: Optional[str], owner_key: str) -> CheckoutSnapshot:
        try:
            cart = await self.store.get_or_empty(owner_key)
            report = await validate(cart, self.inventory)
            snapshot = CheckoutSnapshot(user_id=user_id, owner_key=owner_key, cart=cart, report=report)
            self._snapshots[owner_key] = snapshot
            logger.debug(
                f"Preloaded checkout for {sanitize_id_for_logging(owner_key)} "
                f"(version {cart.version}, valid={report.valid})"
            )
            return snapshot
        finally:
            self._inflight.pop(owner_key, None)
