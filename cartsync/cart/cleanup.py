"""
Cart cleanup tasks.

Guest carts expire through their storage TTL. Carts left empty (after a
clear, a merge of two empty carts, or validation removing every line) are
swept here once they have not been touched for ABANDONED_CART_AGE.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from cartsync.config import ABANDONED_CART_AGE
from cartsync.errors import Conflict
from cartsync.logging import get_logger, sanitize_id_for_logging
from .models import utcnow
from .storage import CartStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class CleanupStats:
    checked: int
    deleted: int
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"checked": self.checked, "deleted_carts": self.deleted, "skipped": self.skipped}


async def cleanup_abandoned_carts(
    store: CartStore,
    now: Optional[datetime] = None,
    max_age: timedelta = timedelta(seconds=ABANDONED_CART_AGE),
) -> CleanupStats:
    """Delete empty carts not updated within max_age."""
    cutoff = (now or utcnow()) - max_age
    checked = 0
    deleted = 0
    skipped = 0

    async for owner_key in store.iter_owner_keys():
        checked += 1
        cart = await store.get(owner_key)
        if cart is None or not cart.is_empty:
            continue
        if cart.updated_at is not None and cart.updated_at >= cutoff:
            continue
        try:
            await store.delete(owner_key, expected_version=cart.version)
        except Conflict:
            # Written to since we read it; no longer abandoned
            logger.debug(f"[Cleanup] Skipped {sanitize_id_for_logging(owner_key)}: modified concurrently")
            skipped += 1
            continue
        deleted += 1

    logger.info(f"[Cleanup] Checked {checked} carts, deleted {deleted} abandoned carts")
    return CleanupStats(checked=checked, deleted=deleted, skipped=skipped)
