"""
Cron job endpoints for scheduled tasks.

Called by the scheduler with CRON_SECRET authentication.
"""
from fastapi import APIRouter, Depends

from cartsync.auth.dependencies import verify_cron_secret
from cartsync.cart import cleanup_abandoned_carts
from .deps import get_cart_store

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/cart-cleanup", dependencies=[Depends(verify_cron_secret)])
async def cron_cart_cleanup():
    """
    Delete empty carts untouched for ABANDONED_CART_AGE.
    Guest carts with items expire on their own via TTL.
    """
    stats = await cleanup_abandoned_carts(get_cart_store())
    return stats.to_dict()
