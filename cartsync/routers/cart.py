"""
Cart Router

Cart CRUD, guest-cart merge on login, validation and checkout preload.
Identity comes from the auth gateway headers (see cartsync.auth.dependencies).
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from cartsync.auth.dependencies import RequestIdentity, get_request_identity
from cartsync.auth.identity import LoginEvent
from cartsync.cart import MergeState, validate
from cartsync.logging import get_logger, sanitize_id_for_logging
from .deps import (
    get_cart_manager,
    get_cart_store,
    get_inventory,
    get_merge_trigger,
    get_preloader,
    get_session_identity,
)
from .models import AddToCartRequest, UpdateCartItemRequest

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["cart"])


async def _cart_response(owner_key: str) -> dict:
    return await get_cart_manager().get_cart_summary(owner_key)


@router.get("/cart")
async def get_cart(identity: RequestIdentity = Depends(get_request_identity)):
    """Get the caller's cart with totals."""
    return await _cart_response(identity.owner_key)


@router.post("/cart/items")
async def add_to_cart(request: AddToCartRequest, identity: RequestIdentity = Depends(get_request_identity)):
    """Add a product at its current price, bounded by live stock."""
    owner_key = identity.owner_key
    record = await get_inventory().lookup(request.product_id, request.variant_id)
    if record.delisted:
        raise HTTPException(status_code=400, detail="Product not found or inactive")
    if record.stock <= 0:
        raise HTTPException(status_code=400, detail="Product is out of stock")

    try:
        await get_cart_manager().add_item(
            owner_key,
            request.product_id,
            request.quantity,
            unit_price=record.price,
            available_stock=record.stock,
            variant_id=request.variant_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await _cart_response(owner_key)


@router.patch("/cart/items/{product_id}")
async def update_cart_item(
    product_id: str,
    request: UpdateCartItemRequest,
    identity: RequestIdentity = Depends(get_request_identity),
):
    """Set an item's quantity; 0 removes it."""
    owner_key = identity.owner_key
    try:
        await get_cart_manager().update_item_quantity(owner_key, product_id, request.quantity, request.variant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await _cart_response(owner_key)


@router.delete("/cart/items/{product_id}")
async def remove_cart_item(
    product_id: str,
    variant_id: Optional[str] = None,
    identity: RequestIdentity = Depends(get_request_identity),
):
    owner_key = identity.owner_key
    await get_cart_manager().remove_item(owner_key, product_id, variant_id)
    return await _cart_response(owner_key)


@router.delete("/cart")
async def clear_cart(identity: RequestIdentity = Depends(get_request_identity)):
    owner_key = identity.owner_key
    await get_cart_manager().clear_cart(owner_key)
    return await _cart_response(owner_key)


@router.post("/cart/merge")
async def merge_guest_cart(identity: RequestIdentity = Depends(get_request_identity)):
    """
    Merge the guest session's cart into the signed-in user's cart.

    Safe to call repeatedly for the same login: later calls return the
    recorded outcome unless the guest cart has gained items since.
    """
    if not identity.user_id:
        raise HTTPException(status_code=401, detail="User must be authenticated")
    if not identity.session_id:
        # No guest session, nothing to merge
        return {"state": MergeState.IDLE.value, "result": None}

    event = LoginEvent(previous_session_id=identity.session_id, new_user_id=identity.user_id)
    outcome = await get_merge_trigger().handle_login(event, get_session_identity(identity.provider))
    if outcome.state is MergeState.FAILED:
        logger.warning(f"Merge failed for user {sanitize_id_for_logging(identity.user_id)}")
        raise outcome.error
    return outcome.to_dict()


@router.get("/cart/validate")
async def validate_cart(identity: RequestIdentity = Depends(get_request_identity)):
    """Check the cart against live stock and prices without changing it."""
    cart = await get_cart_store().get_or_empty(identity.owner_key)
    report = await validate(cart, get_inventory())
    return report.to_dict()


@router.post("/cart/validate/apply")
async def apply_cart_validation(identity: RequestIdentity = Depends(get_request_identity)):
    """Validate and write back caps and removals."""
    owner_key = identity.owner_key
    _, report = await get_cart_manager().apply_validation(owner_key, get_inventory())
    return {"validation": report.to_dict(), "cart": await _cart_response(owner_key)}


@router.get("/checkout/preload")
async def preload_checkout(identity: RequestIdentity = Depends(get_request_identity)):
    """Identity, cart and validation in one cached snapshot for the checkout page."""
    snapshot = await get_preloader().get_snapshot(identity.session_id, identity.provider)
    if snapshot is None:
        raise HTTPException(status_code=401, detail="User must be authenticated or provide a session ID")
    return snapshot.to_dict()
