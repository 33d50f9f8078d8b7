"""
Shared Dependencies for Routers

Lazy-loaded singletons; the merge trigger and preloader keep per-process
state, so every request must see the same instances.
"""

from typing import Optional

from cartsync.auth.identity import IdentityProvider
from cartsync.cart import CartManager, CartStore, CheckoutPreloader, MergeTrigger, RedisCartStore
from cartsync.services.inventory import HttpInventoryLookup, InventoryLookup


# ==================== LAZY SINGLETONS ====================

_cart_store: Optional[CartStore] = None
_inventory: Optional[InventoryLookup] = None
_cart_manager: Optional[CartManager] = None
_preloader: Optional[CheckoutPreloader] = None
_merge_trigger: Optional[MergeTrigger] = None
_session_identity: Optional[IdentityProvider] = None


def get_cart_store() -> CartStore:
    global _cart_store
    if _cart_store is None:
        _cart_store = RedisCartStore()
    return _cart_store


def get_inventory() -> InventoryLookup:
    global _inventory
    if _inventory is None:
        _inventory = HttpInventoryLookup()
    return _inventory


def get_cart_manager() -> CartManager:
    global _cart_manager
    if _cart_manager is None:
        _cart_manager = CartManager(get_cart_store())
    return _cart_manager


def get_preloader() -> CheckoutPreloader:
    global _preloader
    if _preloader is None:
        _preloader = CheckoutPreloader(get_cart_store(), get_inventory())
    return _preloader


def get_merge_trigger() -> MergeTrigger:
    global _merge_trigger
    if _merge_trigger is None:
        _merge_trigger = MergeTrigger(get_cart_store(), preloader=get_preloader())
    return _merge_trigger


def get_session_identity(request_identity: IdentityProvider) -> IdentityProvider:
    """
    Provider consulted after a merge to check the session is still signed in.

    Without a configured session source this is the identity resolved from
    the request headers, which cannot change mid-request, so a logout
    during the merge is only detected when a live source is configured.
    """
    return _session_identity or request_identity


def configure(
    store: Optional[CartStore] = None,
    inventory: Optional[InventoryLookup] = None,
    session_identity: Optional[IdentityProvider] = None,
) -> None:
    """Swap the backing store, inventory and session source (tests, local development)."""
    global _cart_store, _inventory, _cart_manager, _preloader, _merge_trigger, _session_identity
    _cart_store = store
    _inventory = inventory
    _session_identity = session_identity
    _cart_manager = None
    _preloader = None
    _merge_trigger = None
