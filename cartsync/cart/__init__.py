"""Cart package: models, storage, merge, validation and manager facade."""
from .models import LineItem, Cart, MergedSource, guest_owner_key, user_owner_key
from .storage import CartStore, RedisCartStore, InMemoryCartStore
from .merge import MergeResult, merge
from .validation import ValidityReport, RemovalReason, validate, apply_report
from .trigger import MergeTrigger, MergeState, MergeOutcome
from .preloader import CheckoutPreloader, CheckoutSnapshot
from .service import CartManager
from .cleanup import cleanup_abandoned_carts

__all__ = [
    "LineItem",
    "Cart",
    "MergedSource",
    "guest_owner_key",
    "user_owner_key",
    "CartStore",
    "RedisCartStore",
    "InMemoryCartStore",
    "MergeResult",
    "merge",
    "ValidityReport",
    "RemovalReason",
    "validate",
    "apply_report",
    "MergeTrigger",
    "MergeState",
    "MergeOutcome",
    "CheckoutPreloader",
    "CheckoutSnapshot",
    "CartManager",
    "cleanup_abandoned_carts",
]
