"""
cartsync core package

- cart: models, CAS storage, merge, validation, merge trigger, preloader
- services: money helpers and inventory lookup adapters
- auth: identity provider interface and login events
- routers: FastAPI endpoints exposing the read models

Note: Imports are lazy so that importing a leaf module (e.g. cartsync.config)
does not pull in Redis, httpx or FastAPI.
"""

__all__ = [
    "get_redis",
    "merge",
    "validate",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name == "get_redis":
        from cartsync.db import get_redis
        return get_redis
    elif name == "merge":
        from cartsync.cart.merge import merge
        return merge
    elif name == "validate":
        from cartsync.cart.validation import validate
        return validate
    raise AttributeError(f"module 'cartsync' has no attribute '{name}'")
