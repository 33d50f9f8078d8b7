"""
FastAPI Routers Package

All routers are included in cartsync/app.py.
"""

from cartsync.routers.cart import router as cart_router
from cartsync.routers.cron import router as cron_router

__all__ = [
    "cart_router",
    "cron_router",
]
