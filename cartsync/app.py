"""
CartSync - Main FastAPI Application

Serves the cart API, the login merge hook, checkout preload
and the scheduled cleanup endpoint.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cartsync.db import close_redis
from cartsync.errors import (
    CartError,
    Conflict,
    InventoryUnavailable,
    InvariantViolation,
    NotFound,
    StoreUnavailable,
)
from cartsync.logging import get_logger
from cartsync.routers import cart_router, cron_router

logger = get_logger(__name__)

# Most specific first; unknown CartError subclasses fall back to 500
ERROR_STATUS = (
    (Conflict, 409),
    (NotFound, 404),
    (InventoryUnavailable, 503),
    (StoreUnavailable, 503),
    (InvariantViolation, 500),
)


def status_for(exc: CartError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def cart_error_handler(request: Request, exc: CartError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    yield
    await close_redis()


def create_app() -> FastAPI:
    application = FastAPI(
        title="CartSync",
        description="Cart persistence, guest-to-user merge and checkout validation API",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(CartError, cart_error_handler)

    application.include_router(cart_router)
    application.include_router(cron_router)

    @application.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok", "service": "cartsync"}

    return application


app = create_app()
