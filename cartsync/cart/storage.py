"""
Cart storage with compare-and-set writes.

Every write replaces the whole cart and succeeds only if the caller's base
version (``cart.version``) matches the stored one; an absent cart has
version 0. The loser of a race gets ``Conflict`` and must re-read.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from cartsync.db import get_redis, RedisKeys, TTL
from cartsync.errors import (
    Conflict,
    InvariantViolation,
    StoreUnavailable,
    ERROR_STORE_UNAVAILABLE,
)
from cartsync.logging import get_logger, sanitize_id_for_logging
from .models import Cart, is_guest_key, utcnow

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class CartStore(ABC):
    """Keyed cart store. Subclasses provide the physical backend."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    @abstractmethod
    async def get(self, owner_key: str) -> Optional[Cart]:
        """Stored cart, or None if absent."""

    @abstractmethod
    async def put(self, owner_key: str, cart: Cart) -> Cart:
        """
        Compare-and-set write of the whole cart.

        Raises:
            Conflict: the stored version is not cart.version
        """

    @abstractmethod
    async def delete(self, owner_key: str, expected_version: Optional[int] = None) -> None:
        """Delete a cart; with expected_version, only if it is still at that version."""

    @abstractmethod
    def iter_owner_keys(self) -> AsyncIterator[str]:
        """Owner keys of all stored carts."""

    async def get_or_empty(self, owner_key: str) -> Cart:
        """Absent carts read as empty carts at version 0."""
        cart = await self.get(owner_key)
        return cart if cart is not None else Cart.empty(owner_key)

    def _decode(self, owner_key: str, data: str) -> Cart:
        try:
            cart = Cart.from_dict(json.loads(data))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise InvariantViolation(f"Corrupted cart data for {owner_key}: {e}") from e
        cart.check_invariants()
        return cart

    def _commit(self, owner_key: str, cart: Cart) -> Cart:
        """Value written on a successful put: re-owned, version bumped, timestamped."""
        cart.check_invariants()
        now = self.clock()
        return replace(
            cart,
            owner_key=owner_key,
            version=cart.version + 1,
            updated_at=now,
            created_at=cart.created_at or now,
        )

    @staticmethod
    def _ttl_for(owner_key: str) -> Optional[int]:
        return TTL.GUEST_CART if is_guest_key(owner_key) else None


class RedisCartStore(CartStore):
    """
    Cart store backed by Redis.

    Compare-and-set uses an optimistic WATCH/MULTI transaction on the cart
    key. Guest carts carry a TTL; user carts never expire.
    """

    def __init__(self, redis: Optional[Redis] = None, clock: Clock = utcnow):
        super().__init__(clock)
        self._redis = redis  # Lazy initialization

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            try:
                self._redis = get_redis()
            except ValueError as e:
                raise StoreUnavailable(f"{ERROR_STORE_UNAVAILABLE}: {e}") from e
        return self._redis

    async def get(self, owner_key: str) -> Optional[Cart]:
        try:
            data = await self.redis.get(RedisKeys.cart_key(owner_key))
        except RedisError as e:
            logger.error(f"Failed to get cart {sanitize_id_for_logging(owner_key)}: {e}")
            raise StoreUnavailable(f"{ERROR_STORE_UNAVAILABLE}: {e}") from e

        if not data:
            return None
        return self._decode(owner_key, data)

    async def put(self, owner_key: str, cart: Cart) -> Cart:
        key = RedisKeys.cart_key(owner_key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                current_version = self._decode(owner_key, current).version if current else 0
                if current_version != cart.version:
                    raise Conflict(owner_key, cart.version, current_version)

                committed = self._commit(owner_key, cart)
                pipe.multi()
                pipe.set(key, json.dumps(committed.to_dict()), ex=self._ttl_for(owner_key))
                await pipe.execute()
        except WatchError as e:
            # Key changed between WATCH and EXEC
            raise Conflict(owner_key, cart.version) from e
        except RedisError as e:
            logger.error(f"Failed to save cart {sanitize_id_for_logging(owner_key)}: {e}")
            raise StoreUnavailable(f"{ERROR_STORE_UNAVAILABLE}: {e}") from e

        return committed

    async def delete(self, owner_key: str, expected_version: Optional[int] = None) -> None:
        key = RedisKeys.cart_key(owner_key)
        try:
            if expected_version is None:
                await self.redis.delete(key)
                return
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                current_version = self._decode(owner_key, current).version if current else 0
                if current_version != expected_version:
                    raise Conflict(owner_key, expected_version, current_version)
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
        except WatchError as e:
            raise Conflict(owner_key, expected_version) from e
        except RedisError as e:
            logger.error(f"Failed to delete cart {sanitize_id_for_logging(owner_key)}: {e}")
            raise StoreUnavailable(f"{ERROR_STORE_UNAVAILABLE}: {e}") from e

    async def iter_owner_keys(self) -> AsyncIterator[str]:
        try:
            async for key in self.redis.scan_iter(match=RedisKeys.cart_pattern()):
                yield RedisKeys.owner_key_from(key)
        except RedisError as e:
            logger.error(f"Failed to scan carts: {e}")
            raise StoreUnavailable(f"{ERROR_STORE_UNAVAILABLE}: {e}") from e


class InMemoryCartStore(CartStore):
    """
    Process-local cart store for development and tests.

    Carts are kept serialized so callers never share state with the store.
    """

    def __init__(self, clock: Clock = utcnow):
        super().__init__(clock)
        self._data: Dict[str, str] = {}
        self._expires_at: Dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    def _expire(self, owner_key: str) -> None:
        expires_at = self._expires_at.get(owner_key)
        if expires_at is not None and expires_at <= self.clock():
            self._data.pop(owner_key, None)
            self._expires_at.pop(owner_key, None)

    async def get(self, owner_key: str) -> Optional[Cart]:
        async with self._lock:
            self._expire(owner_key)
            data = self._data.get(owner_key)
        if data is None:
            return None
        return self._decode(owner_key, data)

    async def put(self, owner_key: str, cart: Cart) -> Cart:
        async with self._lock:
            self._expire(owner_key)
            current = self._data.get(owner_key)
            current_version = self._decode(owner_key, current).version if current else 0
            if current_version != cart.version:
                raise Conflict(owner_key, cart.version, current_version)

            committed = self._commit(owner_key, cart)
            self._data[owner_key] = json.dumps(committed.to_dict())
            ttl = self._ttl_for(owner_key)
            if ttl is None:
                self._expires_at.pop(owner_key, None)
            else:
                self._expires_at[owner_key] = committed.updated_at + timedelta(seconds=ttl)
        return committed

    async def delete(self, owner_key: str, expected_version: Optional[int] = None) -> None:
        async with self._lock:
            if expected_version is not None:
                self._expire(owner_key)
                current = self._data.get(owner_key)
                current_version = self._decode(owner_key, current).version if current else 0
                if current_version != expected_version:
                    raise Conflict(owner_key, expected_version, current_version)
            self._data.pop(owner_key, None)
            self._expires_at.pop(owner_key, None)

    async def iter_owner_keys(self) -> AsyncIterator[str]:
        async with self._lock:
            for owner_key in list(self._data):
                self._expire(owner_key)
            keys = list(self._data)
        for owner_key in keys:
            yield owner_key
