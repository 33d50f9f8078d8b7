"""
Login-driven guest cart merge.

Each login event moves through IDLE -> MERGING -> MERGED | FAILED. Callers
that fire the same event while it is MERGING await the in-flight merge
instead of starting another one.
"""
import asyncio
from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from cartsync.auth.identity import IdentityProvider, LoginEvent
from cartsync.config import MERGE_MAX_ATTEMPTS, MERGE_OUTCOME_CACHE_SIZE
from cartsync.errors import CartError, Conflict
from cartsync.logging import get_logger, sanitize_id_for_logging
from .merge import MergeResult, merge
from .models import guest_owner_key, user_owner_key
from .storage import CartStore

if TYPE_CHECKING:
    from .preloader import CheckoutPreloader

logger = get_logger(__name__)


class MergeState(str, Enum):
    IDLE = "idle"
    MERGING = "merging"
    MERGED = "merged"
    FAILED = "failed"


@dataclass(frozen=True)
class MergeOutcome:
    """Terminal result of handling one login event."""
    event: LoginEvent
    state: MergeState
    result: Optional[MergeResult] = None
    attempts: int = 0
    # Merge was applied but the session logged out or switched user meanwhile
    discarded: bool = False
    # User cart committed but the guest cart could not be deleted yet
    cleanup_pending: bool = False
    error: Optional[CartError] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "attempts": self.attempts,
            "discarded": self.discarded,
            "cleanup_pending": self.cleanup_pending,
            "result": self.result.to_dict() if self.result else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class _MergeRun:
    attempts: int = 0
    # Last MergeResult whose user cart was committed
    committed: Optional[MergeResult] = None


class MergeTrigger:
    """
    Runs the guest-to-user merge once per login event.

    Recent MERGED outcomes are remembered and returned for a repeated event
    as long as the guest cart is still gone; a guest cart written to since
    is merged again. FAILED outcomes are returned to the callers of that
    attempt and then released, so the next login retries against the
    untouched carts.
    """

    def __init__(
        self,
        store: CartStore,
        identity: Optional[IdentityProvider] = None,
        preloader: Optional["CheckoutPreloader"] = None,
        max_attempts: int = MERGE_MAX_ATTEMPTS,
        wait=None,
        max_remembered: int = MERGE_OUTCOME_CACHE_SIZE,
    ):
        self.store = store
        self.identity = identity
        self.preloader = preloader
        self.max_attempts = max_attempts
        self.wait = wait if wait is not None else wait_exponential(multiplier=0.02, max=0.5)
        self.max_remembered = max_remembered
        self._inflight: Dict[LoginEvent, asyncio.Task] = {}
        self._merged: "OrderedDict[LoginEvent, MergeOutcome]" = OrderedDict()

    def state(self, event: LoginEvent) -> MergeState:
        if event in self._inflight:
            return MergeState.MERGING
        if event in self._merged:
            return MergeState.MERGED
        return MergeState.IDLE

    async def handle_login(self, event: LoginEvent, identity: Optional[IdentityProvider] = None) -> MergeOutcome:
        """
        Merge the event's guest cart into the user cart.

        ``identity`` overrides the trigger's provider for the post-merge
        session check (servers resolve identity per request).
        """
        identity = identity or self.identity
        if identity is None:
            raise ValueError("An identity provider is required")

        if event not in self._inflight:
            merged = await self._recorded_outcome(event)
            if merged is not None:
                return merged

        task = self._inflight.get(event)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._run(event, identity))
            self._inflight[event] = task
        else:
            logger.debug(f"Merge already in flight for user {sanitize_id_for_logging(event.new_user_id)}")

        # A cancelled caller must not cancel a half-applied merge
        return await asyncio.shield(task)

    async def _recorded_outcome(self, event: LoginEvent) -> Optional[MergeOutcome]:
        """Remembered outcome, if the guest cart has not come back since."""
        merged = self._merged.get(event)
        if merged is None or merged.cleanup_pending:
            return None
        if await self.store.get(guest_owner_key(event.previous_session_id)) is not None:
            return None
        self._merged.move_to_end(event)
        return merged

    def _remember(self, event: LoginEvent, outcome: MergeOutcome) -> None:
        self._merged[event] = outcome
        self._merged.move_to_end(event)
        while len(self._merged) > self.max_remembered:
            self._merged.popitem(last=False)

    async def _run(self, event: LoginEvent, identity: IdentityProvider) -> MergeOutcome:
        try:
            outcome = await self._attempt(event, identity)
            if outcome.state is MergeState.MERGED:
                self._remember(event, outcome)
            return outcome
        finally:
            self._inflight.pop(event, None)

    async def _attempt(self, event: LoginEvent, identity: IdentityProvider) -> MergeOutcome:
        user_tag = sanitize_id_for_logging(event.new_user_id)
        run = _MergeRun()
        cleanup_pending = False
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                retry=retry_if_exception_type(Conflict),
                reraise=True,
            ):
                with attempt:
                    run.attempts = attempt.retry_state.attempt_number
                    await self._merge_once(event, run)
        except CartError as e:
            if run.committed is None:
                logger.error(f"Cart merge failed for user {user_tag} after {run.attempts} attempt(s): {e}")
                return MergeOutcome(event, MergeState.FAILED, attempts=run.attempts, error=e)
            # Guest items are recorded on the user cart; the next login only deletes the guest cart
            logger.warning(f"Cart merged for user {user_tag} but guest cart cleanup failed: {e}")
            cleanup_pending = True

        result = run.committed
        logger.info(
            f"Cart merged for user {user_tag}: {len(result.items_combined)} combined, "
            f"{len(result.items_kept_from_guest)} from guest, {len(result.items_kept_from_user)} from user"
        )

        active_user = await identity.current_user()
        if active_user != event.new_user_id:
            logger.info(f"Session for user {user_tag} changed during merge; result discarded")
            return MergeOutcome(
                event,
                MergeState.MERGED,
                attempts=run.attempts,
                discarded=True,
                cleanup_pending=cleanup_pending,
            )

        return MergeOutcome(
            event,
            MergeState.MERGED,
            result=result,
            attempts=run.attempts,
            cleanup_pending=cleanup_pending,
        )

    async def _merge_once(self, event: LoginEvent, run: _MergeRun) -> None:
        """
        One read-merge-write pass.

        Conflict from the user put or from the guest delete restarts it. A
        guest cart written to after it was read is picked up by the rerun,
        which only adds what the user cart has not absorbed yet.
        """
        guest_key = guest_owner_key(event.previous_session_id)
        user_key = user_owner_key(event.new_user_id)

        guest_cart, user_cart = await asyncio.gather(
            self.store.get_or_empty(guest_key),
            self.store.get_or_empty(user_key),
        )
        result = merge(guest_cart, user_cart)
        committed = await self.store.put(user_key, result.merged_cart)
        run.committed = replace(result, merged_cart=committed)

        if self.preloader is not None:
            self.preloader.invalidate(user_key)
            self.preloader.invalidate(guest_key)

        await self.store.delete(guest_key, expected_version=guest_cart.version)
