"""
FastAPI dependencies resolving the caller's identity.

Tokens are verified by the upstream auth gateway, which forwards the
authenticated user id in X-User-Id. Guests identify their cart with the
X-Session-Id they were issued on first visit.
"""
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from cartsync.cart.models import guest_owner_key, user_owner_key
from cartsync.config import CRON_SECRET
from .identity import StaticIdentity


@dataclass(frozen=True)
class RequestIdentity:
    user_id: Optional[str]
    session_id: Optional[str]

    @property
    def owner_key(self) -> str:
        if self.user_id:
            return user_owner_key(self.user_id)
        if self.session_id:
            return guest_owner_key(self.session_id)
        raise HTTPException(status_code=401, detail="User must be authenticated or provide a session ID")

    @property
    def provider(self) -> StaticIdentity:
        return StaticIdentity(self.user_id)


async def get_request_identity(
    x_user_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
) -> RequestIdentity:
    return RequestIdentity(user_id=x_user_id or None, session_id=x_session_id or None)


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Verify cron job authentication."""
    expected = f"Bearer {CRON_SECRET}"
    if not CRON_SECRET or not secrets.compare_digest(authorization or "", expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")
