"""Identity provider interface and login events."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LoginEvent:
    """A guest session turning into an authenticated user."""
    previous_session_id: str
    new_user_id: str


class IdentityProvider(ABC):
    """Source of the currently authenticated user."""

    @abstractmethod
    async def current_user(self) -> Optional[str]:
        """Return the active user id, or None for an anonymous session."""


class StaticIdentity(IdentityProvider):
    """Identity fixed at construction, e.g. resolved once per HTTP request."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def current_user(self) -> Optional[str]:
        return self.user_id
