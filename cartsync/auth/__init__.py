"""Identity collaborators."""
from .identity import IdentityProvider, LoginEvent, StaticIdentity

__all__ = [
    "IdentityProvider",
    "LoginEvent",
    "StaticIdentity",
]
