"""
Identity provider hook.

The OAuth handshake itself lives outside this package. Hosts plug in an
AuthProvider that resolves a provider choice into an Authenticated identity.
"""

import logging
from enum import Enum
from typing import Optional, Protocol

from ..core.identity import Authenticated

logger = logging.getLogger(__name__)


class Provider(Enum):
    """Supported OAuth providers."""
    GOOGLE = "google"
    GITHUB = "github"
    GITLAB = "gitlab"


class AuthProvider(Protocol):
    """Contract the session manager expects from the auth integration."""

    async def begin_sign_in(self, provider: Provider) -> Authenticated:
        ...

    async def sign_out(self) -> None:
        ...


class StaticAuthProvider:
    """Auth provider that signs everyone in as one fixed user.

    Useful for local runs and tests where no OAuth app is configured.
    """

    def __init__(self, user_id: str = "user_12345", email: str = "test@example.com"):
        self.identity = Authenticated(id=user_id, email=email)
        self.signed_in: Optional[Provider] = None

    async def begin_sign_in(self, provider: Provider) -> Authenticated:
        logger.info("Signing in %s with %s", self.identity.email, provider.value)
        self.signed_in = provider
        return self.identity

    async def sign_out(self) -> None:
        logger.info("Signing out %s", self.identity.email)
        self.signed_in = None
