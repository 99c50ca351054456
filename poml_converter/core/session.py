"""
Session state machine.

States: UNRESOLVED (entry choice not made yet), ANONYMOUS, AUTHENTICATED.
Events are plain values; next_state is a pure function over them, and
SessionManager only holds the current state and identity.

Signing out returns to UNRESOLVED so the host shows the entry choice again.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Optional, Union

from .identity import Anonymous, Authenticated, Identity, ProEntitlements, Tier, tier_for

if TYPE_CHECKING:
    from ..sdk.auth import AuthProvider, Provider


class SessionState(Enum):
    UNRESOLVED = auto()
    ANONYMOUS = auto()
    AUTHENTICATED = auto()


@dataclass(frozen=True)
class SignIn:
    provider: "Provider"
    identity: Authenticated


@dataclass(frozen=True)
class SignOut:
    pass


@dataclass(frozen=True)
class ContinueAsGuest:
    pass


SessionEvent = Union[SignIn, SignOut, ContinueAsGuest]


class InvalidTransition(ValueError):
    """Raised when an event is not accepted in the current state."""

    def __init__(self, state: SessionState, event_type: type):
        super().__init__(f"{event_type.__name__} is not allowed in state {state.name}")
        self.state = state
        self.event_type = event_type


_TRANSITIONS = {
    (SignIn, SessionState.UNRESOLVED): SessionState.AUTHENTICATED,
    (SignIn, SessionState.ANONYMOUS): SessionState.AUTHENTICATED,
    (ContinueAsGuest, SessionState.UNRESOLVED): SessionState.ANONYMOUS,
    (SignOut, SessionState.AUTHENTICATED): SessionState.UNRESOLVED,
}


def accepts(state: SessionState, event_type: type) -> bool:
    """Whether events of `event_type` are accepted in `state`."""
    return (event_type, state) in _TRANSITIONS


def next_state(state: SessionState, event: SessionEvent) -> SessionState:
    """Pure transition function.

    Raises:
        InvalidTransition: If the event is not accepted in `state`
    """
    try:
        return _TRANSITIONS[(type(event), state)]
    except KeyError:
        raise InvalidTransition(state, type(event)) from None


class SessionManager:
    """Holds the current identity and applies session events."""

    def __init__(self, auth: Optional["AuthProvider"] = None):
        self.auth = auth
        self.state = SessionState.UNRESOLVED
        self._identity: Optional[Identity] = None

    def current(self) -> Optional[Identity]:
        """Current identity, or None while the entry choice is unresolved."""
        return self._identity

    def transition(self, event: SessionEvent) -> Optional[Identity]:
        self.state = next_state(self.state, event)
        if isinstance(event, SignIn):
            self._identity = event.identity
        elif isinstance(event, ContinueAsGuest):
            self._identity = Anonymous()
        else:
            self._identity = None
        return self._identity

    def tier(self, entitlements: ProEntitlements) -> Optional[Tier]:
        if self._identity is None:
            return None
        return tier_for(self._identity, entitlements.is_pro(self._identity))

    async def sign_in(self, provider: Optional["Provider"]) -> Optional[Identity]:
        """Resolve an entry choice. A provider of None means continue as guest.

        Raises:
            InvalidTransition: If the choice is not allowed in the current state
            RuntimeError: If a provider is given but no auth provider is configured
        """
        if provider is None:
            return self.transition(ContinueAsGuest())
        if self.auth is None:
            raise RuntimeError("No auth provider configured")
        # a rejected event must not reach the provider
        if not accepts(self.state, SignIn):
            raise InvalidTransition(self.state, SignIn)
        identity = await self.auth.begin_sign_in(provider)
        return self.transition(SignIn(provider, identity))

    async def sign_out(self) -> None:
        if not accepts(self.state, SignOut):
            raise InvalidTransition(self.state, SignOut)
        if self.auth is not None:
            await self.auth.sign_out()
        self.transition(SignOut())
