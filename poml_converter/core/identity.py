"""
Identities and usage tiers.

An identity selects the quota and history partition a conversion belongs to.
The tier is derived from the identity plus the externally asserted Pro flag.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Protocol, Union

ANONYMOUS_KEY = "anonymous"


@dataclass(frozen=True)
class Anonymous:
    """Guest identity. All guests share one partition per store."""

    @property
    def key(self) -> str:
        return ANONYMOUS_KEY


@dataclass(frozen=True)
class Authenticated:
    """Signed-in identity resolved by the auth provider."""
    id: str
    email: str

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("id is required and cannot be empty")

    @property
    def key(self) -> str:
        return f"user:{self.id}"


Identity = Union[Anonymous, Authenticated]


class Tier(Enum):
    """Usage class determining the quota limit."""
    TRIAL = "trial"
    BONUS = "bonus"
    PRO = "pro"


class ProEntitlements(Protocol):
    """Billing hook: answers whether an identity holds a Pro subscription."""

    def is_pro(self, identity: Identity) -> bool:
        ...


class StaticEntitlements:
    """Entitlements backed by a fixed set of Pro user ids."""

    def __init__(self, pro_user_ids: Iterable[str] = ()):
        self.pro_user_ids: FrozenSet[str] = frozenset(pro_user_ids)

    def is_pro(self, identity: Identity) -> bool:
        return isinstance(identity, Authenticated) and identity.id in self.pro_user_ids


def tier_for(identity: Identity, is_pro: bool = False) -> Tier:
    """Derive the tier for an identity.

    Anonymous identities are always on the trial, whatever the flag says.
    """
    if isinstance(identity, Anonymous):
        return Tier.TRIAL
    if is_pro:
        return Tier.PRO
    return Tier.BONUS
