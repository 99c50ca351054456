"""
Quota ledger and tier limits.

Tracks conversions consumed per identity partition against the limit of the
caller's tier.

Check-then-commit:
1. check_and_reserve - advisory read, no side effects
2. commit - increments the counter, called only after a successful conversion

Charging happens on commit so a failed conversion never consumes allowance.
commit is not idempotent: each call counts one conversion. Given a tier it
re-checks the limit atomically in the repository, so hosts that share one
store across processes still cannot exceed it.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .identity import Identity, Tier
from ..storage.models import QuotaState
from ..storage.repository import QuotaRepository

logger = logging.getLogger(__name__)

DEFAULT_TRIAL_LIMIT = 2
DEFAULT_BONUS_ALLOWANCE = 20


class DenialReason(Enum):
    """Why a conversion was refused. Always a function of count and limit."""
    TRIAL_EXHAUSTED = "trial_exhausted"
    BONUS_EXHAUSTED = "bonus_exhausted"


@dataclass(frozen=True)
class Allowed:
    """The identity may convert. remaining is None for unlimited tiers."""
    remaining: Optional[int] = None


@dataclass(frozen=True)
class Denied:
    """The identity has used its whole allowance for the tier."""
    reason: DenialReason


QuotaDecision = Union[Allowed, Denied]


class QuotaExhausted(Exception):
    """Raised by commit when the limit was reached after the check passed."""

    def __init__(self, reason: DenialReason):
        super().__init__(f"Quota exhausted: {reason.value}")
        self.reason = reason

_DENIAL_BY_TIER = {
    Tier.TRIAL: DenialReason.TRIAL_EXHAUSTED,
    Tier.BONUS: DenialReason.BONUS_EXHAUSTED,
}


class QuotaLedger:
    """Per-identity conversion counters against tier limits.

    Counts live in the injected repository, keyed by identity. Anonymous and
    authenticated partitions are separate keys, so signing in starts from zero.
    """

    def __init__(
        self,
        repository: QuotaRepository,
        trial_limit: int = DEFAULT_TRIAL_LIMIT,
        bonus_allowance: int = DEFAULT_BONUS_ALLOWANCE
    ):
        """Initialize the ledger.

        Args:
            repository: Backing store for per-identity counts
            trial_limit: Conversions allowed on the trial tier
            bonus_allowance: Extra conversions granted on sign-in

        Raises:
            ValueError: If a limit is negative
        """
        if trial_limit < 0:
            raise ValueError("trial_limit must be >= 0")
        if bonus_allowance < 0:
            raise ValueError("bonus_allowance must be >= 0")
        self.repository = repository
        self.trial_limit = trial_limit
        self.bonus_allowance = bonus_allowance

    def limit_for(self, tier: Tier) -> Optional[int]:
        """Total conversions allowed for a tier; None means unlimited."""
        if tier == Tier.TRIAL:
            return self.trial_limit
        if tier == Tier.BONUS:
            return self.trial_limit + self.bonus_allowance
        return None

    def state(self, identity: Identity) -> QuotaState:
        return QuotaState(identity_key=identity.key, used_count=self.used(identity))

    def used(self, identity: Identity) -> int:
        return self.repository.get(identity.key)

    def remaining(self, identity: Identity, tier: Tier) -> Optional[int]:
        limit = self.limit_for(tier)
        if limit is None:
            return None
        return max(limit - self.used(identity), 0)

    def check_and_reserve(self, identity: Identity, tier: Tier) -> QuotaDecision:
        """Decide whether the identity may run one more conversion.

        Advisory only: nothing is reserved, so repeated checks without a
        commit return the same decision.

        Raises:
            StorageError: If the count cannot be read
        """
        limit = self.limit_for(tier)
        if limit is None:
            return Allowed()

        used = self.used(identity)
        if used >= limit:
            logger.info("Quota denied for %s: %d/%d on %s", identity.key, used, limit, tier.value)
            return Denied(_DENIAL_BY_TIER[tier])
        return Allowed(remaining=limit - used)

    def commit(self, identity: Identity, tier: Optional[Tier] = None) -> int:
        """Charge one conversion to the identity and return the new count.

        With a tier, the charge is refused if another writer of the same
        store used up the tier's limit since check_and_reserve.

        Raises:
            QuotaExhausted: If the tier's limit was reached
            StorageError: If the count cannot be read or written
        """
        limit = self.limit_for(tier) if tier is not None else None
        used = self.repository.increment(identity.key, limit)
        if used is None:
            logger.warning("Commit refused for %s: limit %d reached on %s", identity.key, limit, tier.value)
            raise QuotaExhausted(_DENIAL_BY_TIER[tier])
        logger.debug("Committed conversion for %s (used=%d)", identity.key, used)
        return used

    def revert(self, identity: Identity) -> None:
        """Take back one commit whose conversion was aborted."""
        self.repository.decrement(identity.key)
        logger.warning("Reverted quota commit for %s", identity.key)
