"""
Tests for the quota ledger and tier derivation.
"""
import pytest

from poml_converter.core.identity import (
    Anonymous,
    Authenticated,
    StaticEntitlements,
    Tier,
    tier_for,
)
from poml_converter.core.quota import Allowed, Denied, DenialReason, QuotaExhausted, QuotaLedger
from poml_converter.storage.repository import InMemoryQuotaRepository

ALICE = Authenticated(id="alice", email="alice@example.com")


class TestTierDerivation:
    """Test identity-to-tier mapping."""

    def test_anonymous_is_trial(self):
        assert tier_for(Anonymous()) == Tier.TRIAL

    def test_anonymous_ignores_pro_flag(self):
        assert tier_for(Anonymous(), is_pro=True) == Tier.TRIAL

    def test_authenticated_is_bonus(self):
        assert tier_for(ALICE) == Tier.BONUS

    def test_authenticated_pro(self):
        assert tier_for(ALICE, is_pro=True) == Tier.PRO

    def test_static_entitlements(self):
        entitlements = StaticEntitlements(["alice"])
        assert entitlements.is_pro(ALICE)
        assert not entitlements.is_pro(Authenticated(id="bob", email="bob@example.com"))
        assert not entitlements.is_pro(Anonymous())

    def test_identity_keys_are_disjoint(self):
        assert Anonymous().key == "anonymous"
        assert ALICE.key == "user:alice"
        assert Anonymous() == Anonymous()

    def test_authenticated_requires_id(self):
        with pytest.raises(ValueError, match="id is required"):
            Authenticated(id="", email="x@example.com")


class TestQuotaLedger:
    """Test quota checks and commits."""

    def setup_method(self):
        self.repository = InMemoryQuotaRepository()
        self.ledger = QuotaLedger(self.repository)

    def test_default_limits(self):
        assert self.ledger.limit_for(Tier.TRIAL) == 2
        assert self.ledger.limit_for(Tier.BONUS) == 22
        assert self.ledger.limit_for(Tier.PRO) is None

    def test_custom_limits(self):
        ledger = QuotaLedger(self.repository, trial_limit=5, bonus_allowance=10)
        assert ledger.limit_for(Tier.TRIAL) == 5
        assert ledger.limit_for(Tier.BONUS) == 15

    def test_negative_limits_rejected(self):
        with pytest.raises(ValueError, match="trial_limit"):
            QuotaLedger(self.repository, trial_limit=-1)
        with pytest.raises(ValueError, match="bonus_allowance"):
            QuotaLedger(self.repository, bonus_allowance=-1)

    def test_fresh_identity_is_allowed(self):
        decision = self.ledger.check_and_reserve(Anonymous(), Tier.TRIAL)
        assert decision == Allowed(remaining=2)

    def test_check_has_no_side_effects(self):
        """Repeated checks without a commit return the same decision."""
        first = self.ledger.check_and_reserve(Anonymous(), Tier.TRIAL)
        second = self.ledger.check_and_reserve(Anonymous(), Tier.TRIAL)

        assert first == second
        assert self.ledger.used(Anonymous()) == 0

    def test_commit_increments_and_returns_count(self):
        assert self.ledger.commit(Anonymous()) == 1
        assert self.ledger.commit(Anonymous()) == 2
        assert self.ledger.state(Anonymous()).used_count == 2

    def test_commit_is_not_idempotent(self):
        self.ledger.commit(ALICE)
        self.ledger.commit(ALICE)
        assert self.ledger.used(ALICE) == 2

    def test_trial_exhausted(self):
        self.ledger.commit(Anonymous())
        self.ledger.commit(Anonymous())

        decision = self.ledger.check_and_reserve(Anonymous(), Tier.TRIAL)
        assert decision == Denied(DenialReason.TRIAL_EXHAUSTED)

    def test_bonus_exhausted(self):
        self.repository.set(ALICE.key, 22)

        decision = self.ledger.check_and_reserve(ALICE, Tier.BONUS)
        assert decision == Denied(DenialReason.BONUS_EXHAUSTED)

    def test_bonus_allows_up_to_limit(self):
        self.repository.set(ALICE.key, 21)

        assert self.ledger.check_and_reserve(ALICE, Tier.BONUS) == Allowed(remaining=1)

    def test_pro_is_always_allowed(self):
        self.repository.set(ALICE.key, 10_000)

        assert self.ledger.check_and_reserve(ALICE, Tier.PRO) == Allowed()
        assert self.ledger.remaining(ALICE, Tier.PRO) is None

    def test_partitions_are_independent(self):
        """Anonymous usage does not carry over to the signed-in partition."""
        self.ledger.commit(Anonymous())
        self.ledger.commit(Anonymous())

        assert self.ledger.used(ALICE) == 0
        assert isinstance(self.ledger.check_and_reserve(ALICE, Tier.BONUS), Allowed)

    def test_remaining_never_negative(self):
        self.repository.set(Anonymous().key, 5)
        assert self.ledger.remaining(Anonymous(), Tier.TRIAL) == 0

    def test_revert_takes_back_one_commit(self):
        self.ledger.commit(ALICE)
        self.ledger.commit(ALICE)

        self.ledger.revert(ALICE)

        assert self.ledger.used(ALICE) == 1

    def test_commit_with_tier_charges_below_limit(self):
        assert self.ledger.commit(Anonymous(), Tier.TRIAL) == 1
        assert self.ledger.commit(Anonymous(), Tier.TRIAL) == 2

    def test_commit_with_tier_refuses_at_limit(self):
        """A check that passed earlier does not let a late commit exceed the limit."""
        self.repository.set(Anonymous().key, 1)
        assert isinstance(self.ledger.check_and_reserve(Anonymous(), Tier.TRIAL), Allowed)
        self.ledger.commit(Anonymous(), Tier.TRIAL)

        with pytest.raises(QuotaExhausted) as excinfo:
            self.ledger.commit(Anonymous(), Tier.TRIAL)

        assert excinfo.value.reason == DenialReason.TRIAL_EXHAUSTED
        assert self.ledger.used(Anonymous()) == 2

    def test_commit_with_bonus_tier_refuses_at_limit(self):
        self.repository.set(ALICE.key, 22)

        with pytest.raises(QuotaExhausted) as excinfo:
            self.ledger.commit(ALICE, Tier.BONUS)

        assert excinfo.value.reason == DenialReason.BONUS_EXHAUSTED
        assert self.ledger.used(ALICE) == 22

    def test_commit_with_pro_tier_is_unbounded(self):
        self.repository.set(ALICE.key, 1000)
        assert self.ledger.commit(ALICE, Tier.PRO) == 1001
