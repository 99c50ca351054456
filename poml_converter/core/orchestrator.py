"""
Conversion orchestrator.

Composes the quota ledger, the remote client and the history store into one
submit operation.

Order of side effects on success:
1. Quota commit
2. History append
3. Result returned

Everything is returned as a value: denials, remote failures and storage
failures never escape submit as exceptions. Cancellation does propagate, and
leaves quota and history exactly as they were.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Protocol, Union

from .history import HistoryStore
from .identity import Anonymous, Identity, Tier
from .quota import Denied, DenialReason, QuotaExhausted, QuotaLedger
from ..sdk.gemini_client import ConversionResult, Failure, FailureKind
from ..storage.db import StorageError
from ..storage.models import ConversionRecord

logger = logging.getLogger(__name__)


class ConversionClient(Protocol):
    """Anything that turns input text into a conversion result."""

    def convert(self, input_text: str) -> Awaitable[ConversionResult]:
        ...


@dataclass(frozen=True)
class Converted:
    """Conversion succeeded. record is None when the history was not persisted."""
    document: str
    used_count: int
    record: Optional[ConversionRecord] = None


@dataclass(frozen=True)
class QuotaDenied:
    reason: DenialReason


@dataclass(frozen=True)
class RemoteFailed:
    kind: FailureKind


@dataclass(frozen=True)
class StorageFailed:
    message: str


@dataclass(frozen=True)
class InvalidInput:
    """The submission was rejected before any quota or remote work."""
    message: str


OrchestratorResult = Union[Converted, QuotaDenied, RemoteFailed, StorageFailed, InvalidInput]


class TierHint(Enum):
    """What the host should offer the user after a submission."""
    NONE = "none"
    SIGN_IN = "sign_in"
    UPGRADE = "upgrade"


class ConversionOrchestrator:
    """Runs conversions for identities, one at a time per identity.

    A per-identity asyncio.Lock covers the check, remote call, commit and
    append, so two concurrent submissions for the same identity queue instead
    of both passing the quota check. Different identities never contend.
    Orchestrators in other processes sharing the same store are caught by
    the tier-checked commit instead, and the late submission is denied.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        client: ConversionClient,
        history: HistoryStore,
        persist_anonymous_history: bool = False,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.ledger = ledger
        self.client = client
        self.history = history
        self.persist_anonymous_history = persist_anonymous_history
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        # submissions holding or waiting on each lock
        self._pending: Dict[str, int] = {}

    def is_busy(self, identity: Identity) -> bool:
        """Whether a submission for this identity is currently in flight."""
        lock = self._locks.get(identity.key)
        return lock is not None and lock.locked()

    async def submit(self, identity: Identity, tier: Tier, input_text: str) -> OrchestratorResult:
        """Convert `input_text` for `identity` if its quota allows."""
        if not input_text or not input_text.strip():
            return InvalidInput("input_text is required and cannot be empty")

        key = identity.key
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._pending[key] = self._pending.get(key, 0) + 1
        try:
            async with lock:
                return await self._submit_locked(identity, tier, input_text)
        finally:
            self._pending[key] -= 1
            if not self._pending[key]:
                del self._pending[key]
                del self._locks[key]

    async def _submit_locked(self, identity: Identity, tier: Tier, input_text: str) -> OrchestratorResult:
        try:
            decision = self.ledger.check_and_reserve(identity, tier)
        except StorageError as e:
            logger.error("Quota check failed for %s: %s", identity.key, e)
            return StorageFailed(str(e))
        if isinstance(decision, Denied):
            return QuotaDenied(decision.reason)

        result = await self.client.convert(input_text)
        if isinstance(result, Failure):
            logger.warning(
                "Remote conversion failed for %s: %s (cause=%s, status=%s)",
                identity.key,
                result.kind.value,
                result.cause.value if result.cause else None,
                result.status
            )
            return RemoteFailed(result.kind)

        try:
            used = self.ledger.commit(identity, tier)
        except QuotaExhausted as e:
            logger.warning("Conversion for %s discarded: quota used up concurrently", identity.key)
            return QuotaDenied(e.reason)
        except StorageError as e:
            logger.error("Quota commit failed for %s: %s", identity.key, e)
            return StorageFailed(str(e))

        record = None
        if self._keeps_history(identity):
            record = ConversionRecord(
                identity_key=identity.key,
                input_text=input_text,
                output_document=result.document,
                created_at=self._clock()
            )
            try:
                self.history.append(record)
            except StorageError as e:
                logger.error("History append failed for %s: %s", identity.key, e)
                return self._abort_commit(identity, e)

        logger.info("Converted for %s (used=%d, tier=%s)", identity.key, used, tier.value)
        return Converted(document=result.document, used_count=used, record=record)

    def _keeps_history(self, identity: Identity) -> bool:
        return self.persist_anonymous_history or not isinstance(identity, Anonymous)

    def _abort_commit(self, identity: Identity, error: StorageError) -> StorageFailed:
        try:
            self.ledger.revert(identity)
        except StorageError as revert_error:
            logger.error("Could not revert quota for %s: %s", identity.key, revert_error)
            return StorageFailed(f"{error}; quota revert failed: {revert_error}")
        return StorageFailed(str(error))

    def tier_hint(self, tier: Tier, result: OrchestratorResult) -> TierHint:
        """Tier-transition trigger for the host after a submission.

        Trial users are prompted to sign in once they hit the trial limit, on
        the conversion that reached it or on a later denial. Bonus users are
        offered the upgrade when their allowance runs out.
        """
        if isinstance(result, QuotaDenied):
            if result.reason == DenialReason.TRIAL_EXHAUSTED:
                return TierHint.SIGN_IN
            return TierHint.UPGRADE
        if isinstance(result, Converted):
            limit = self.ledger.limit_for(tier)
            if limit is not None and result.used_count >= limit:
                return TierHint.SIGN_IN if tier == Tier.TRIAL else TierHint.UPGRADE
        return TierHint.NONE
