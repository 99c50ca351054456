"""
Conversion history store.

Append-only record of completed conversions, partitioned by identity.
Retention limits for non-Pro tiers are applied on read, never by deletion.
"""

from typing import Iterator, List, Optional

from .identity import Identity, Tier
from ..storage.models import ConversionRecord
from ..storage.repository import HistoryRepository

DEFAULT_FREE_HISTORY_LIMIT = 10


class RecordNotFound(LookupError):
    """Raised when a record id does not exist in the identity's partition."""

    def __init__(self, identity_key: str, record_id: str):
        super().__init__(f"No conversion record {record_id} for {identity_key}")
        self.identity_key = identity_key
        self.record_id = record_id


class HistoryStore:
    """Identity-scoped, append-only conversion history."""

    def __init__(self, repository: HistoryRepository):
        self.repository = repository

    def append(self, record: ConversionRecord) -> str:
        """Append a record to its identity's partition and return its id.

        The repository makes each insert atomic.

        Raises:
            StorageError: If the record cannot be written
        """
        self.repository.insert(record.identity_key, record)
        return record.id

    def list_for(self, identity: Identity) -> Iterator[ConversionRecord]:
        """Iterate the identity's records, oldest first.

        Each call takes a fresh snapshot, so callers may re-list at any time.
        """
        return iter(self.repository.list_ordered(identity.key))

    def find(self, identity: Identity, record_id: str) -> ConversionRecord:
        for record in self.list_for(identity):
            if record.id == record_id:
                return record
        raise RecordNotFound(identity.key, record_id)

    def visible_for(
        self,
        identity: Identity,
        tier: Tier,
        limit: Optional[int] = DEFAULT_FREE_HISTORY_LIMIT
    ) -> List[ConversionRecord]:
        """Records the identity may see on its tier.

        Pro sees everything; other tiers see the most recent `limit` records,
        still oldest first. A limit of None disables the cut-off.
        """
        records = list(self.list_for(identity))
        if tier == Tier.PRO or limit is None:
            return records
        if limit <= 0:
            return []
        return records[-limit:]
