"""
Data models for storage layer.

Defines persisted entities for quota usage and conversion history.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class QuotaState:
    """Conversions consumed by one identity partition.

    used_count only grows; it is advanced exclusively through the ledger's commit.
    """
    identity_key: str
    used_count: int = 0

    def __post_init__(self):
        if self.used_count < 0:
            raise ValueError("used_count must be >= 0")


@dataclass(frozen=True)
class ConversionRecord:
    """Immutable record of one completed conversion.

    Append-only: once written, a record is never modified or deleted.
    """
    identity_key: str
    input_text: str
    output_document: str
    created_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def tokens_used(self) -> int:
        """Rough size of the conversion in characters (input + output)."""
        return len(self.input_text) + len(self.output_document)

    @property
    def preview(self) -> str:
        """First 50 characters of the input, for history listings."""
        if len(self.input_text) <= 50:
            return self.input_text
        return self.input_text[:50] + "..."
