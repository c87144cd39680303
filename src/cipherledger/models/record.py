"""Encrypted record model.

One record per confidential contract entry. The value itself lives on the
ledger only as a ciphertext handle; the clear value appears on the record
once a decryption proof has been accepted on-chain.

Invariants:
- ``verified_value`` is set if and only if ``is_verified`` is true.
- ``is_verified`` never goes back from true to false (enforced by the
  record store across reloads).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


class RecordTab(str, enum.Enum):
    """List filters offered to the record browser."""
    ALL = "all"
    VERIFIED = "verified"
    ACTIVE = "active"


@dataclass(frozen=True)
class RecordData:
    """Raw record fields as returned by a ledger read."""
    name: str
    description: str
    creator: str
    timestamp: int
    public_value: int
    aux_value: int
    is_verified: bool
    decrypted_value: int
    ciphertext_handle: Optional[str] = None


@dataclass(frozen=True)
class EncryptedRecord:
    """A confidential contract entry as seen by the client."""
    id: str
    name: str
    description: str
    creator: str
    created_at: datetime
    ciphertext_handle: Optional[str]
    public_value: int = 0
    aux_value: int = 0
    is_verified: bool = False
    verified_value: Optional[int] = None
    category: str = "legal"
    status: str = "active"

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Record id must not be empty")
        if self.is_verified and self.verified_value is None:
            raise ValueError(f"Verified record {self.id} has no verified value")
        if not self.is_verified and self.verified_value is not None:
            raise ValueError(f"Unverified record {self.id} carries a verified value")

    @staticmethod
    def from_ledger(record_id: str, data: RecordData) -> EncryptedRecord:
        """Build a record from ledger fields.

        The ledger reports a zero decrypted value for unverified records;
        that placeholder is dropped so the value stays undefined.
        """
        return EncryptedRecord(
            id=record_id,
            name=data.name,
            description=data.description,
            creator=data.creator,
            created_at=datetime.fromtimestamp(int(data.timestamp), tz=timezone.utc),
            ciphertext_handle=data.ciphertext_handle,
            public_value=int(data.public_value or 0),
            aux_value=int(data.aux_value or 0),
            is_verified=bool(data.is_verified),
            verified_value=int(data.decrypted_value or 0) if data.is_verified else None,
        )

    def matches(self, search: str) -> bool:
        """Case-insensitive substring match on name or description."""
        needle = search.lower()
        return needle in self.name.lower() or needle in self.description.lower()


@dataclass(frozen=True)
class RecordStats:
    """Aggregate view over the loaded records."""
    total: int
    verified: int
    active: int
    average_public_value: float
