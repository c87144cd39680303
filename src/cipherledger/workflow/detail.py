"""Record detail session — the local decrypt cache for one open record.

Two tiers of value:
- the authoritative verified value on the record in the store, and
- a local value obtained by this session's decrypt, held only while the
  record is open and never persisted.

The authoritative value always wins when present.
"""

from __future__ import annotations

from typing import Optional

from cipherledger.models.record import EncryptedRecord
from cipherledger.models.wallet import WalletIdentity
from cipherledger.persistence.record_store import EncryptedRecordStore
from cipherledger.workflow.orchestrator import RecordLifecycleOrchestrator

VERIFIED = "verified"
LOCAL = "local"


class RecordDetailSession:
    """Open/close one record and toggle its decrypted value.

    Usage:
        session = RecordDetailSession(orchestrator, store)
        session.open("contract-1700000000000")
        await session.toggle_decrypt(wallet)
        value, source = session.display_value()
        session.close()
    """

    def __init__(
        self,
        orchestrator: RecordLifecycleOrchestrator,
        store: EncryptedRecordStore,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._record_id: Optional[str] = None
        self._local_value: Optional[int] = None

    @property
    def record_id(self) -> Optional[str]:
        return self._record_id

    @property
    def local_value(self) -> Optional[int]:
        return self._local_value

    @property
    def record(self) -> Optional[EncryptedRecord]:
        if self._record_id is None:
            return None
        return self._store.get(self._record_id)

    @property
    def is_decrypting(self) -> bool:
        return self._record_id is not None and self._orchestrator.is_decrypting(self._record_id)

    def open(self, record_id: str) -> None:
        if record_id != self._record_id:
            self._local_value = None
        self._record_id = record_id

    def close(self) -> None:
        self._record_id = None
        self._local_value = None

    async def toggle_decrypt(self, wallet: Optional[WalletIdentity]) -> Optional[int]:
        """Hide a cached value, or decrypt and cache it.

        Returns the newly decrypted value, or None when toggled off or when
        the flow produced no value.
        """
        if self._record_id is None:
            raise ValueError("No record open")
        if self._local_value is not None:
            self._local_value = None
            return None

        record_id = self._record_id
        value = await self._orchestrator.decrypt_and_verify(record_id, wallet)
        if value is not None and self._record_id == record_id:
            self._local_value = value
        return value

    def display_value(self) -> tuple[Optional[int], Optional[str]]:
        record = self.record
        if record is not None and record.is_verified:
            return record.verified_value, VERIFIED
        if self._local_value is not None:
            return self._local_value, LOCAL
        return None, None
