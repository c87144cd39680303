"""Encrypted record store — the client's view of the records on the ledger.

The store is replaced wholesale by ``reload()`` and patched one record at
a time by ``merge()``. Anything it holds may be stale between reloads.

Rules:
- A record that fails to load is logged and skipped; the reload still
  succeeds with the remaining records.
- Failing to list record ids fails the reload with ``FetchError`` and
  leaves the previous collection untouched.
- Verification is monotonic: once the store has seen a record verified,
  a later reload or merge reporting it unverified is ignored.
- Concurrent reloads are not serialised; the last one to finish wins.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from cipherledger.errors import CipherLedgerError, FetchError
from cipherledger.ledger.gateway import LedgerGateway
from cipherledger.models.record import EncryptedRecord, RecordStats, RecordTab

logger = logging.getLogger(__name__)


class EncryptedRecordStore:
    """In-memory, ordered collection of records fetched from the ledger.

    Usage:
        store = EncryptedRecordStore(gateway)
        records = await store.reload()
        store.merge(updated_record)
        stats = store.stats()
    """

    def __init__(self, gateway: LedgerGateway) -> None:
        self._gateway = gateway
        self._records: list[EncryptedRecord] = []
        self._inflight = 0
        self._loaded_at: Optional[datetime] = None

    @property
    def records(self) -> list[EncryptedRecord]:
        return list(self._records)

    @property
    def is_refreshing(self) -> bool:
        return self._inflight > 0

    @property
    def loaded_at(self) -> Optional[datetime]:
        return self._loaded_at

    def __len__(self) -> int:
        return len(self._records)

    def get(self, record_id: str) -> Optional[EncryptedRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    async def reload(self) -> list[EncryptedRecord]:
        """Fetch every record from the ledger and replace the collection."""
        self._inflight += 1
        try:
            try:
                conn = await self._gateway.read_only()
                record_ids = await conn.list_record_ids()
            except FetchError:
                raise
            except CipherLedgerError as exc:
                raise FetchError(f"Failed to list records: {exc.message}") from exc

            fresh: list[EncryptedRecord] = []
            seen: set[str] = set()
            for record_id in record_ids:
                if record_id in seen:
                    logger.warning("Duplicate record id %s in listing, skipped", record_id)
                    continue
                seen.add(record_id)
                try:
                    data = await conn.get_record(record_id)
                    fresh.append(EncryptedRecord.from_ledger(record_id, data))
                except (CipherLedgerError, ValueError) as exc:
                    logger.warning("Skipping record %s: %s", record_id, exc)

            previous = {r.id: r for r in self._records}
            self._records = [self._keep_verified(previous.get(r.id), r) for r in fresh]
            self._loaded_at = datetime.now(timezone.utc)
            logger.debug("Reloaded %d of %d records", len(self._records), len(record_ids))
            return self.records
        finally:
            self._inflight -= 1

    def merge(self, record: EncryptedRecord) -> EncryptedRecord:
        """Replace one record by id, or append it if unknown."""
        for index, current in enumerate(self._records):
            if current.id == record.id:
                kept = self._keep_verified(current, record)
                self._records[index] = kept
                return kept
        self._records.append(record)
        return record

    def stats(self) -> RecordStats:
        total = len(self._records)
        average = (
            sum(r.public_value for r in self._records) / total if total else 0.0
        )
        return RecordStats(
            total=total,
            verified=sum(1 for r in self._records if r.is_verified),
            active=sum(1 for r in self._records if r.status == "active"),
            average_public_value=average,
        )

    def filter(
        self, search: str = "", tab: RecordTab | str = RecordTab.ALL,
    ) -> list[EncryptedRecord]:
        """Records matching ``search`` (name/description) within ``tab``."""
        tab = RecordTab(tab)
        result = []
        for record in self._records:
            if search and not record.matches(search):
                continue
            if tab == RecordTab.VERIFIED and not record.is_verified:
                continue
            if tab == RecordTab.ACTIVE and record.status != "active":
                continue
            result.append(record)
        return result

    @staticmethod
    def _keep_verified(
        known: Optional[EncryptedRecord], incoming: EncryptedRecord,
    ) -> EncryptedRecord:
        if known is not None and known.is_verified and not incoming.is_verified:
            logger.warning(
                "Ledger reported record %s unverified after verification; keeping verified state",
                incoming.id,
            )
            return known
        return incoming
