"""In-process ledger with the record contract's semantics.

Used for local runs (optionally persisted to a JSON file) and as the
ledger under test. Writes are validated on submission and applied on
finality, so two transactions can race exactly as they would on-chain:
a second verification submitted before the first is final fails with
``AlreadyVerifiedError`` when it is applied.

Every write call is recorded in ``calls`` for inspection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

from eth_abi import decode

from cipherledger.errors import (
    AlreadyVerifiedError,
    FetchError,
    LedgerUnavailableError,
    SubmissionError,
)
from cipherledger.ledger.gateway import (
    LedgerConnection,
    LedgerGateway,
    PendingTransaction,
    TransactionReceipt,
)
from cipherledger.models.record import RecordData

logger = logging.getLogger(__name__)

ProofChecker = Callable[[list[str], bytes, bytes], bool]

DEFAULT_CONTRACT_ADDRESS = "0x" + "c1" * 20


@dataclass
class StoredRecord:
    """Mutable on-ledger state of one record."""
    name: str
    description: str
    creator: str
    timestamp: int
    ciphertext_handle: str
    input_proof: str
    public_value: int
    aux_value: int
    is_verified: bool = False
    decrypted_value: int = 0


@dataclass(frozen=True)
class LedgerCall:
    """A write call made against the ledger."""
    method: str
    args: tuple[Any, ...]


class _MemoryTransaction(PendingTransaction):
    def __init__(self, ledger: InMemoryLedger, apply: Callable[[], None]) -> None:
        self.tx_hash = "0x" + uuid4().hex * 2
        self._ledger = ledger
        self._apply = apply

    async def finality(self) -> TransactionReceipt:
        # Yield once so other flows can interleave before the write lands.
        await asyncio.sleep(0)
        self._apply()
        self._ledger.block_number += 1
        return TransactionReceipt(tx_hash=self.tx_hash, block_number=self._ledger.block_number)


class InMemoryConnection(LedgerConnection):
    """A read-only or signing connection to an ``InMemoryLedger``."""

    def __init__(self, ledger: InMemoryLedger, signer: Optional[str]) -> None:
        self._ledger = ledger
        self._signer = signer

    async def get_address(self) -> str:
        return self._ledger.address

    async def list_record_ids(self) -> list[str]:
        return list(self._ledger.records)

    async def get_record(self, record_id: str) -> RecordData:
        stored = self._ledger.lookup(record_id)
        return RecordData(
            name=stored.name,
            description=stored.description,
            creator=stored.creator,
            timestamp=stored.timestamp,
            public_value=stored.public_value,
            aux_value=stored.aux_value,
            is_verified=stored.is_verified,
            decrypted_value=stored.decrypted_value,
            ciphertext_handle=stored.ciphertext_handle,
        )

    async def get_ciphertext_handle(self, record_id: str) -> str:
        return self._ledger.lookup(record_id).ciphertext_handle

    async def check_availability(self) -> bool:
        return self._ledger.available

    async def create_record(
        self,
        record_id: str,
        name: str,
        ciphertext: str,
        proof: str,
        public_value: int,
        aux_value: int,
        description: str,
    ) -> PendingTransaction:
        signer = self._require_signer()
        self._ledger.calls.append(LedgerCall(
            "create_record",
            (record_id, name, ciphertext, proof, public_value, aux_value, description),
        ))
        if record_id in self._ledger.records:
            raise SubmissionError(f"Record already exists: {record_id}")

        def apply() -> None:
            if record_id in self._ledger.records:
                raise SubmissionError(f"Record already exists: {record_id}")
            self._ledger.records[record_id] = StoredRecord(
                name=name,
                description=description,
                creator=signer,
                timestamp=int(self._ledger.clock()),
                ciphertext_handle=ciphertext,
                input_proof=proof,
                public_value=int(public_value),
                aux_value=int(aux_value),
            )
            self._ledger.save()

        return _MemoryTransaction(self._ledger, apply)

    async def verify_decryption(
        self,
        record_id: str,
        encoded_clear_values: bytes,
        decryption_proof: bytes,
    ) -> PendingTransaction:
        self._require_signer()
        self._ledger.calls.append(LedgerCall(
            "verify_decryption", (record_id, encoded_clear_values, decryption_proof),
        ))
        stored = self._ledger.lookup(record_id, error=SubmissionError)
        if stored.is_verified:
            raise AlreadyVerifiedError(f"Data already verified: {record_id}")

        checker = self._ledger.proof_checker
        if checker is not None and not checker(
            [stored.ciphertext_handle], encoded_clear_values, decryption_proof,
        ):
            raise SubmissionError(f"Invalid decryption proof for {record_id}")

        (value,) = decode(["uint256"], encoded_clear_values)

        def apply() -> None:
            current = self._ledger.lookup(record_id, error=SubmissionError)
            if current.is_verified:
                raise AlreadyVerifiedError(f"Data already verified: {record_id}")
            current.is_verified = True
            current.decrypted_value = int(value)
            self._ledger.save()

        return _MemoryTransaction(self._ledger, apply)

    def _require_signer(self) -> str:
        if self._signer is None:
            raise LedgerUnavailableError("Connection has no signer")
        return self._signer


class InMemoryLedger(LedgerGateway):
    """Record contract state held in process.

    Usage:
        ledger = InMemoryLedger(signer="0xabc...")
        conn = await ledger.with_signer()
        tx = await conn.create_record("contract-1", "Lease", handle, proof, 42, 0, "")
        await tx.finality()

    Persistence (optional):
        ledger = InMemoryLedger(signer=..., storage_path=Path("ledger.json"))
        # State is written after every applied transaction and loaded on
        # construction.
    """

    def __init__(
        self,
        signer: Optional[str] = None,
        address: str = DEFAULT_CONTRACT_ADDRESS,
        proof_checker: Optional[ProofChecker] = None,
        storage_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.signer = signer
        self.address = address
        self.proof_checker = proof_checker
        self.clock = clock
        self.available = True
        self.block_number = 0
        self.records: dict[str, StoredRecord] = {}
        self.calls: list[LedgerCall] = []
        self._storage_path = storage_path

        if storage_path is not None and storage_path.exists():
            self._load(storage_path)

    async def read_only(self) -> LedgerConnection:
        return InMemoryConnection(self, signer=None)

    async def with_signer(self) -> LedgerConnection:
        if self.signer is None:
            raise LedgerUnavailableError("No signer configured")
        return InMemoryConnection(self, signer=self.signer)

    def lookup(
        self, record_id: str, error: type[Exception] = FetchError,
    ) -> StoredRecord:
        stored = self.records.get(record_id)
        if stored is None:
            raise error(f"Record not found: {record_id}")
        return stored

    def calls_to(self, method: str) -> list[LedgerCall]:
        return [c for c in self.calls if c.method == method]

    def mark_verified(self, record_id: str, value: int) -> None:
        """Verify a record out of band, as another party would."""
        stored = self.lookup(record_id)
        stored.is_verified = True
        stored.decrypted_value = int(value)
        self.save()

    def save(self) -> None:
        if self._storage_path is None:
            return
        data = {
            "address": self.address,
            "block_number": self.block_number,
            "records": {rid: asdict(rec) for rid, rec in self.records.items()},
        }
        self._storage_path.write_text(
            json.dumps(data, indent=2, sort_keys=True), encoding="utf-8",
        )

    def _load(self, path: Path) -> None:
        data = json.loads(path.read_text(encoding="utf-8"))
        self.address = data.get("address", self.address)
        self.block_number = int(data.get("block_number", 0))
        for rid, fields in data.get("records", {}).items():
            self.records[rid] = StoredRecord(**fields)
        logger.debug("Loaded %d records from %s", len(self.records), path)
