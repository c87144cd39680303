"""Shared fixtures — in-memory ledger and local crypto with failure hooks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import pytest
from eth_abi import encode

from cipherledger.crypto.capabilities import (
    DecryptionResult,
    EncryptedInput,
    SubmitCallback,
    VerificationOutcome,
)
from cipherledger.crypto.local import LocalCrypto
from cipherledger.errors import FetchError
from cipherledger.ledger.gateway import LedgerConnection, PendingTransaction, TransactionReceipt
from cipherledger.ledger.memory import InMemoryConnection, InMemoryLedger, StoredRecord
from cipherledger.models.record import EncryptedRecord, RecordData
from cipherledger.models.wallet import WalletIdentity
from cipherledger.persistence.record_store import EncryptedRecordStore
from cipherledger.status.tracker import TransactionStatusTracker
from cipherledger.workflow.orchestrator import RecordLifecycleOrchestrator

SIGNER = "0x" + "a1" * 20
WALLET = WalletIdentity(SIGNER)
BASE_TS = 1_700_000_000.0

# Short time unit so expiry tests run in milliseconds.
STATUS_CONFIG = {"unit_seconds": 0.01, "success_units": 2, "error_units": 3}


class BrokenTransaction(PendingTransaction):
    def __init__(self, error: Exception) -> None:
        self.tx_hash = "0xbroken"
        self._error = error

    async def finality(self) -> TransactionReceipt:
        await asyncio.sleep(0)
        raise self._error


class FlakyConnection(InMemoryConnection):
    async def create_record(self, *args: Any) -> PendingTransaction:
        if self._ledger.create_error is not None:
            raise self._ledger.create_error
        tx = await super().create_record(*args)
        if self._ledger.finality_error is not None:
            return BrokenTransaction(self._ledger.finality_error)
        return tx

    async def verify_decryption(self, *args: Any) -> PendingTransaction:
        if self._ledger.verify_error is not None:
            raise self._ledger.verify_error
        return await super().verify_decryption(*args)

    async def list_record_ids(self) -> list[str]:
        if self._ledger.listing_fails:
            raise FetchError("node unreachable")
        self._ledger.reads.append(("list_record_ids", None))
        return await super().list_record_ids()

    async def get_record(self, record_id: str) -> RecordData:
        self._ledger.reads.append(("get_record", record_id))
        if record_id in self._ledger.broken_ids:
            raise FetchError(f"corrupt record {record_id}")
        return await super().get_record(record_id)

    async def get_ciphertext_handle(self, record_id: str) -> str:
        self._ledger.reads.append(("get_ciphertext_handle", record_id))
        return await super().get_ciphertext_handle(record_id)


class FlakyLedger(InMemoryLedger):
    """In-memory ledger that can fail reads and logs every read call."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.listing_fails = False
        self.broken_ids: set[str] = set()
        self.create_error: Optional[Exception] = None
        self.verify_error: Optional[Exception] = None
        self.finality_error: Optional[Exception] = None
        self.reads: list[tuple[str, Optional[str]]] = []

    async def read_only(self) -> LedgerConnection:
        return FlakyConnection(self, signer=None)

    async def with_signer(self) -> LedgerConnection:
        await super().with_signer()
        return FlakyConnection(self, signer=self.signer)

    def reads_of(self, method: str) -> list[Optional[str]]:
        return [arg for name, arg in self.reads if name == method]

    def seed(
        self,
        record_id: str,
        handle: str = "H1",
        name: str = "Lease",
        description: str = "Office lease",
        public_value: int = 0,
        verified_value: Optional[int] = None,
    ) -> StoredRecord:
        stored = StoredRecord(
            name=name,
            description=description,
            creator=SIGNER,
            timestamp=int(BASE_TS),
            ciphertext_handle=handle,
            input_proof="0x00",
            public_value=public_value,
            aux_value=0,
            is_verified=verified_value is not None,
            decrypted_value=verified_value or 0,
        )
        self.records[record_id] = stored
        return stored


class CountingCrypto(LocalCrypto):
    """Local crypto that counts calls and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.encrypt_calls: list[tuple[str, str, int]] = []
        self.verify_calls: list[list[str]] = []
        self.encrypt_error: Optional[Exception] = None
        self.init_error: Optional[Exception] = None
        self.init_calls = 0

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error
        await super().initialize()

    async def encrypt(self, target_address: str, identity: str, plaintext: int) -> EncryptedInput:
        self.encrypt_calls.append((target_address, identity, plaintext))
        if self.encrypt_error is not None:
            raise self.encrypt_error
        return await super().encrypt(target_address, identity, plaintext)

    async def verify(self, handles: Sequence[str], target_address: str,
                     submit: SubmitCallback) -> VerificationOutcome:
        self.verify_calls.append(list(handles))
        return await super().verify(handles, target_address, submit)


@dataclass
class StubCrypto:
    """Fixed-answer capabilities: a canned ciphertext and canned clear values."""
    ciphertext: str = "C1"
    proof: str = "P1"
    clear_values: dict[str, int] = field(default_factory=dict)
    encrypt_calls: int = 0
    verify_calls: int = 0

    async def encrypt(self, target_address: str, identity: str, plaintext: int) -> EncryptedInput:
        self.encrypt_calls += 1
        return EncryptedInput(ciphertext=self.ciphertext, proof=self.proof)

    async def verify(self, handles: Sequence[str], target_address: str,
                     submit: SubmitCallback) -> VerificationOutcome:
        self.verify_calls += 1
        values = [self.clear_values[h] for h in handles]
        encoded = encode(["uint256"] * len(values), values)
        submission = await submit(encoded, b"decryption-proof")
        return VerificationOutcome(
            decryption_result=DecryptionResult(
                clear_values=dict(self.clear_values),
                abi_encoded=encoded,
                decryption_proof=b"decryption-proof",
            ),
            submission=submission,
        )


class SpyStore(EncryptedRecordStore):
    def __init__(self, gateway: Any) -> None:
        super().__init__(gateway)
        self.reload_count = 0

    async def reload(self) -> list[EncryptedRecord]:
        self.reload_count += 1
        return await super().reload()


class StepClock:
    """Clock that advances one second per reading."""

    def __init__(self, start: float = BASE_TS) -> None:
        self._now = start

    def __call__(self) -> float:
        now = self._now
        self._now += 1.0
        return now


def run(coro: Any) -> Any:
    return asyncio.run(coro)


@pytest.fixture
def crypto() -> CountingCrypto:
    return CountingCrypto()


@pytest.fixture
def ledger(crypto: CountingCrypto) -> FlakyLedger:
    return FlakyLedger(
        signer=SIGNER,
        proof_checker=crypto.check_decryption_proof,
        clock=lambda: BASE_TS,
    )


@pytest.fixture
def store(ledger: FlakyLedger) -> SpyStore:
    return SpyStore(ledger)


@pytest.fixture
def tracker() -> TransactionStatusTracker:
    return TransactionStatusTracker(STATUS_CONFIG)


@pytest.fixture
def orchestrator(
    ledger: FlakyLedger,
    store: SpyStore,
    crypto: CountingCrypto,
    tracker: TransactionStatusTracker,
) -> RecordLifecycleOrchestrator:
    return RecordLifecycleOrchestrator(
        ledger, store,
        encryptor=crypto, decryptor=crypto,
        tracker=tracker, crypto_client=crypto,
        clock=StepClock(),
    )
