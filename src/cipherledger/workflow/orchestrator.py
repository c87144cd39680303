"""Record lifecycle orchestrator — creation and decrypt/verify flows.

The orchestrator is the only component that drives the ledger. It calls
the encryption and decryption capabilities as awaited steps of its flows
and keeps two passive pieces of state current as the flows progress: the
record store and the transaction status tracker.

Creation:
    wallet check → signer connection → fresh id → encrypt → submit
    → await finality → success → reload.
    Nothing is written if encryption fails. The new record is only taken
    from the reload that follows, never built locally.

Decrypt & verify (path chosen from a fresh ledger read):
    A. already verified → return the stored value, nothing submitted.
    B. not verified → fetch handle → off-chain decrypt → submit proof
       → await finality → reload → success → return the clear value.
    A concurrent verification by someone else surfaces as
    ``AlreadyVerifiedError`` and is reported as success with no value.

Flows interleave freely. The only guards are a per-record in-flight set
for decrypt/verify and the store's reload busy flag.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable, Optional

from cipherledger.crypto.capabilities import (
    CryptoClient,
    DecryptionVerificationService,
    ValueEncryptionService,
)
from cipherledger.errors import (
    AlreadyVerifiedError,
    CipherLedgerError,
    EncryptionError,
    FetchError,
    InitializationError,
    NotConnectedError,
    RecordBusyError,
    SubmissionError,
    SubmissionRejectedError,
    VerificationError,
)
from cipherledger.ledger.gateway import LedgerGateway
from cipherledger.models.record import EncryptedRecord
from cipherledger.models.wallet import WalletIdentity
from cipherledger.persistence.record_store import EncryptedRecordStore
from cipherledger.status.tracker import TransactionStatusTracker

logger = logging.getLogger(__name__)


def parse_contract_value(text: str) -> int:
    """Digits-only form input; anything empty counts as zero."""
    digits = re.sub(r"[^\d]", "", text or "")
    return int(digits) if digits else 0


def _already_verified(exc: BaseException) -> bool:
    """True if ``exc`` or anything it was raised from is an AlreadyVerifiedError."""
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, AlreadyVerifiedError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


class RecordLifecycleOrchestrator:
    """Coordinates record creation and decryption verification.

    Usage:
        orch = RecordLifecycleOrchestrator(
            gateway, store, encryptor=crypto, decryptor=crypto,
            tracker=tracker, crypto_client=crypto,
        )
        record = await orch.create("Lease", "Office lease", 42, wallet)
        value = await orch.decrypt_and_verify(record.id, wallet)
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        store: EncryptedRecordStore,
        encryptor: ValueEncryptionService,
        decryptor: DecryptionVerificationService,
        tracker: TransactionStatusTracker,
        crypto_client: Optional[CryptoClient] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._encryptor = encryptor
        self._decryptor = decryptor
        self._tracker = tracker
        self._crypto_client = crypto_client
        self._clock = clock
        self._id_factory = id_factory or self.new_record_id
        self._contract_address: Optional[str] = None
        self._init_task: Optional[asyncio.Task] = None
        self._decrypting: set[str] = set()
        self._creating = False
        self._last_error: Optional[CipherLedgerError] = None

    @property
    def store(self) -> EncryptedRecordStore:
        return self._store

    @property
    def tracker(self) -> TransactionStatusTracker:
        return self._tracker

    @property
    def last_error(self) -> Optional[CipherLedgerError]:
        """The failure most recently reported through the status tracker."""
        return self._last_error

    @property
    def is_creating(self) -> bool:
        return self._creating

    @property
    def busy_records(self) -> frozenset[str]:
        return frozenset(self._decrypting)

    def is_decrypting(self, record_id: str) -> bool:
        return record_id in self._decrypting

    def new_record_id(self) -> str:
        """Time-derived identifier, ``contract-<milliseconds>``."""
        return f"contract-{int(self._clock() * 1000)}"

    # ------------------------------------------------------------------
    # Session setup and housekeeping
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Ready the encryption client once; failures abort the calling flow.

        Concurrent callers share one in-flight initialization.
        """
        client = self._crypto_client
        if client is None or client.is_initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize_client(client))
        await self._init_task

    async def _initialize_client(self, client: CryptoClient) -> None:
        try:
            await client.initialize()
        except Exception as exc:
            logger.exception("Encryption client initialization failed")
            error = InitializationError(str(exc) or "initialization failed")
            self._report(error, "Encryption client initialization failed")
            raise error from exc
        finally:
            self._init_task = None

    async def contract_address(self) -> str:
        """Address used as the encryption/decryption target (cached)."""
        if self._contract_address is None:
            conn = await self._gateway.read_only()
            self._contract_address = await conn.get_address()
        return self._contract_address

    async def refresh(self) -> list[EncryptedRecord]:
        """Reload the store; on failure report it and keep the old snapshot."""
        try:
            return await self._store.reload()
        except FetchError as exc:
            logger.warning("Record reload failed: %s", exc.message)
            self._report(exc, "Failed to load records")
            return self._store.records

    async def check_availability(self) -> bool:
        try:
            conn = await self._gateway.read_only()
            available = await conn.check_availability()
        except CipherLedgerError as exc:
            logger.warning("Availability check failed: %s", exc.message)
            self._report(exc, "Availability check failed")
            return False
        if available:
            self._tracker.success("Contract availability check passed")
        else:
            self._report(FetchError("contract unavailable"), "Contract reports unavailable")
        return available

    # ------------------------------------------------------------------
    # Creation flow
    # ------------------------------------------------------------------

    async def create(
        self,
        name: str,
        description: str,
        plaintext_value: int,
        wallet: Optional[WalletIdentity],
    ) -> Optional[EncryptedRecord]:
        """Encrypt ``plaintext_value`` and store it as a new record.

        Returns the record as read back by the post-confirmation reload,
        or None if that reload did not list it yet.

        Raises:
            NotConnectedError, InitializationError, EncryptionError,
            SubmissionRejectedError, SubmissionError.
        """
        identity = self._require_wallet(wallet)
        await self.initialize()

        self._creating = True
        self._tracker.pending("Creating encrypted record...")
        try:
            record_id = await self._submit_creation(
                identity, name, description, int(plaintext_value),
            )
        finally:
            self._creating = False

        self._tracker.success("Record created")
        await self.refresh()
        return self._store.get(record_id)

    async def _submit_creation(
        self, identity: str, name: str, description: str, value: int,
    ) -> str:
        try:
            try:
                writer = await self._gateway.with_signer()
            except CipherLedgerError as exc:
                raise SubmissionError(f"Ledger connection failed: {exc.message}") from exc

            record_id = self._id_factory()
            target = await self.contract_address()

            try:
                encrypted = await self._encryptor.encrypt(target, identity, value)
            except Exception as exc:
                raise EncryptionError(str(exc) or "encryption failed") from exc

            tx = await writer.create_record(
                record_id, name, encrypted.ciphertext, encrypted.proof,
                value, 0, description,
            )
            logger.info("Creation of %s submitted as %s", record_id, tx.tx_hash)
            self._tracker.pending("Awaiting transaction confirmation...")
            await tx.finality()
        except SubmissionRejectedError as exc:
            self._report(exc, "Transaction cancelled by user")
            raise
        except EncryptionError as exc:
            self._report(exc, f"Encryption failed: {exc.message}")
            raise
        except SubmissionError as exc:
            self._report(exc, f"Submission failed: {exc.message}")
            raise
        except Exception as exc:
            error = SubmissionError(str(exc) or "unknown error")
            self._report(error, f"Submission failed: {error.message}")
            raise error from exc

        logger.info("Record %s confirmed", record_id)
        return record_id

    # ------------------------------------------------------------------
    # Decrypt & verify flow
    # ------------------------------------------------------------------

    async def decrypt_and_verify(
        self, record_id: str, wallet: Optional[WalletIdentity],
    ) -> Optional[int]:
        """Return the record's clear value, proving it on-chain if needed.

        Returns None when the value could not be obtained (reported as a
        verification failure) or when someone else verified it first (the
        caller reads the value from the reloaded record).

        Raises:
            NotConnectedError, InitializationError, RecordBusyError.
        """
        self._require_wallet(wallet)
        if record_id in self._decrypting:
            raise RecordBusyError(f"Decryption already in progress for {record_id}")

        self._decrypting.add(record_id)
        try:
            await self.initialize()
            return await self._decrypt_and_verify(record_id)
        finally:
            self._decrypting.discard(record_id)

    async def _decrypt_and_verify(self, record_id: str) -> Optional[int]:
        try:
            reader = await self._gateway.read_only()
            data = await reader.get_record(record_id)
            if data.is_verified:
                record = self._store.merge(EncryptedRecord.from_ledger(record_id, data))
                logger.info("Record %s already verified, skipping decryption", record_id)
                self._tracker.success("Value already verified on-chain")
                return record.verified_value

            writer = await self._gateway.with_signer()
            handle = await reader.get_ciphertext_handle(record_id)
            target = await self.contract_address()

            async def submit_proof(encoded_clear_values: bytes, decryption_proof: bytes):
                tx = await writer.verify_decryption(
                    record_id, encoded_clear_values, decryption_proof,
                )
                self._tracker.pending("Verifying decryption on-chain...")
                return await tx.finality()

            outcome = await self._decryptor.verify([handle], target, submit_proof)
            value = outcome.decryption_result.value_for(handle)
        except Exception as exc:
            if _already_verified(exc):
                logger.info("Record %s was verified concurrently", record_id)
                self._tracker.success("Value already verified on-chain")
                await self.refresh()
                return None
            message = exc.message if isinstance(exc, CipherLedgerError) else str(exc)
            logger.warning("Decryption of %s failed: %s", record_id, message or exc)
            self._report(
                VerificationError(message or "unknown error"),
                f"Decryption failed: {message or 'unknown error'}",
            )
            return None

        await self.refresh()
        self._tracker.success("Decryption verified on-chain")
        return value

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_wallet(self, wallet: Optional[WalletIdentity]) -> str:
        if wallet is None or not wallet.is_ready:
            error = NotConnectedError("No wallet connected")
            self._report(error, "Please connect your wallet first")
            raise error
        return wallet.address

    def _report(self, error: CipherLedgerError, message: str) -> None:
        self._last_error = error
        self._tracker.error(message)
