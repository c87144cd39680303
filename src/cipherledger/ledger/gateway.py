"""Ledger gateway interface — the boundary to the on-chain record contract.

The orchestrator only talks to the ledger through these abstractions.
A gateway hands out connections: ``read_only()`` for queries and
``with_signer()`` for transactions. Every write returns a
``PendingTransaction`` whose ``finality()`` waits for confirmation.

Implementations must translate backend-specific failures into the typed
errors of ``cipherledger.errors``:
- ``AlreadyVerifiedError`` when a decryption proof targets a record that
  is already verified,
- ``SubmissionRejectedError`` when the signer declines,
- ``SubmissionError`` for any other transaction failure,
- ``FetchError`` for read failures,
- ``LedgerUnavailableError`` when no provider or signer is available.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from cipherledger.models.record import RecordData


@dataclass(frozen=True)
class TransactionReceipt:
    """Confirmation details of a finalised transaction."""
    tx_hash: str
    block_number: int
    succeeded: bool = True


class PendingTransaction(ABC):
    """A submitted transaction awaiting confirmation."""

    tx_hash: str

    @abstractmethod
    async def finality(self) -> TransactionReceipt:
        """Wait until the transaction is final; raise on failure."""


class LedgerConnection(ABC):
    """A connection to the record contract."""

    @abstractmethod
    async def get_address(self) -> str:
        """Address of the record contract."""

    @abstractmethod
    async def list_record_ids(self) -> list[str]:
        ...

    @abstractmethod
    async def get_record(self, record_id: str) -> RecordData:
        ...

    @abstractmethod
    async def get_ciphertext_handle(self, record_id: str) -> str:
        ...

    @abstractmethod
    async def check_availability(self) -> bool:
        ...

    @abstractmethod
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
        ...

    @abstractmethod
    async def verify_decryption(
        self,
        record_id: str,
        encoded_clear_values: bytes,
        decryption_proof: bytes,
    ) -> PendingTransaction:
        ...


class LedgerGateway(ABC):
    """Hands out read-only and signing connections."""

    @abstractmethod
    async def read_only(self) -> LedgerConnection:
        ...

    @abstractmethod
    async def with_signer(self) -> LedgerConnection:
        ...
