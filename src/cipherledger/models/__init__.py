"""Data models — records, stats, and transaction status."""

from cipherledger.models.record import EncryptedRecord, RecordData, RecordStats, RecordTab
from cipherledger.models.status import HIDDEN, StatusKind, TransactionStatus
from cipherledger.models.wallet import WalletIdentity

__all__ = [
    "EncryptedRecord",
    "RecordData",
    "RecordStats",
    "RecordTab",
    "HIDDEN",
    "StatusKind",
    "TransactionStatus",
    "WalletIdentity",
]
