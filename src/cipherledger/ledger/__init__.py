"""Ledger access — gateway interface and backends."""

from cipherledger.ledger.gateway import (
    LedgerConnection,
    LedgerGateway,
    PendingTransaction,
    TransactionReceipt,
)
from cipherledger.ledger.memory import InMemoryLedger

__all__ = [
    "LedgerConnection",
    "LedgerGateway",
    "PendingTransaction",
    "TransactionReceipt",
    "InMemoryLedger",
]
