"""Transaction status signalling."""

from cipherledger.status.tracker import TransactionStatusTracker

__all__ = ["TransactionStatusTracker"]
