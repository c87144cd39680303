"""Client-side record state."""

from cipherledger.persistence.record_store import EncryptedRecordStore

__all__ = ["EncryptedRecordStore"]
