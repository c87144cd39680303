"""Encryption capabilities — protocols and the local development backend."""

from cipherledger.crypto.capabilities import (
    CryptoClient,
    DecryptionResult,
    DecryptionVerificationService,
    EncryptedInput,
    ValueEncryptionService,
    VerificationOutcome,
)
from cipherledger.crypto.local import LocalCrypto

__all__ = [
    "CryptoClient",
    "DecryptionResult",
    "DecryptionVerificationService",
    "EncryptedInput",
    "ValueEncryptionService",
    "VerificationOutcome",
    "LocalCrypto",
]
