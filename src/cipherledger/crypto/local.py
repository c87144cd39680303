"""Deterministic development crypto backend.

Implements both capabilities with keyed hashing so that local runs and
tests exercise the full protocol without an external encryption network.
It is NOT confidential against anyone holding the session key.

Handle layout (32 bytes): 16-byte nonce || 16-byte masked value, where
the mask is HMAC-SHA256(key, "mask" || nonce)[:16]. Clear values are
ABI-encoded as consecutive ``uint256`` words, matching what the record
contract decodes.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Optional, Sequence

from eth_abi import encode

from cipherledger.crypto.capabilities import (
    DecryptionResult,
    EncryptedInput,
    SubmitCallback,
    VerificationOutcome,
)
from cipherledger.errors import InitializationError

logger = logging.getLogger(__name__)

DEV_KEY = b"cipherledger-local-development-key"
MAX_VALUE = 2 ** 128 - 1
_NONCE_BYTES = 16


class LocalCrypto:
    """Keyed-hash stand-in for an encryption network.

    Usage:
        crypto = LocalCrypto()
        await crypto.initialize()
        enc = await crypto.encrypt(contract_address, wallet_address, 42)
        outcome = await crypto.verify([enc.ciphertext], contract_address, submit)
    """

    def __init__(self, key: Optional[bytes] = None) -> None:
        self._key = key or DEV_KEY
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        self._initialized = True
        logger.debug("Local crypto backend initialized")

    async def encrypt(
        self, target_address: str, identity: str, plaintext: int,
    ) -> EncryptedInput:
        self._require_initialized()
        value = int(plaintext)
        if value < 0 or value > MAX_VALUE:
            raise ValueError(f"Value out of range: {value}")

        nonce = secrets.token_bytes(_NONCE_BYTES)
        masked = value ^ int.from_bytes(self._mask(nonce), "big")
        handle = nonce + masked.to_bytes(16, "big")
        proof = self._mac(b"input", handle, target_address.lower().encode(),
                          identity.lower().encode())
        return EncryptedInput(ciphertext="0x" + handle.hex(), proof="0x" + proof.hex())

    async def verify(
        self,
        handles: Sequence[str],
        target_address: str,
        submit: SubmitCallback,
    ) -> VerificationOutcome:
        self._require_initialized()
        clear_values = {handle: self.decrypt(handle) for handle in handles}
        encoded = encode(["uint256"] * len(handles), [clear_values[h] for h in handles])
        proof = self.decryption_proof(list(handles), encoded)

        submission = await submit(encoded, proof)
        return VerificationOutcome(
            decryption_result=DecryptionResult(
                clear_values=clear_values,
                abi_encoded=encoded,
                decryption_proof=proof,
            ),
            submission=submission,
        )

    def decrypt(self, handle: str) -> int:
        raw = _handle_bytes(handle)
        nonce, masked = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
        return int.from_bytes(masked, "big") ^ int.from_bytes(self._mask(nonce), "big")

    def decryption_proof(self, handles: list[str], encoded: bytes) -> bytes:
        return self._mac(b"decrypt", encoded, *(_handle_bytes(h) for h in handles))

    def check_decryption_proof(
        self, handles: list[str], encoded: bytes, proof: bytes,
    ) -> bool:
        """Proof check the ledger applies before accepting clear values."""
        return hmac.compare_digest(self.decryption_proof(handles, encoded), bytes(proof))

    def _mask(self, nonce: bytes) -> bytes:
        return self._mac(b"mask", nonce)[:16]

    def _mac(self, *parts: bytes) -> bytes:
        return hmac.new(self._key, b"|".join(parts), hashlib.sha256).digest()

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise InitializationError("Local crypto backend not initialized")


def _handle_bytes(handle: str) -> bytes:
    text = handle[2:] if handle.startswith("0x") else handle
    raw = bytes.fromhex(text)
    if len(raw) != 2 * _NONCE_BYTES:
        raise ValueError(f"Malformed ciphertext handle: {handle}")
    return raw
