"""Encryption and decryption capabilities consumed by the orchestrator.

The scheme itself is opaque here. An encryption service turns a plaintext
integer into a ciphertext handle plus a correctness proof; a decryption
service recovers clear values for handles off-chain and hands the encoded
values and their proof to a submit callback, which puts them on-chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable

SubmitCallback = Callable[[bytes, bytes], Awaitable[Any]]


@dataclass(frozen=True)
class EncryptedInput:
    """Ciphertext handle and the proof that it encrypts a well-formed value."""
    ciphertext: str
    proof: str


@dataclass(frozen=True)
class DecryptionResult:
    """Clear values keyed by ciphertext handle, with their encoding and proof."""
    clear_values: dict[str, int] = field(default_factory=dict)
    abi_encoded: bytes = b""
    decryption_proof: bytes = b""

    def value_for(self, handle: str) -> int:
        """Clear value for ``handle``; handles compare case-insensitively."""
        wanted = handle.lower()
        for key, value in self.clear_values.items():
            if key.lower() == wanted:
                return int(value)
        raise KeyError(f"No clear value for handle {handle}")


@dataclass(frozen=True)
class VerificationOutcome:
    """What a decrypt/verify run produced: clear values and the submission result."""
    decryption_result: DecryptionResult
    submission: Any = None


@runtime_checkable
class CryptoClient(Protocol):
    """A client that has to be readied once before use."""

    @property
    def is_initialized(self) -> bool:
        ...

    async def initialize(self) -> None:
        ...


class ValueEncryptionService(Protocol):
    async def encrypt(
        self, target_address: str, identity: str, plaintext: int,
    ) -> EncryptedInput:
        ...


class DecryptionVerificationService(Protocol):
    async def verify(
        self,
        handles: Sequence[str],
        target_address: str,
        submit: SubmitCallback,
    ) -> VerificationOutcome:
        ...
