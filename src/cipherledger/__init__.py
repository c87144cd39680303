"""Cipherledger — confidential contract values stored encrypted on a ledger.

A plaintext integer is encrypted with a correctness proof, submitted to
the ledger, and later decrypted and proven on-chain so the value becomes
publicly verified on its record.
"""

__version__ = "0.1.0"
