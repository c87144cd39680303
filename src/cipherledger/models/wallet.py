"""Wallet identity handed to the lifecycle flows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class WalletIdentity:
    address: Optional[str]
    connected: bool = True

    @property
    def is_ready(self) -> bool:
        return self.connected and bool(self.address)
