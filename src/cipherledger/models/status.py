"""User-facing transaction status."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class StatusKind(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TransactionStatus:
    """The single status slot shown to the user."""
    visible: bool
    kind: StatusKind
    message: str


HIDDEN = TransactionStatus(visible=False, kind=StatusKind.PENDING, message="")
