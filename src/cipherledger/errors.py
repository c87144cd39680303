"""Error taxonomy for the record lifecycle.

Every user-visible failure has a stable ``kind`` so that callers can
branch on the type (or the kind string) instead of parsing messages.
Node and wallet error text is only inspected at the ledger boundary,
which raises the typed errors below.
"""

from __future__ import annotations


class CipherLedgerError(Exception):
    """Base class for all lifecycle errors."""

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class NotConnectedError(CipherLedgerError):
    """No wallet/session available for the requested flow."""
    kind = "not_connected"


class InitializationError(CipherLedgerError):
    """The encryption client could not be readied."""
    kind = "initialization_failure"


class EncryptionError(CipherLedgerError):
    """Encrypting the plaintext value failed; nothing was written."""
    kind = "encryption_failure"


class SubmissionRejectedError(CipherLedgerError):
    """The signer declined the transaction."""
    kind = "submission_rejected"


class SubmissionError(CipherLedgerError):
    """A transaction failed for any reason other than a user rejection."""
    kind = "submission_failure"


class AlreadyVerifiedError(SubmissionError):
    """The ledger already holds a verified value for this record."""
    kind = "already_verified"


class VerificationError(CipherLedgerError):
    """The decrypt/verify flow failed."""
    kind = "verification_failure"


class FetchError(CipherLedgerError):
    """Reading from the ledger failed."""
    kind = "fetch_error"


class LedgerUnavailableError(CipherLedgerError):
    """No provider or signer could be obtained for the ledger."""
    kind = "ledger_unavailable"


class RecordBusyError(CipherLedgerError):
    """A decrypt/verify flow is already in flight for this record."""
    kind = "record_busy"
