# services/claims/errors.py
from __future__ import annotations

from enum import Enum


class ClaimErrorKind(str, Enum):
    NO_SIGNING_KEY = "NoSigningKey"
    ADDRESS_MISMATCH = "AddressMismatch"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    NO_TOKEN_ACCOUNT = "NoTokenAccount"
    ZERO_BALANCE = "ZeroBalance"
    NETWORK_FAILURE = "NetworkFailure"
    CONFIRMATION_TIMEOUT = "ConfirmationTimeout"
    TRANSACTION_FAILED = "TransactionFailed"
    BOOKKEEPING_DIVERGENCE = "BookkeepingDivergence"
    UNKNOWN = "Unknown"

    @property
    def retryable(self) -> bool:
        # AddressMismatch fails identically forever with the same keys.
        # Balance errors are "retryable" only in the degenerate already-swept sense.
        return self not in (ClaimErrorKind.ADDRESS_MISMATCH, ClaimErrorKind.BOOKKEEPING_DIVERGENCE)


class ClaimError(Exception):
    """Raised inside the claim path; converted to a ClaimResult at the executor boundary."""

    def __init__(self, kind: ClaimErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value


class LedgerError(ClaimError):
    """RPC / transport failure talking to the ledger."""

    def __init__(self, message: str):
        super().__init__(ClaimErrorKind.NETWORK_FAILURE, message)


class ConfirmationTimeout(ClaimError):
    def __init__(self, message: str):
        super().__init__(ClaimErrorKind.CONFIRMATION_TIMEOUT, message)


class TransactionFailed(ClaimError):
    """The transaction landed but its execution failed; nothing moved."""

    def __init__(self, signature: str, err):
        super().__init__(ClaimErrorKind.TRANSACTION_FAILED, f"{signature} landed with error: {err}")
        self.signature = signature
        self.err = err


class NoteStoreError(RuntimeError):
    """The note store query/mutation API failed or returned an error payload."""
