# payledger/core/errors.py
"""
Error taxonomy. Every failure is a caller-input or policy violation:
terminal for the call, raised before any write, never retried internally.
"""


class LedgerError(Exception):
    """Base for all ledger failures."""
    kind = "ledger_error"


class Unauthorized(LedgerError):
    kind = "unauthorized"


class InvalidCommitment(LedgerError, ValueError):
    kind = "invalid_commitment"


class InvalidNonce(LedgerError, ValueError):
    kind = "invalid_nonce"


class DuplicateClaim(LedgerError):
    kind = "duplicate_claim"


class DuplicateReceipt(LedgerError):
    kind = "duplicate_receipt"


class NonceReused(LedgerError):
    kind = "nonce_reused"


class LedgerNotInitialized(LedgerError):
    kind = "not_initialized"


class AlreadyInitialized(LedgerError):
    kind = "already_initialized"
