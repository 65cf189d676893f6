# payledger/__init__.py
"""
Payledger — privacy-preserving attestation + receipt ledger for off-chain payments.
Stores only commitments and digests: no amounts, tokens or recipients on the record.

Auditors recompute a commitment from private data; operators post one
tamper-evident receipt per payroll run, keyed by a one-time authorizer nonce.
"""

from payledger.core.types import PaymentAttestation, ReceiptRecord, ReceiptStatus
from payledger.store.ledger import PayrollLedger, ReceiptPolicy
from payledger.verify.commitment import PaymentDisclosure, ClaimVerifier

__version__ = "0.1.0-dev"

__all__ = [
    "PaymentAttestation",
    "ReceiptRecord",
    "ReceiptStatus",
    "PayrollLedger",
    "ReceiptPolicy",
    "PaymentDisclosure",
    "ClaimVerifier",
]
