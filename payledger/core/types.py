# payledger/core/types.py
from dataclasses import dataclass, asdict

from payledger.core.encoding import hex_encode, hex_decode

COMMITMENT_SIZE = 32
MAX_NONCE = 2**64 - 1


class ReceiptStatus:
    """Outcome labels for a payroll run. Stored as free text on the receipt."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    ALL = (SUCCESS, PARTIAL, FAILED)


def nonce_key(authorizer_id: str, nonce: int) -> str:
    """Composite nonce-ledger key. Nonce is always the trailing integer segment."""
    return f"{authorizer_id}::{nonce}"


# u64 values (nonce, nanosecond timestamps) exceed the 2**53 range JSON numbers
# hold exactly, so dict forms carry them as decimal strings.

@dataclass(frozen=True)
class PaymentAttestation:
    """One commitment per claim. No plaintext amount/token/recipient."""
    claim_id: str
    execution_ref: str
    commitment: bytes               # sha256 of the canonical preimage
    timestamp_nanos: int

    def to_dict(self) -> dict:
        d = asdict(self)
        d["commitment"] = hex_encode(self.commitment)
        d["timestamp_nanos"] = str(self.timestamp_nanos)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "PaymentAttestation":
        return cls(
            claim_id=d["claim_id"],
            execution_ref=d["execution_ref"],
            commitment=hex_decode(d["commitment"]),
            timestamp_nanos=int(d["timestamp_nanos"]),
        )


@dataclass(frozen=True)
class ReceiptRecord:
    """One receipt per payroll run (hash-only, no amounts)."""
    payroll_id: str
    batch_hash: str                 # commitment to the batch
    authorizer_id: str              # who approved the run
    nonce: int                      # one-time per authorizer
    executor_id: str                # who carried out the payouts
    status: str                     # success | partial | failed
    tx_refs_hash: str
    timestamp_nanos: int

    @property
    def nonce_key(self) -> str:
        return nonce_key(self.authorizer_id, self.nonce)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["nonce"] = str(self.nonce)
        d["timestamp_nanos"] = str(self.timestamp_nanos)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ReceiptRecord":
        return cls(
            payroll_id=d["payroll_id"],
            batch_hash=d["batch_hash"],
            authorizer_id=d["authorizer_id"],
            nonce=int(d["nonce"]),
            executor_id=d["executor_id"],
            status=d["status"],
            tx_refs_hash=d["tx_refs_hash"],
            timestamp_nanos=int(d["timestamp_nanos"]),
        )
