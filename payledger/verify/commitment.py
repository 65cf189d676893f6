# payledger/verify/commitment.py
"""
Off-ledger commitment protocol.

Canonical preimage (UTF-8, newline separated, this exact order):

    claim_id \\n execution_ref \\n amount \\n token_symbol \\n token_chain \\n recipient_id \\n nonce_hex

``recipient_id`` is the empty string when absent; ``nonce_hex`` is a random
value chosen by the attester, lowercase hex, unrelated to receipt nonces.
The commitment is SHA-256 of those bytes. A verifier holding every plaintext
field plus ``nonce_hex`` recomputes the digest and compares bytes exactly.
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from typing import List, Optional

from payledger.core.types import PaymentAttestation

NONCE_BYTES = 32


def attestation_preimage(
    claim_id: str,
    execution_ref: str,
    amount: str,
    token_symbol: str,
    token_chain: str,
    recipient_id: Optional[str],
    nonce_hex: str,
) -> str:
    return "\n".join([
        claim_id,
        execution_ref,
        str(amount),
        token_symbol,
        token_chain,
        recipient_id or "",
        nonce_hex,
    ])


def attestation_commitment(preimage: str) -> bytes:
    """SHA256 of preimage; 32 bytes."""
    return hashlib.sha256(preimage.encode("utf-8")).digest()


def generate_nonce_hex() -> str:
    """Fresh attestation nonce. Keep it with the private record: losing it makes the claim unverifiable."""
    return secrets.token_hex(NONCE_BYTES)


@dataclass(frozen=True)
class PaymentDisclosure:
    """The private side of an attestation, as held by the payer or an auditor."""
    claim_id: str
    execution_ref: str
    amount: str                     # decimal string
    token_symbol: str
    token_chain: str
    nonce_hex: str
    recipient_id: str = ""

    def preimage(self) -> str:
        return attestation_preimage(
            self.claim_id,
            self.execution_ref,
            self.amount,
            self.token_symbol,
            self.token_chain,
            self.recipient_id,
            self.nonce_hex,
        )

    def commitment(self) -> bytes:
        return attestation_commitment(self.preimage())


@dataclass
class VerificationFailure:
    message: str
    category: str = "general"  # "missing", "claim_id", "execution_ref", "commitment"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Claim is verified ✓"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • {f.category}: {f.message}")
        return "\n".join(lines)


class ClaimVerifier:
    """
    Checks a disclosed payment against a stored attestation.
    No partial matches: any altered field or a lost nonce fails the claim.
    """

    def verify(
        self,
        attestation: Optional[PaymentAttestation],
        disclosure: PaymentDisclosure,
    ) -> VerificationResult:
        if attestation is None:
            return VerificationResult(
                False,
                f"No attestation recorded for claim '{disclosure.claim_id}'",
                [VerificationFailure("No attestation recorded", "missing")],
            )

        result = VerificationResult(True)

        # public fields first: cheap and gives a clearer message than a hash mismatch
        if attestation.claim_id != disclosure.claim_id:
            result.failures.append(VerificationFailure(
                f"claim_id mismatch: stored '{attestation.claim_id}'", "claim_id"))
        if attestation.execution_ref != disclosure.execution_ref:
            result.failures.append(VerificationFailure(
                f"execution_ref mismatch: stored '{attestation.execution_ref}'", "execution_ref"))

        if not hmac.compare_digest(attestation.commitment, disclosure.commitment()):
            result.failures.append(VerificationFailure(
                "Recomputed commitment does not match stored commitment", "commitment"))

        result.is_valid = not result.failures
        result.message = "Commitment matches" if result.is_valid else f"Failed with {len(result.failures)} issues"
        return result

    def verify_from_ledger(self, ledger, disclosure: PaymentDisclosure) -> VerificationResult:
        """Look up the attestation by claim_id and verify it."""
        try:
            attestation = ledger.get_payment(disclosure.claim_id)
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load claim '{disclosure.claim_id}' from ledger: {e}",
                [VerificationFailure(str(e), "storage")],
            )
        return self.verify(attestation, disclosure)
