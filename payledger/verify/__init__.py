from .commitment import (
    ClaimVerifier,
    PaymentDisclosure,
    VerificationFailure,
    VerificationResult,
    attestation_commitment,
    attestation_preimage,
    generate_nonce_hex,
)
from .digests import compute_batch_hash, compute_tx_refs_hash

__all__ = [
    "ClaimVerifier",
    "PaymentDisclosure",
    "VerificationFailure",
    "VerificationResult",
    "attestation_commitment",
    "attestation_preimage",
    "generate_nonce_hex",
    "compute_batch_hash",
    "compute_tx_refs_hash",
]
