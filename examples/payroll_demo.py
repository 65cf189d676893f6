# examples/payroll_demo.py
# Run with: python examples/payroll_demo.py
#
# Walks through both sides of the ledger: an attester posting a commitment,
# an auditor verifying it, and an executor posting one receipt per payroll run.

import logging
from dataclasses import replace

from payledger import PayrollLedger, PaymentDisclosure, ClaimVerifier
from payledger.core.errors import NonceReused, Unauthorized
from payledger.logging_config import configure_logging
from payledger.storage import create_storage
from payledger.verify import compute_batch_hash, compute_tx_refs_hash, generate_nonce_hex


# =============================================================================
# DEMO
# =============================================================================

if __name__ == "__main__":
    configure_logging("INFO")
    log = logging.getLogger("payledger.demo")

    ledger = PayrollLedger.create(
        create_storage("memory://"),
        creator="deployer.near",
        allowed_caller="backend.near",
    )

    # --- attestation: only the commitment goes on the record ----------------
    disclosure = PaymentDisclosure(
        claim_id="claim-7781",
        execution_ref="intent-0x9f2c",
        amount="1250.00",
        token_symbol="USDC",
        token_chain="near",
        recipient_id="contractor.near",
        nonce_hex=generate_nonce_hex(),
    )
    ledger.record_payment("backend.near", disclosure.claim_id, disclosure.execution_ref, disclosure.commitment())

    try:
        ledger.record_payment("intruder.near", "claim-0000", "x", disclosure.commitment())
    except Unauthorized as e:
        log.info("Rejected as expected: %s", e)

    # --- audit: recompute from private data ---------------------------------
    verifier = ClaimVerifier()
    print(verifier.verify_from_ledger(ledger, disclosure))

    forged = replace(disclosure, amount="12500.00")
    print(verifier.verify_from_ledger(ledger, forged))

    # --- receipts: one per payroll run, nonce burned forever ----------------
    entries = [
        {"id": "e1", "recipient_address": "alice.near", "amount": "800"},
        {"id": "e2", "recipient_address": "bob.near", "amount": "450"},
    ]
    ledger.record_receipt(
        "backend.near",
        payroll_id="run-2026-10",
        batch_hash=compute_batch_hash(entries),
        authorizer_id="employer.near",
        nonce=41,
        executor_id="solver.near",
        status="success",
        tx_refs_hash=compute_tx_refs_hash(["0xaaa", "0xbbb"]),
    )
    print(ledger.get_receipt("run-2026-10"))

    try:
        ledger.record_receipt(
            "backend.near", "run-2026-11", "bh", "employer.near", 41, "solver.near", "success", "th"
        )
    except NonceReused as e:
        log.info("Replay blocked: %s", e)

    print("nonce 41 spent:", ledger.is_nonce_used("employer.near", 41))
    print("nonce 42 spent:", ledger.is_nonce_used("employer.near", 42))
