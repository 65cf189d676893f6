"""
Digests an executor posts with a receipt. Only these hashes reach the ledger,
never amounts or raw transaction ids.
"""

import hashlib
from typing import Iterable, Mapping


def _sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def compute_batch_hash(entries: Iterable[Mapping[str, str]]) -> str:
    """
    Single commitment over a payroll batch.
    leaf = H(id | lower(trim(recipient_address)) | trim(amount)); batch = H(sorted leaves joined).
    """
    leaves = sorted(
        _sha256_hex("|".join([
            e["id"],
            (e.get("recipient_address") or "").strip().lower(),
            str(e.get("amount") or "").strip(),
        ]))
        for e in entries
    )
    return _sha256_hex("".join(leaves))


def compute_tx_refs_hash(tx_hashes: Iterable[str]) -> str:
    """Order-independent hash of the transactions that executed a run."""
    normalized = sorted(h.strip().lower() for h in tx_hashes if h)
    return _sha256_hex("|".join(normalized))
