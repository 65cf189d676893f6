"""
The ledger aggregate: access policy, attestation store, receipt store and nonce ledger.
"""

from .access import AccessPolicy
from .ledger import PayrollLedger, ReceiptPolicy

__all__ = ["AccessPolicy", "PayrollLedger", "ReceiptPolicy"]
