import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional

from payledger.core.errors import (
    AlreadyInitialized,
    DuplicateClaim,
    DuplicateReceipt,
    InvalidCommitment,
    InvalidNonce,
    LedgerError,
    LedgerNotInitialized,
    NonceReused,
)
from payledger.core.types import (
    COMMITMENT_SIZE,
    MAX_NONCE,
    PaymentAttestation,
    ReceiptRecord,
    nonce_key,
)
from payledger.storage import StorageBackend
from payledger.store.access import AccessPolicy

logger = logging.getLogger(__name__)

META = "meta"
PAYMENTS = "payments"
RECEIPTS = "receipts"
NONCES = "nonces"

_STATE_KEY = "state"


class ReceiptPolicy(str, Enum):
    """What a second record_receipt for an existing payroll_id does."""
    STRICT = "strict"           # raise DuplicateReceipt
    IDEMPOTENT = "idempotent"   # return without touching state


def _coerce_commitment(value) -> bytes:
    # str and int are rejected outright: bytes("..") needs an encoding and
    # bytes(32) would silently build 32 zero bytes.
    if value is None or isinstance(value, (str, int)):
        raise InvalidCommitment(
            f"commitment must be {COMMITMENT_SIZE} bytes (e.g. SHA256), got {type(value).__name__}"
        )
    try:
        digest = bytes(value)
    except (TypeError, ValueError) as e:
        raise InvalidCommitment(f"commitment is not a byte sequence: {e}") from e
    if len(digest) != COMMITMENT_SIZE:
        raise InvalidCommitment(
            f"commitment must be {COMMITMENT_SIZE} bytes (e.g. SHA256), got {len(digest)}"
        )
    return digest


def _check_nonce(nonce) -> int:
    if isinstance(nonce, bool) or not isinstance(nonce, int):
        raise InvalidNonce(f"nonce must be an unsigned 64-bit integer, got {type(nonce).__name__}")
    if not 0 <= nonce <= MAX_NONCE:
        raise InvalidNonce(f"nonce out of u64 range: {nonce}")
    return nonce


class PayrollLedger:
    """
    Attestation store + receipt store + nonce ledger behind one access policy.

    Each mutating call takes the invoking identity explicitly, reads the clock
    once, and runs inside a single storage transaction. The transaction is
    exclusive per storage object: checks and writes commit together or not
    at all, and concurrent calls through any handle take turns.
    """

    def __init__(
        self,
        storage: StorageBackend,
        policy: ReceiptPolicy = ReceiptPolicy.STRICT,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.storage = storage
        self.policy = ReceiptPolicy(policy)
        self._clock = clock or time.time_ns

    # ── construction ───────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        storage: StorageBackend,
        creator: str,
        allowed_caller: Optional[str] = None,
        policy: ReceiptPolicy = ReceiptPolicy.STRICT,
        clock: Optional[Callable[[], int]] = None,
    ) -> "PayrollLedger":
        """
        One-time construction. ``creator`` becomes the permanent owner.
        Fails with AlreadyInitialized if the storage already holds a ledger.
        """
        access = AccessPolicy.construct(creator, allowed_caller)
        policy = ReceiptPolicy(policy)

        with storage.transaction():
            if storage.contains(META, _STATE_KEY):
                raise AlreadyInitialized("Ledger already initialized in this storage")
            storage.put(META, _STATE_KEY, {
                **access.to_dict(),
                "receipt_policy": policy.value,
            })

        logger.info(
            "Ledger initialized (owner=%s, restricted=%s, receipt_policy=%s)",
            access.owner_id, access.is_restricted, policy.value,
        )
        return cls(storage, policy=policy, clock=clock)

    @classmethod
    def open(
        cls,
        storage: StorageBackend,
        clock: Optional[Callable[[], int]] = None,
    ) -> "PayrollLedger":
        """Reattach to a ledger previously created in ``storage``."""
        state = storage.get(META, _STATE_KEY)
        if state is None:
            raise LedgerNotInitialized("No ledger found in storage; run create/init first")
        return cls(storage, policy=ReceiptPolicy(state["receipt_policy"]), clock=clock)

    # ── access policy ──────────────────────────────────────────────────────

    def _load_state(self) -> dict:
        state = self.storage.get(META, _STATE_KEY)
        if state is None:
            raise LedgerNotInitialized("No ledger found in storage")
        return state

    def _access(self) -> AccessPolicy:
        return AccessPolicy.from_dict(self._load_state())

    @property
    def owner_id(self) -> str:
        return self._access().owner_id

    @property
    def allowed_caller(self) -> Optional[str]:
        return self._access().allowed_caller

    def set_allowed_caller(self, caller: str, account_id: Optional[str]) -> None:
        """Owner-only. Replaces the allowed caller; None or "" clears it."""
        with self._write("set_allowed_caller"):
            state = self._load_state()
            rotated = AccessPolicy.from_dict(state).rotate(caller, account_id)
            self.storage.put(META, _STATE_KEY, {**state, **rotated.to_dict()})
        logger.info("Allowed caller updated (restricted=%s)", rotated.is_restricted)

    # ── attestations ───────────────────────────────────────────────────────

    def record_payment(self, caller: str, claim_id: str, execution_ref: str, commitment) -> None:
        """
        Store a commitment for ``claim_id``. Only the 32-byte commitment is kept:
        no plaintext amount, token or recipient. A repeat claim_id is rejected.
        """
        with self._write("record_payment"):
            self._access().check_caller(caller, "record payments")
            digest = _coerce_commitment(commitment)
            if self.storage.contains(PAYMENTS, claim_id):
                raise DuplicateClaim(f"Attestation for claim_id '{claim_id}' already exists")

            attestation = PaymentAttestation(
                claim_id=claim_id,
                execution_ref=execution_ref,
                commitment=digest,
                timestamp_nanos=self._now(),
            )
            self.storage.put(PAYMENTS, claim_id, attestation.to_dict())

        logger.info("Attestation recorded for claim %s", claim_id)

    def get_payment(self, claim_id: str) -> Optional[PaymentAttestation]:
        data = self.storage.get(PAYMENTS, claim_id)
        return PaymentAttestation.from_dict(data) if data else None

    def iter_payments(self) -> Iterator[PaymentAttestation]:
        for _, data in self.storage.iter_items(PAYMENTS):
            yield PaymentAttestation.from_dict(data)

    # ── receipts ───────────────────────────────────────────────────────────

    def record_receipt(
        self,
        caller: str,
        payroll_id: str,
        batch_hash: str,
        authorizer_id: str,
        nonce: int,
        executor_id: str,
        status: str,
        tx_refs_hash: str,
    ) -> None:
        """
        Record the outcome of one payroll run and burn ``(authorizer_id, nonce)``.

        The nonce check runs before the payroll_id check under either policy:
        a nonce is never attributable to two payroll ids. Under IDEMPOTENT a
        replay of the stored run (same payroll_id, same nonce) is a no-op.
        """
        with self._write("record_receipt"):
            self._access().check_caller(caller, "record receipts")
            _check_nonce(nonce)
            key = nonce_key(authorizer_id, nonce)

            existing = self.storage.get(RECEIPTS, payroll_id)
            spent = self.storage.get(NONCES, key)

            if spent is not None:
                if (self.policy is ReceiptPolicy.IDEMPOTENT
                        and existing is not None
                        and spent["payroll_id"] == payroll_id):
                    logger.debug("Receipt replay for payroll %s ignored", payroll_id)
                    return
                raise NonceReused(f"Nonce already used for authorizer '{authorizer_id}'")

            if existing is not None:
                if self.policy is ReceiptPolicy.STRICT:
                    raise DuplicateReceipt(f"Receipt for payroll_id '{payroll_id}' already exists")
                logger.debug("Receipt for payroll %s already recorded; no-op", payroll_id)
                return

            receipt = ReceiptRecord(
                payroll_id=payroll_id,
                batch_hash=batch_hash,
                authorizer_id=authorizer_id,
                nonce=nonce,
                executor_id=executor_id,
                status=status,
                tx_refs_hash=tx_refs_hash,
                timestamp_nanos=self._now(),
            )
            self.storage.put(RECEIPTS, payroll_id, receipt.to_dict())
            self.storage.put(NONCES, key, {"payroll_id": payroll_id})

        logger.info("Receipt recorded for payroll %s (status=%s)", payroll_id, status)

    def get_receipt(self, payroll_id: str) -> Optional[ReceiptRecord]:
        data = self.storage.get(RECEIPTS, payroll_id)
        return ReceiptRecord.from_dict(data) if data else None

    def iter_receipts(self) -> Iterator[ReceiptRecord]:
        for _, data in self.storage.iter_items(RECEIPTS):
            yield ReceiptRecord.from_dict(data)

    def is_nonce_used(self, authorizer_id: str, nonce: int) -> bool:
        return self.storage.contains(NONCES, nonce_key(authorizer_id, nonce))

    # ── internals ──────────────────────────────────────────────────────────

    def _now(self) -> int:
        return int(self._clock())

    @contextmanager
    def _write(self, operation: str):
        """Serialize the call and commit its writes atomically; log rejections."""
        # the storage transaction holds the backend's lock, so every handle
        # over the same storage is serialized, not just this one
        try:
            with self.storage.transaction():
                yield
        except LedgerError as e:
            logger.warning("%s rejected: %s", operation, e.kind, extra={"event": e.kind})
            raise

    def close(self) -> None:
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
