# tests/test_ledger.py
import hashlib
import itertools
import threading
import time
from pathlib import Path

import pytest

from payledger.core.errors import (
    AlreadyInitialized,
    DuplicateClaim,
    DuplicateReceipt,
    InvalidCommitment,
    InvalidNonce,
    LedgerNotInitialized,
    NonceReused,
    Unauthorized,
)
from payledger.core.types import ReceiptStatus
from payledger.storage import MemoryStorage, SQLiteStorage
from payledger.store import PayrollLedger, ReceiptPolicy

OWNER = "owner.near"
BACKEND = "backend.near"


def commitment_for(label: str) -> bytes:
    return hashlib.sha256(label.encode("utf-8")).digest()


def fake_clock(start: int = 1_700_000_000_000_000_000):
    counter = itertools.count(start, 1_000)
    return lambda: next(counter)


@pytest.fixture
def open_ledger() -> PayrollLedger:
    """Unrestricted ledger: anyone may write."""
    return PayrollLedger.create(MemoryStorage(), OWNER, allowed_caller="", clock=fake_clock())


@pytest.fixture
def restricted_ledger() -> PayrollLedger:
    return PayrollLedger.create(MemoryStorage(), OWNER, allowed_caller="alice", clock=fake_clock())


def receipt_args(payroll_id="p1", authorizer_id="auth1", nonce=1, **overrides):
    args = dict(
        payroll_id=payroll_id,
        batch_hash="bh",
        authorizer_id=authorizer_id,
        nonce=nonce,
        executor_id="exec1",
        status=ReceiptStatus.SUCCESS,
        tx_refs_hash="th1",
    )
    args.update(overrides)
    return args


# ── construction / access ─────────────────────────────────────────────────

def test_create_binds_owner_and_normalizes_empty_caller(open_ledger):
    assert open_ledger.owner_id == OWNER
    assert open_ledger.allowed_caller is None
    assert open_ledger.policy is ReceiptPolicy.STRICT


def test_create_requires_creator():
    with pytest.raises(ValueError):
        PayrollLedger.create(MemoryStorage(), "")


def test_create_is_one_time():
    storage = MemoryStorage()
    PayrollLedger.create(storage, OWNER)
    with pytest.raises(AlreadyInitialized):
        PayrollLedger.create(storage, "mallory")
    assert PayrollLedger.open(storage).owner_id == OWNER


def test_open_uninitialized_storage_fails():
    with pytest.raises(LedgerNotInitialized):
        PayrollLedger.open(MemoryStorage())


def test_unauthorized_writes_change_nothing(restricted_ledger):
    with pytest.raises(Unauthorized):
        restricted_ledger.record_payment("bob", "c1", "e1", commitment_for("c1"))
    with pytest.raises(Unauthorized):
        restricted_ledger.record_receipt("bob", **receipt_args())

    assert restricted_ledger.get_payment("c1") is None
    assert restricted_ledger.get_receipt("p1") is None
    assert not restricted_ledger.is_nonce_used("auth1", 1)


def test_allowed_caller_can_write(restricted_ledger):
    restricted_ledger.record_payment("alice", "c1", "e1", commitment_for("c1"))
    restricted_ledger.record_receipt("alice", **receipt_args())
    assert restricted_ledger.get_payment("c1") is not None
    assert restricted_ledger.get_receipt("p1") is not None


def test_owner_is_not_implicitly_allowed(restricted_ledger):
    with pytest.raises(Unauthorized):
        restricted_ledger.record_payment(OWNER, "c1", "e1", commitment_for("c1"))


def test_set_allowed_caller_owner_only(restricted_ledger):
    for intruder in ("alice", "bob", ""):
        with pytest.raises(Unauthorized, match="owner"):
            restricted_ledger.set_allowed_caller(intruder, intruder or "x")
    assert restricted_ledger.allowed_caller == "alice"


def test_set_allowed_caller_rotates_and_clears(restricted_ledger):
    restricted_ledger.set_allowed_caller(OWNER, "bob")
    assert restricted_ledger.allowed_caller == "bob"

    with pytest.raises(Unauthorized):
        restricted_ledger.record_payment("alice", "c1", "e1", commitment_for("c1"))
    restricted_ledger.record_payment("bob", "c1", "e1", commitment_for("c1"))

    restricted_ledger.set_allowed_caller(OWNER, None)
    assert restricted_ledger.allowed_caller is None
    restricted_ledger.record_payment("anyone", "c2", "e2", commitment_for("c2"))

    # idempotent
    restricted_ledger.set_allowed_caller(OWNER, "")
    restricted_ledger.set_allowed_caller(OWNER, "")
    assert restricted_ledger.allowed_caller is None


# ── attestations ──────────────────────────────────────────────────────────

def test_record_then_get_payment(open_ledger):
    digest = commitment_for("c1")
    open_ledger.record_payment("backend", "c1", "e1", digest)

    att = open_ledger.get_payment("c1")
    assert att.claim_id == "c1"
    assert att.execution_ref == "e1"
    assert att.commitment == digest
    assert att.timestamp_nanos > 0


def test_commitment_accepts_byte_list(open_ledger):
    digest = commitment_for("c1")
    open_ledger.record_payment("backend", "c1", "e1", list(digest))
    assert open_ledger.get_payment("c1").commitment == digest


def test_duplicate_claim_keeps_first_record(open_ledger):
    open_ledger.record_payment("backend", "c1", "e1", commitment_for("first"))
    with pytest.raises(DuplicateClaim):
        open_ledger.record_payment("backend", "c1", "e2", commitment_for("second"))

    att = open_ledger.get_payment("c1")
    assert att.execution_ref == "e1"
    assert att.commitment == commitment_for("first")


@pytest.mark.parametrize("bad", [
    b"",
    b"\x00" * 31,
    b"\x00" * 33,
    "a" * 32,
    32,
    None,
    [256] * 32,
])
def test_invalid_commitment_leaves_store_unchanged(open_ledger, bad):
    with pytest.raises(InvalidCommitment):
        open_ledger.record_payment("backend", "c1", "e1", bad)
    assert open_ledger.get_payment("c1") is None


def test_invalid_commitment_is_a_value_error(open_ledger):
    with pytest.raises(ValueError):
        open_ledger.record_payment("backend", "c1", "e1", b"short")


def test_get_payment_unknown_claim(open_ledger):
    assert open_ledger.get_payment("nope") is None


# ── receipts ──────────────────────────────────────────────────────────────

def test_end_to_end_receipt_and_nonce_reuse(open_ledger):
    open_ledger.record_receipt("anyone", "p1", "bh", "auth1", 1, "exec1", "success", "th1")

    rec = open_ledger.get_receipt("p1")
    assert rec.payroll_id == "p1"
    assert rec.batch_hash == "bh"
    assert rec.authorizer_id == "auth1"
    assert rec.nonce == 1
    assert rec.executor_id == "exec1"
    assert rec.status == "success"
    assert rec.tx_refs_hash == "th1"
    assert rec.timestamp_nanos > 0

    with pytest.raises(NonceReused):
        open_ledger.record_receipt("anyone", "p2", "bh2", "auth1", 1, "exec1", "success", "th2")
    assert open_ledger.get_receipt("p2") is None


def test_is_nonce_used_transitions_once(open_ledger):
    assert open_ledger.is_nonce_used("auth1", 7) is False
    open_ledger.record_receipt("x", **receipt_args(nonce=7))
    assert open_ledger.is_nonce_used("auth1", 7) is True
    # other authorizer / other nonce untouched
    assert open_ledger.is_nonce_used("auth2", 7) is False
    assert open_ledger.is_nonce_used("auth1", 8) is False


def test_same_nonce_reused_for_same_payroll_is_nonce_error(open_ledger):
    open_ledger.record_receipt("x", **receipt_args())
    with pytest.raises(NonceReused):
        open_ledger.record_receipt("x", **receipt_args())


def test_strict_duplicate_payroll_with_fresh_nonce(open_ledger):
    open_ledger.record_receipt("x", **receipt_args(nonce=1))
    with pytest.raises(DuplicateReceipt):
        open_ledger.record_receipt("x", **receipt_args(nonce=2, status="failed"))

    # failed call burned nothing and changed nothing
    assert not open_ledger.is_nonce_used("auth1", 2)
    assert open_ledger.get_receipt("p1").status == "success"


def test_nonce_is_per_authorizer(open_ledger):
    open_ledger.record_receipt("x", **receipt_args(payroll_id="p1", authorizer_id="auth1", nonce=1))
    open_ledger.record_receipt("x", **receipt_args(payroll_id="p2", authorizer_id="auth2", nonce=1))
    assert open_ledger.get_receipt("p2").authorizer_id == "auth2"


@pytest.mark.parametrize("bad_nonce", [-1, 2**64, "1", 1.0, True, None])
def test_invalid_nonce_rejected(open_ledger, bad_nonce):
    with pytest.raises(InvalidNonce):
        open_ledger.record_receipt("x", **receipt_args(nonce=bad_nonce))
    assert open_ledger.get_receipt("p1") is None


def test_u64_bounds_accepted(open_ledger):
    open_ledger.record_receipt("x", **receipt_args(payroll_id="low", nonce=0))
    open_ledger.record_receipt("x", **receipt_args(payroll_id="high", nonce=2**64 - 1))
    assert open_ledger.get_receipt("high").nonce == 2**64 - 1


def test_free_text_status_is_stored(open_ledger):
    open_ledger.record_receipt("x", **receipt_args(status="cancelled"))
    assert open_ledger.get_receipt("p1").status == "cancelled"


def test_timestamps_come_from_clock():
    ledger = PayrollLedger.create(MemoryStorage(), OWNER, clock=lambda: 42)
    ledger.record_payment("x", "c1", "e1", commitment_for("c1"))
    ledger.record_receipt("x", **receipt_args())
    assert ledger.get_payment("c1").timestamp_nanos == 42
    assert ledger.get_receipt("p1").timestamp_nanos == 42


# ── idempotent policy ─────────────────────────────────────────────────────

@pytest.fixture
def idempotent_ledger() -> PayrollLedger:
    return PayrollLedger.create(
        MemoryStorage(), OWNER, policy=ReceiptPolicy.IDEMPOTENT, clock=fake_clock()
    )


def test_idempotent_replay_of_same_run_is_noop(idempotent_ledger):
    idempotent_ledger.record_receipt("x", **receipt_args())
    first = idempotent_ledger.get_receipt("p1")

    idempotent_ledger.record_receipt("x", **receipt_args(status="failed"))
    assert idempotent_ledger.get_receipt("p1") == first


def test_idempotent_duplicate_payroll_does_not_burn_new_nonce(idempotent_ledger):
    idempotent_ledger.record_receipt("x", **receipt_args(nonce=1))
    idempotent_ledger.record_receipt("x", **receipt_args(nonce=2))
    assert idempotent_ledger.get_receipt("p1").nonce == 1
    assert not idempotent_ledger.is_nonce_used("auth1", 2)


def test_idempotent_still_rejects_nonce_reuse_across_payrolls(idempotent_ledger):
    idempotent_ledger.record_receipt("x", **receipt_args(payroll_id="p1", nonce=1))
    idempotent_ledger.record_receipt("x", **receipt_args(payroll_id="p2", nonce=2))
    # p2 exists, but its nonce is not 1: nonce 1 belongs to p1
    with pytest.raises(NonceReused):
        idempotent_ledger.record_receipt("x", **receipt_args(payroll_id="p2", nonce=1))
    with pytest.raises(NonceReused):
        idempotent_ledger.record_receipt("x", **receipt_args(payroll_id="p3", nonce=1))


def test_policy_persists_on_reopen(tmp_path: Path):
    db = tmp_path / "ledger.db"
    PayrollLedger.create(SQLiteStorage(db), OWNER, policy="idempotent").close()
    with PayrollLedger.open(SQLiteStorage(db)) as ledger:
        assert ledger.policy is ReceiptPolicy.IDEMPOTENT


# ── persistence / concurrency ─────────────────────────────────────────────

def test_state_survives_reopen(tmp_path: Path):
    db = tmp_path / "ledger.db"
    with PayrollLedger.create(SQLiteStorage(db), OWNER, allowed_caller=BACKEND) as ledger:
        ledger.record_payment(BACKEND, "c1", "e1", commitment_for("c1"))
        ledger.record_receipt(BACKEND, **receipt_args())

    with PayrollLedger.open(SQLiteStorage(db)) as reopened:
        assert reopened.owner_id == OWNER
        assert reopened.allowed_caller == BACKEND
        assert reopened.get_payment("c1").commitment == commitment_for("c1")
        assert reopened.is_nonce_used("auth1", 1)
        with pytest.raises(NonceReused):
            reopened.record_receipt(BACKEND, **receipt_args(payroll_id="p9"))
        assert [r.payroll_id for r in reopened.iter_receipts()] == ["p1"]
        assert [p.claim_id for p in reopened.iter_payments()] == ["c1"]


def test_concurrent_nonce_spend_has_single_winner(open_ledger):
    outcomes = []
    barrier = threading.Barrier(8)

    def worker(i: int):
        barrier.wait()
        try:
            open_ledger.record_receipt("x", **receipt_args(payroll_id=f"p{i}", nonce=99))
            outcomes.append("ok")
        except NonceReused:
            outcomes.append("reused")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("reused") == 7
    assert len(list(open_ledger.iter_receipts())) == 1


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_two_handles_over_one_storage_spend_nonce_once(backend, tmp_path: Path):
    storage = MemoryStorage() if backend == "memory" else SQLiteStorage(tmp_path / "shared.db")
    PayrollLedger.create(storage, OWNER)

    def slow_clock():
        time.sleep(0.01)
        return time.time_ns()

    handles = [PayrollLedger.open(storage, clock=slow_clock) for _ in range(4)]
    outcomes = []
    barrier = threading.Barrier(len(handles))

    def worker(i: int):
        barrier.wait()
        try:
            handles[i].record_receipt("x", **receipt_args(payroll_id=f"p{i}", nonce=7))
            outcomes.append("ok")
        except NonceReused:
            outcomes.append("reused")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(handles))]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert outcomes.count("ok") == 1
        assert outcomes.count("reused") == 3
        assert len(list(handles[0].iter_receipts())) == 1
        assert handles[0].storage.count("nonces") == 1
    finally:
        storage.close()
