"""
CLI for recording and auditing payment attestations and payroll receipts.
"""

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from payledger.config import get_caller, get_db_path, get_log_level, use_json_logs
from payledger.core.canon import canonical_json_str
from payledger.core.encoding import hex_decode, hex_encode
from payledger.core.errors import LedgerError
from payledger.core.types import ReceiptStatus
from payledger.logging_config import configure_logging
from payledger.storage import SQLiteStorage
from payledger.store import PayrollLedger, ReceiptPolicy
from payledger.store.ledger import NONCES, PAYMENTS, RECEIPTS
from payledger.verify import (
    ClaimVerifier,
    PaymentDisclosure,
    compute_batch_hash,
    compute_tx_refs_hash,
    generate_nonce_hex,
)

app = typer.Typer(
    name="payledger",
    help="Record and audit privacy-preserving payment attestations and payroll receipts",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def _resolve_db(ctx: typer.Context, db: Optional[Path]) -> Path:
    return get_db_path(db or (ctx.obj or {}).get("db"))


def _open_ledger(ctx: typer.Context, db: Optional[Path]) -> PayrollLedger:
    db_path = _resolve_db(ctx, db)

    if not db_path.exists():
        console.print(f"[red]Database file not found: {db_path}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Create a ledger: payledger init --creator <owner-id>")
        console.print("  • Or point at an existing one: export LEDGER_DB_PATH=/path/to/ledger.db")
        raise typer.Exit(1)

    storage = SQLiteStorage(db_path)
    try:
        return PayrollLedger.open(storage)
    except LedgerError as e:
        storage.close()
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)


def _require_caller(caller: Optional[str]) -> str:
    resolved = get_caller(caller)
    if not resolved:
        console.print("[red]No caller identity: pass --caller or set LEDGER_CALLER[/]")
        raise typer.Exit(1)
    return resolved


def _fail(e: LedgerError) -> None:
    console.print(f"[red]✗ {type(e).__name__}: {e}[/]")
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Path to SQLite database (overrides LEDGER_DB_PATH env var)",
    ),
):
    """Manage the payment attestation and payroll receipt ledger."""
    ctx.obj = {"db": db}
    configure_logging(get_log_level(), json_format=use_json_logs())


@app.command()
def init(
    ctx: typer.Context,
    creator: Optional[str] = typer.Option(None, "--creator", help="Owner identity (defaults to the caller)"),
    allowed_caller: str = typer.Option("", "--allowed-caller", help="Only identity allowed to write; empty = anyone"),
    policy: ReceiptPolicy = typer.Option(ReceiptPolicy.STRICT, "--policy", help="Duplicate payroll_id handling"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Create a new ledger. The creator becomes the permanent owner."""
    owner = _require_caller(creator)
    db_path = _resolve_db(ctx, db)

    storage = SQLiteStorage(db_path)
    try:
        PayrollLedger.create(storage, owner, allowed_caller, policy)
    except LedgerError as e:
        _fail(e)
    finally:
        storage.close()

    console.print(f"[green]✓ Ledger created at {db_path}[/]")
    console.print(f"  owner: {owner}")
    console.print(f"  allowed caller: {allowed_caller or '(anyone)'}")
    console.print(f"  receipt policy: {policy.value}")


@app.command()
def info(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Show ledger ownership, access policy and record counts."""
    with _open_ledger(ctx, db) as ledger:
        table = Table(title="Ledger")
        table.add_column("Field")
        table.add_column("Value")
        table.add_row("Owner", ledger.owner_id)
        table.add_row("Allowed caller", ledger.allowed_caller or "(anyone)")
        table.add_row("Receipt policy", ledger.policy.value)
        table.add_row("Attestations", str(ledger.storage.count(PAYMENTS)))
        table.add_row("Receipts", str(ledger.storage.count(RECEIPTS)))
        table.add_row("Spent nonces", str(ledger.storage.count(NONCES)))
        console.print(table)


@app.command("record-payment")
def record_payment(
    ctx: typer.Context,
    claim_id: str = typer.Argument(..., help="Claim identifier (unique)"),
    execution_ref: str = typer.Argument(..., help="Off-chain execution reference"),
    commitment: str = typer.Option(..., "--commitment", "-c", help="32-byte commitment as hex"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Invoking identity (or LEDGER_CALLER)"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Record a payment attestation (commitment only)."""
    who = _require_caller(caller)
    try:
        digest = hex_decode(commitment)
    except ValueError as e:
        console.print(f"[red]✗ InvalidCommitment: {e}[/]")
        raise typer.Exit(1)

    with _open_ledger(ctx, db) as ledger:
        try:
            ledger.record_payment(who, claim_id, execution_ref, digest)
        except LedgerError as e:
            _fail(e)

    console.print(f"[green]✓ Attestation recorded for claim '{claim_id}'[/]")


@app.command()
def payment(
    ctx: typer.Context,
    claim_id: str = typer.Argument(..., help="Claim identifier"),
    as_json: bool = typer.Option(False, "--json", help="Print canonical JSON"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Show the attestation stored for a claim."""
    with _open_ledger(ctx, db) as ledger:
        attestation = ledger.get_payment(claim_id)

    if attestation is None:
        console.print(f"[yellow]No attestation found for claim '{claim_id}'[/]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(canonical_json_str(attestation.to_dict()))
        return

    console.print(f"[bold cyan]claim {attestation.claim_id}[/]")
    console.print(f"  execution_ref: {attestation.execution_ref}")
    console.print(f"  commitment:    {hex_encode(attestation.commitment)}")
    console.print(f"  timestamp:     {attestation.timestamp_nanos}")


@app.command("set-allowed-caller")
def set_allowed_caller(
    ctx: typer.Context,
    account_id: Optional[str] = typer.Argument(None, help="New allowed caller; omit to allow anyone"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Invoking identity (must be the owner)"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Replace (or clear) the allowed caller. Owner only."""
    who = _require_caller(caller)
    with _open_ledger(ctx, db) as ledger:
        try:
            ledger.set_allowed_caller(who, account_id)
        except LedgerError as e:
            _fail(e)

    console.print(f"[green]✓ Allowed caller set to {account_id or '(anyone)'}[/]")


@app.command("record-receipt")
def record_receipt(
    ctx: typer.Context,
    payroll_id: str = typer.Argument(..., help="Payroll run identifier"),
    batch_hash: str = typer.Option(..., "--batch-hash", help="Digest of the payment batch"),
    authorizer: str = typer.Option(..., "--authorizer", help="Identity that approved the run"),
    nonce: int = typer.Option(..., "--nonce", min=0, help="One-time authorization nonce (u64)"),
    executor: str = typer.Option(..., "--executor", help="Identity that executed the run"),
    status: str = typer.Option(ReceiptStatus.SUCCESS, "--status", help="success | partial | failed"),
    tx_refs_hash: str = typer.Option(..., "--tx-refs-hash", help="Digest of transaction references"),
    caller: Optional[str] = typer.Option(None, "--caller", help="Invoking identity (or LEDGER_CALLER)"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Record a payroll run receipt and burn its authorizer nonce."""
    who = _require_caller(caller)
    if status not in ReceiptStatus.ALL:
        console.print(f"[yellow]Warning: non-standard status '{status}' (expected success, partial or failed)[/]")

    with _open_ledger(ctx, db) as ledger:
        try:
            ledger.record_receipt(who, payroll_id, batch_hash, authorizer, nonce, executor, status, tx_refs_hash)
        except LedgerError as e:
            _fail(e)

    console.print(f"[green]✓ Receipt recorded for payroll '{payroll_id}'[/]")


@app.command()
def receipt(
    ctx: typer.Context,
    payroll_id: str = typer.Argument(..., help="Payroll run identifier"),
    as_json: bool = typer.Option(False, "--json", help="Print canonical JSON"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Show the receipt stored for a payroll run."""
    with _open_ledger(ctx, db) as ledger:
        record = ledger.get_receipt(payroll_id)

    if record is None:
        console.print(f"[yellow]No receipt found for payroll '{payroll_id}'[/]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(canonical_json_str(record.to_dict()))
        return

    table = Table(title=f"Receipt {record.payroll_id}")
    table.add_column("Field")
    table.add_column("Value")
    for name, value in record.to_dict().items():
        table.add_row(name, str(value))
    console.print(table)


@app.command("nonce-used")
def nonce_used(
    ctx: typer.Context,
    authorizer: str = typer.Argument(..., help="Authorizer identity"),
    nonce: int = typer.Argument(..., min=0, help="Nonce to check"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Check whether an authorizer nonce has been spent. Exit code 0 = unused, 3 = used."""
    with _open_ledger(ctx, db) as ledger:
        used = ledger.is_nonce_used(authorizer, nonce)

    if used:
        console.print(f"[yellow]Nonce {nonce} already used by '{authorizer}'[/]")
        raise typer.Exit(3)
    console.print(f"[green]Nonce {nonce} is unused for '{authorizer}'[/]")


@app.command()
def commit(
    claim_id: str = typer.Option(..., "--claim-id"),
    execution_ref: str = typer.Option(..., "--execution-ref"),
    amount: str = typer.Option(..., "--amount", help="Decimal amount string"),
    token_symbol: str = typer.Option(..., "--token-symbol"),
    token_chain: str = typer.Option(..., "--token-chain"),
    recipient: str = typer.Option("", "--recipient", help="Recipient id (empty if none)"),
    nonce_hex: Optional[str] = typer.Option(None, "--nonce-hex", help="Attestation nonce; generated if omitted"),
):
    """Compute a payment commitment locally. Nothing is written to the ledger."""
    disclosure = PaymentDisclosure(
        claim_id=claim_id,
        execution_ref=execution_ref,
        amount=amount,
        token_symbol=token_symbol,
        token_chain=token_chain,
        recipient_id=recipient,
        nonce_hex=nonce_hex or generate_nonce_hex(),
    )
    typer.echo(f"commitment: {hex_encode(disclosure.commitment())}")
    typer.echo(f"nonce_hex:  {disclosure.nonce_hex}")
    if nonce_hex is None:
        console.print("[yellow]Store nonce_hex with the private payment record. Verification needs it.[/]")


@app.command("verify-claim")
def verify_claim(
    ctx: typer.Context,
    claim_id: str = typer.Argument(..., help="Claim to verify"),
    execution_ref: str = typer.Option(..., "--execution-ref"),
    amount: str = typer.Option(..., "--amount"),
    token_symbol: str = typer.Option(..., "--token-symbol"),
    token_chain: str = typer.Option(..., "--token-chain"),
    recipient: str = typer.Option("", "--recipient"),
    nonce_hex: str = typer.Option(..., "--nonce-hex"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Verify disclosed payment details against the stored commitment."""
    disclosure = PaymentDisclosure(
        claim_id=claim_id,
        execution_ref=execution_ref,
        amount=amount,
        token_symbol=token_symbol,
        token_chain=token_chain,
        recipient_id=recipient,
        nonce_hex=nonce_hex,
    )

    with _open_ledger(ctx, db) as ledger:
        result = ClaimVerifier().verify_from_ledger(ledger, disclosure)

    if result.is_valid:
        console.print(f"[green]✓ Claim '{claim_id}' is verified[/]")
        console.print(f"  {result.message}")
        return

    console.print(f"[red]✗ Verification failed for claim '{claim_id}'[/]")
    for failure in result.failures:
        console.print(f"  • {failure.category}: {failure.message}")
    raise typer.Exit(1)


@app.command("batch-hash")
def batch_hash(
    entries_file: Path = typer.Argument(..., help="JSON list of {id, recipient_address, amount}"),
):
    """Compute the batch hash for a payroll run."""
    try:
        entries = json.loads(entries_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Failed to read entries: {e}[/]")
        raise typer.Exit(1)

    if not isinstance(entries, list):
        console.print("[red]Entries file must contain a JSON list[/]")
        raise typer.Exit(1)

    typer.echo(compute_batch_hash(entries))


@app.command("tx-refs-hash")
def tx_refs_hash(
    tx_hashes: List[str] = typer.Argument(..., help="Transaction hashes of the run"),
):
    """Compute the transaction-references hash for a receipt."""
    typer.echo(compute_tx_refs_hash(tx_hashes))


@app.command()
def export(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: payledger-export.jsonl)"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Export attestations and receipts as JSONL (one canonical record per line)."""
    with _open_ledger(ctx, db) as ledger:
        payments = list(ledger.iter_payments())
        receipts = list(ledger.iter_receipts())

    out_path = output or Path("payledger-export.jsonl")
    with open(out_path, "w", encoding="utf-8") as f:
        for attestation in payments:
            f.write(canonical_json_str({"type": "payment", **attestation.to_dict()}))
            f.write("\n")
        for record in receipts:
            f.write(canonical_json_str({"type": "receipt", **record.to_dict()}))
            f.write("\n")

    console.print(f"[green]Exported {len(payments)} attestations and {len(receipts)} receipts to {out_path}[/]")
    console.print("Format: JSONL — one canonical record per line")


if __name__ == "__main__":
    app()
