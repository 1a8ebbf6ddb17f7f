# ruff: noqa: I001
"""Console interface for ``bank_ingest``.

The root callback loads ``.env`` from the working directory (without
overriding variables already set) and configures logging; commands are thin
wrappers over :mod:`bank_ingest.api`. Failures are printed to stderr and exit
with status 1.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .errors import BankIngestError
from .logging_setup import configure_logging

app = typer.Typer(
    name="bank-ingest",
    no_args_is_help=True,
    add_completion=False,
    help="Import bank transactions, classify them with matching rules and review pending items.",
)
console = Console()
err_console = Console(stderr=True, soft_wrap=True)

DatabaseUrl = Annotated[
    str | None,
    typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var)."),
]


def _fail(message: str) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def _load_records(path: Path) -> list[dict]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise _fail(f"file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise _fail(f"{path} is not valid JSON: {e}") from None
    # Accept either a bare list or a provider envelope {"transactions": [...]}.
    if isinstance(payload, dict):
        payload = payload.get("transactions")
    if not isinstance(payload, list):
        raise _fail(f"{path} must contain a list of transaction records")
    return payload


@app.command("ingest")
def ingest_cmd(
    account_id: Annotated[int, typer.Option("--account-id", help="Internal bank account id.")],
    file: Annotated[
        Path, typer.Option("--file", dir_okay=False, help="JSON file of provider records.")
    ],
    database_url: DatabaseUrl = None,
) -> None:
    """Normalize, de-duplicate, classify and persist a batch of records."""

    from .api import ingest

    records = _load_records(file)
    try:
        result = ingest(records, account_id, database_url=database_url)
    except BankIngestError as e:
        raise _fail(str(e)) from None

    console.print(
        f"processed={result.processed} posted={result.posted} pending={result.pending} "
        f"duplicates={result.duplicates_skipped} errors={len(result.errors)}"
    )
    for err in result.errors:
        err_console.print(f"[yellow]{err.external_id or '<no id>'}[/yellow]: {err.error}")
    if result.errors:
        raise typer.Exit(2)


@app.command("reprocess")
def reprocess_cmd(
    account_id: Annotated[
        int | None,
        typer.Option("--account-id", help="Limit to one account (default: every account)."),
    ] = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Re-run the current rules over unreviewed pending items."""

    from .api import RuleChange, reprocess

    result = reprocess(RuleChange("updated", None, account_id), database_url=database_url)
    console.print(
        f"processed={result.processed} approved={result.approved} failed={result.failed}"
    )


@app.command("seed-default-rules")
def seed_default_rules_cmd(database_url: DatabaseUrl = None) -> None:
    """Create the built-in global rules that are missing."""

    from .api import create_default_rules

    created = create_default_rules(database_url=database_url)
    console.print(f"created {len(created)} default rule(s)")


@app.command("rules")
def rules_cmd(
    account_id: Annotated[int, typer.Option("--account-id", help="Internal bank account id.")],
    database_url: DatabaseUrl = None,
) -> None:
    """List account and global rules in evaluation order."""

    from db.client import session_scope
    from .api import list_rules

    table = Table(title=f"Matching rules for account {account_id}")
    for col in ("id", "scope", "priority", "enabled", "name", "property", "type", "category"):
        table.add_column(col)
    try:
        with session_scope(database_url=database_url) as session:
            for r in list_rules(session, account_id):
                table.add_row(
                    str(r.id),
                    "global" if r.bank_account_id is None else "account",
                    str(r.priority),
                    "yes" if r.enabled else "no",
                    r.name,
                    "" if r.property_id is None else str(r.property_id),
                    r.type or "",
                    r.category or "",
                )
    except BankIngestError as e:
        raise _fail(str(e)) from None
    console.print(table)


@app.command("pending")
def pending_cmd(
    account_id: Annotated[
        int | None, typer.Option("--account-id", help="Only this account's items.")
    ] = None,
    status: Annotated[
        str, typer.Option("--status", help="pending, reviewed or all.")
    ] = "pending",
    search: Annotated[
        str | None, typer.Option("--search", help="Substring of the description.")
    ] = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Show pending transactions awaiting review."""

    from db.client import session_scope
    from .api import list_pending

    if status not in ("pending", "reviewed", "all"):
        raise _fail(f"unknown status {status!r}")

    with session_scope(database_url=database_url) as session:
        items = list_pending(
            session, bank_account_id=account_id, review_status=status, search=search
        )

    table = Table(title=f"Pending transactions ({len(items)})")
    for col in ("id", "date", "account", "amount", "description", "property", "type", "category"):
        table.add_column(col, justify="right" if col == "amount" else "left")
    for it in items:
        table.add_row(
            str(it.id),
            it.transaction_date.strftime("%Y-%m-%d"),
            str(it.bank_account_id),
            f"{it.amount} {it.currency}",
            it.description,
            "" if it.property_id is None else str(it.property_id),
            it.transaction_type or "",
            it.category or "",
        )
    console.print(table)


@app.command("approve")
def approve_cmd(
    pending_id: Annotated[int, typer.Argument(help="Pending transaction id.")],
    reviewed_by: Annotated[str, typer.Option("--reviewed-by", help="Reviewer identifier.")],
    database_url: DatabaseUrl = None,
) -> None:
    """Post a pending item whose property, type and category are set."""

    from db.client import session_scope
    from .api import approve_pending

    try:
        with session_scope(database_url=database_url) as session:
            tx = approve_pending(session, pending_id, reviewed_by=reviewed_by)
            tx_id = tx.id
    except BankIngestError as e:
        raise _fail(str(e)) from None
    console.print(f"[green]approved[/green] pending {pending_id} as transaction {tx_id}")


@app.command("reject")
def reject_cmd(
    pending_id: Annotated[int, typer.Argument(help="Pending transaction id.")],
    database_url: DatabaseUrl = None,
) -> None:
    """Discard a pending item; its bank record is kept as rejected."""

    from db.client import session_scope
    from .api import reject_pending

    try:
        with session_scope(database_url=database_url) as session:
            reject_pending(session, pending_id)
    except BankIngestError as e:
        raise _fail(str(e)) from None
    console.print(f"rejected pending {pending_id}")


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
