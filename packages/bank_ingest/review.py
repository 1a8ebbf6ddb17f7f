# ruff: noqa: I001
"""Reviewer operations on pending transactions.

Single-item functions take an open ``session`` and only flush; the caller's
``session_scope`` decides commit/rollback. The ``bulk_*`` helpers open one
scope per item so a failing item never rolls back its neighbours.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import BankTransaction, PendingTransaction, Property, Transaction
from .decide import ClassificationDecider
from .errors import ApprovalError, BankIngestError, NotFoundError
from .logging_setup import get_logger
from .models import ClassificationFields, minor_to_major
from .persistence import create_ledger_transaction
from .taxonomy import TRANSACTION_TYPES

_logger = get_logger("bank_ingest.review")

type ReviewStatus = Literal["pending", "reviewed", "all"]


@dataclass(frozen=True, slots=True)
class PendingItem:
    """Pending row joined with the bank transaction it came from."""

    id: int
    bank_transaction_id: int
    bank_account_id: int
    external_id: str
    property_id: int | None
    transaction_type: str | None
    category: str | None
    transaction_date: datetime
    description: str
    amount: Decimal
    currency: str
    counterparty_name: str | None
    merchant: str | None
    reviewed_at: datetime | None
    reviewed_by: str | None


@dataclass(slots=True)
class BulkResult:
    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)


class PendingUpdate(BaseModel):
    """Reviewer edits; only the fields explicitly passed are applied."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    property_id: int | None = None
    transaction_type: str | None = None
    category: str | None = None

    @field_validator("transaction_type")
    @classmethod
    def _known_type(cls, v: str | None) -> str | None:
        if v is not None and v not in TRANSACTION_TYPES:
            raise ValueError(f"type must be one of {', '.join(TRANSACTION_TYPES)}")
        return v


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_item(pending: PendingTransaction, bank_tx: BankTransaction) -> PendingItem:
    return PendingItem(
        id=pending.id,
        bank_transaction_id=bank_tx.id,
        bank_account_id=bank_tx.bank_account_id,
        external_id=bank_tx.external_id,
        property_id=pending.property_id,
        transaction_type=pending.type,
        category=pending.category,
        transaction_date=pending.transaction_date,
        description=pending.description,
        amount=minor_to_major(bank_tx.amount_minor, bank_tx.currency),
        currency=bank_tx.currency,
        counterparty_name=bank_tx.counterparty_name,
        merchant=bank_tx.merchant,
        reviewed_at=pending.reviewed_at,
        reviewed_by=pending.reviewed_by,
    )


def list_pending(
    session: Session,
    *,
    bank_account_id: int | None = None,
    review_status: ReviewStatus = "pending",
    search: str | None = None,
) -> list[PendingItem]:
    """Return pending items, newest transaction first.

    ``search`` is a case-insensitive substring match on the description.
    """

    stmt = select(PendingTransaction, BankTransaction).join(
        BankTransaction, BankTransaction.id == PendingTransaction.bank_transaction_id
    )
    if review_status == "pending":
        stmt = stmt.where(PendingTransaction.reviewed_at.is_(None))
    elif review_status == "reviewed":
        stmt = stmt.where(PendingTransaction.reviewed_at.is_not(None))
    if bank_account_id is not None:
        stmt = stmt.where(BankTransaction.bank_account_id == bank_account_id)
    if search and search.strip():
        needle = f"%{search.strip().lower()}%"
        stmt = stmt.where(func.lower(PendingTransaction.description).like(needle))
    stmt = stmt.order_by(PendingTransaction.transaction_date.desc(), PendingTransaction.id.desc())
    return [_to_item(p, b) for p, b in session.execute(stmt).all()]


def count_unreviewed(session: Session, *, bank_account_id: int | None = None) -> int:
    stmt = select(func.count(PendingTransaction.id)).where(
        PendingTransaction.reviewed_at.is_(None)
    )
    if bank_account_id is not None:
        stmt = stmt.join(
            BankTransaction, BankTransaction.id == PendingTransaction.bank_transaction_id
        ).where(BankTransaction.bank_account_id == bank_account_id)
    return int(session.execute(stmt).scalar_one())


def _get_unreviewed(session: Session, pending_id: int) -> PendingTransaction:
    pending = session.get(PendingTransaction, pending_id)
    if pending is None:
        raise NotFoundError("pending transaction", pending_id)
    if pending.reviewed_at is not None:
        raise ApprovalError(f"pending transaction {pending_id} has already been reviewed")
    return pending


def update_pending_fields(
    session: Session, pending_id: int, **changes: Any
) -> PendingTransaction:
    """Apply reviewer edits to ``property_id``, ``transaction_type`` and/or ``category``.

    Passing ``None`` clears a field. Raises :class:`NotFoundError` for an unknown
    pending item or property and :class:`ApprovalError` for an unknown type.
    """

    try:
        update = PendingUpdate.model_validate(changes)
    except ValidationError as exc:
        raise ApprovalError(f"invalid pending update: {exc}") from exc

    pending = _get_unreviewed(session, pending_id)
    if update.property_id is not None and session.get(Property, update.property_id) is None:
        raise NotFoundError("property", update.property_id)

    for name in update.model_fields_set:
        column = "type" if name == "transaction_type" else name
        setattr(pending, column, getattr(update, name))
    session.flush()
    _logger.debug(
        "review:updated pending_id=%s fields=%s", pending_id, sorted(update.model_fields_set)
    )
    return pending


def approve_pending(session: Session, pending_id: int, *, reviewed_by: str) -> Transaction:
    """Post a reviewed pending item as a :class:`Transaction`.

    The pending row is kept and stamped with ``reviewed_at``/``reviewed_by``;
    the bank transaction's link moves to the new transaction.
    """

    pending = _get_unreviewed(session, pending_id)
    fields = ClassificationFields(
        property_id=pending.property_id,
        transaction_type=pending.type,
        category=pending.category,
    )
    problems = ClassificationDecider(session).validation_errors(fields)
    if problems:
        detail = "; ".join(problems)
        raise ApprovalError(f"cannot approve pending transaction {pending_id}: {detail}")

    bank_tx = session.get(BankTransaction, pending.bank_transaction_id)
    if bank_tx is None:
        raise NotFoundError("bank transaction", pending.bank_transaction_id)

    tx = create_ledger_transaction(session, bank_tx, fields)
    pending.reviewed_at = _utcnow()
    pending.reviewed_by = reviewed_by
    session.flush()
    _logger.info(
        "review:approved pending_id=%s transaction_id=%s reviewed_by=%s",
        pending_id,
        tx.id,
        reviewed_by,
    )
    return tx


def reject_pending(session: Session, pending_id: int) -> BankTransaction | None:
    """Discard a pending item; the bank transaction stays, marked rejected."""

    pending = _get_unreviewed(session, pending_id)
    bank_tx = session.get(BankTransaction, pending.bank_transaction_id)
    if bank_tx is not None:
        bank_tx.pending_transaction_id = None
        bank_tx.rejected_at = _utcnow()
        session.flush()
    session.delete(pending)
    session.flush()
    _logger.info("review:rejected pending_id=%s", pending_id)
    return bank_tx


def _run_bulk(pending_ids: Iterable[int], action, *, database_url: str | None) -> BulkResult:
    result = BulkResult()
    for pending_id in pending_ids:
        try:
            with session_scope(database_url=database_url) as session:
                action(session, pending_id)
        except BankIngestError as exc:
            result.failed[pending_id] = str(exc)
            continue
        result.succeeded.append(pending_id)
    return result


def bulk_update_pending(
    pending_ids: Iterable[int], *, database_url: str | None = None, **changes: Any
) -> BulkResult:
    return _run_bulk(
        pending_ids,
        lambda s, pid: update_pending_fields(s, pid, **changes),
        database_url=database_url,
    )


def bulk_approve(
    pending_ids: Iterable[int], *, reviewed_by: str, database_url: str | None = None
) -> BulkResult:
    return _run_bulk(
        pending_ids,
        lambda s, pid: approve_pending(s, pid, reviewed_by=reviewed_by),
        database_url=database_url,
    )


def bulk_reject(pending_ids: Iterable[int], *, database_url: str | None = None) -> BulkResult:
    return _run_bulk(pending_ids, reject_pending, database_url=database_url)


__all__ = [
    "PendingItem",
    "BulkResult",
    "PendingUpdate",
    "list_pending",
    "count_unreviewed",
    "update_pending_fields",
    "bulk_update_pending",
    "approve_pending",
    "bulk_approve",
    "reject_pending",
    "bulk_reject",
]
