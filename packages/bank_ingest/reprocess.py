"""Re-run classification over unreviewed pending items after a rule change.

Scope follows the changed rule: an account rule touches only that account's
pending items; a global rule touches every account's. Each item is handled in
its own atomic unit:

- fully classified and valid → a :class:`Transaction` is created, the bank
  transaction's link is switched to it and the pending row is deleted;
- otherwise → the pending row's three classification fields are overwritten
  with whatever the current rules produce (unmatched fields become ``NULL``).

Items whose processing raises are logged and counted in ``failed``; the rest
of the run continues.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from db.client import session_scope
from db.models.ledger import BankTransaction, PendingTransaction
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .decide import ClassificationDecider
from .logging_setup import get_logger
from .persistence import create_ledger_transaction
from .rules import RuleEngine

_logger = get_logger("bank_ingest.reprocess")

type RuleChangeKind = Literal["created", "updated", "deleted", "reordered"]
type ItemOutcome = Literal["approved", "pending", "invalid", "skipped"]


@dataclass(frozen=True, slots=True)
class RuleChange:
    """What changed: ``bank_account_id`` is ``None`` for a global rule."""

    kind: RuleChangeKind
    rule_id: int | None = None
    bank_account_id: int | None = None

    @property
    def is_global(self) -> bool:
        return self.bank_account_id is None


@dataclass(slots=True)
class ReprocessResult:
    processed: int = 0
    approved: int = 0
    failed: int = 0


def _pending_targets(session: Session, bank_account_id: int | None) -> list[int]:
    stmt = (
        select(PendingTransaction.id)
        .join(BankTransaction, BankTransaction.id == PendingTransaction.bank_transaction_id)
        .where(PendingTransaction.reviewed_at.is_(None))
        .order_by(PendingTransaction.id)
    )
    if bank_account_id is not None:
        stmt = stmt.where(BankTransaction.bank_account_id == bank_account_id)
    return list(session.execute(stmt).scalars())


def reprocess_pending_item(session: Session, pending_id: int, engine: RuleEngine) -> ItemOutcome:
    """Reclassify one pending item in ``session`` (flush only)."""

    pending = session.get(PendingTransaction, pending_id)
    if pending is None or pending.reviewed_at is not None:
        # Reviewed or removed since the target list was built.
        return "skipped"
    bank_tx = session.get(BankTransaction, pending.bank_transaction_id)
    if bank_tx is None:
        return "skipped"

    classification = engine.classify(bank_tx, bank_tx.bank_account_id)
    fields = classification.fields
    decision = ClassificationDecider(session).decide(bank_tx, fields)

    if decision.should_post:
        create_ledger_transaction(session, bank_tx, fields)
        session.delete(pending)
        session.flush()
        _logger.info(
            "reprocess:approved pending_id=%s bank_transaction_id=%s rules=%s",
            pending_id,
            bank_tx.id,
            list(classification.matched_rule_ids),
        )
        return "approved"

    pending.property_id = fields.property_id
    pending.type = fields.transaction_type
    pending.category = fields.category
    session.flush()
    return "invalid" if fields.is_complete else "pending"


def reprocess(rule_change: RuleChange, *, database_url: str | None = None) -> ReprocessResult:
    """Reclassify the unreviewed pending items affected by ``rule_change``.

    Returns
    -------
    ReprocessResult
        ``processed`` items evaluated, ``approved`` promotions, and ``failed``
        items (complete but invalid classifications, or processing errors).
    """

    result = ReprocessResult()
    with session_scope(database_url=database_url) as session:
        engine = RuleEngine.preload_all(session)
        targets = _pending_targets(session, rule_change.bank_account_id)

    _logger.info(
        "reprocess:start kind=%s rule_id=%s bank_account_id=%s items=%d",
        rule_change.kind,
        rule_change.rule_id,
        rule_change.bank_account_id,
        len(targets),
    )

    for pending_id in targets:
        try:
            with session_scope(database_url=database_url) as session:
                outcome = reprocess_pending_item(session, pending_id, engine)
        except SQLAlchemyError:
            _logger.exception("reprocess:item_failed pending_id=%s", pending_id)
            result.failed += 1
            continue

        if outcome == "skipped":
            continue
        result.processed += 1
        if outcome == "approved":
            result.approved += 1
        elif outcome == "invalid":
            result.failed += 1

    _logger.info(
        "reprocess:done processed=%d approved=%d failed=%d",
        result.processed,
        result.approved,
        result.failed,
    )
    return result


__all__ = [
    "RuleChange",
    "ReprocessResult",
    "reprocess_pending_item",
    "reprocess",
]
