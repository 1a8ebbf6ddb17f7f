# ruff: noqa: I001
"""Batch ingestion and the atomic write step.

Per record, :func:`ingest` runs::

    normalize → duplicate check → classify → decide → write

inside its own ``session_scope`` so that a record either lands completely (the
bank transaction plus exactly one linked outcome) or not at all, and so that
later records in the same batch see it during their duplicate check.

Failures are per record: normalization problems and data-layer errors are
collected in :attr:`IngestResult.errors` and the batch continues. A pending
outcome is a normal result, never an error.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import BankAccount, BankTransaction, PendingTransaction, Transaction
from .config import PipelineSettings
from .decide import ClassificationDecider, Decision
from .duplicates import DuplicateDetector
from .errors import NormalizationError, NotFoundError
from .logging_setup import get_logger
from .models import ClassificationFields, NormalizedTransaction, minor_to_major
from .normalizers import normalize_record
from .rules import RuleEngine

_logger = get_logger("bank_ingest.persistence")


@dataclass(frozen=True, slots=True)
class IngestError:
    external_id: str | None
    error: str


@dataclass(slots=True)
class IngestResult:
    """Batch summary.

    ``processed`` counts records that reached a terminal state (posted, pending
    or skipped as a duplicate); ``errors`` holds the rest.
    """

    processed: int = 0
    posted: int = 0
    pending: int = 0
    duplicates_skipped: int = 0
    errors: list[IngestError] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def create_ledger_transaction(
    session: Session,
    bank_tx: BankTransaction,
    fields: ClassificationFields,
) -> Transaction:
    """Insert the posted :class:`Transaction` for ``bank_tx`` and link it.

    The caller has already validated ``fields``. Any pending link on
    ``bank_tx`` is cleared; deleting the pending row is the caller's choice.
    """

    tx = Transaction(
        property_id=fields.property_id,
        type=fields.transaction_type,
        category=fields.category,
        amount=minor_to_major(bank_tx.amount_minor, bank_tx.currency),
        transaction_date=bank_tx.transaction_date,
        description=bank_tx.description,
        bank_transaction_id=bank_tx.id,
        is_imported=True,
        imported_at=_utcnow(),
    )
    session.add(tx)
    session.flush()

    bank_tx.pending_transaction_id = None
    bank_tx.transaction_id = tx.id
    session.flush()
    return tx


def write_outcome(
    session: Session,
    normalized: NormalizedTransaction,
    account_id: int,
    decision: Decision,
) -> BankTransaction:
    """Insert the bank transaction and its single outcome row, then set the link.

    Only flushes; committing (or rolling back) is up to the enclosing scope.
    """

    bank_tx = BankTransaction(
        bank_account_id=account_id,
        external_id=normalized.external_id,
        amount_minor=normalized.amount_minor,
        currency=normalized.currency,
        description=normalized.description,
        counterparty_name=normalized.counterparty_name,
        reference=normalized.reference,
        merchant=normalized.merchant,
        provider_category=normalized.provider_category,
        transaction_date=normalized.transaction_date,
        settled_date=normalized.settled_date,
    )
    session.add(bank_tx)
    session.flush()

    if decision.should_post:
        create_ledger_transaction(session, bank_tx, decision.fields)
        return bank_tx

    fields = decision.fields
    pending = PendingTransaction(
        bank_transaction_id=bank_tx.id,
        property_id=fields.property_id,
        type=fields.transaction_type,
        category=fields.category,
        transaction_date=normalized.transaction_date,
        description=normalized.description,
    )
    session.add(pending)
    session.flush()

    bank_tx.pending_transaction_id = pending.id
    session.flush()
    return bank_tx


def _record_id(raw: Any) -> str | None:
    if isinstance(raw, Mapping) and raw.get("id") is not None:
        return str(raw["id"])
    return None


def ingest(
    raw_records: Iterable[Mapping[str, Any]],
    account_id: int,
    *,
    database_url: str | None = None,
    settings: PipelineSettings | None = None,
) -> IngestResult:
    """Process ``raw_records`` for one bank account, sequentially.

    Parameters
    ----------
    raw_records:
        Provider records (see :mod:`bank_ingest.normalizers` for the shape).
    account_id:
        Internal id of the owning :class:`BankAccount`.
    database_url:
        Optional explicit database URL; defaults to ``$DATABASE_URL``.
    settings:
        Pipeline settings; defaults to :meth:`PipelineSettings.from_env`.

    Returns
    -------
    IngestResult
        Counts per outcome plus one :class:`IngestError` per failed record.

    Raises
    ------
    NotFoundError
        When ``account_id`` does not exist (nothing is processed).
    """

    settings = settings or PipelineSettings.from_env()
    result = IngestResult()

    with session_scope(database_url=database_url) as session:
        account = session.get(BankAccount, account_id)
        if account is None:
            raise NotFoundError("bank account", account_id)
        session.expunge(account)
        # One immutable rule snapshot for the whole batch.
        engine = RuleEngine.preload_all(session)

    _logger.info("ingest:start account_id=%s", account_id)

    for raw in raw_records:
        external_id = _record_id(raw)
        try:
            normalized = normalize_record(raw, bank_account=account, settings=settings)
            external_id = normalized.external_id
            with session_scope(database_url=database_url) as session:
                dup = DuplicateDetector(session, settings).check(normalized, account_id)
                if dup.is_duplicate:
                    _logger.debug(
                        "ingest:duplicate external_id=%s match=%s matched_id=%s",
                        external_id,
                        dup.match_type,
                        dup.matched_transaction.id if dup.matched_transaction else None,
                    )
                    result.duplicates_skipped += 1
                    result.processed += 1
                    continue

                classification = engine.classify(normalized, account_id)
                decision = ClassificationDecider(session).decide(
                    normalized, classification.fields
                )
                write_outcome(session, normalized, account_id, decision)
        except NormalizationError as exc:
            _logger.warning("ingest:invalid_record external_id=%s error=%s", external_id, exc)
            result.errors.append(IngestError(exc.external_id or external_id, str(exc)))
            continue
        except Exception as exc:
            _logger.exception("ingest:record_failed external_id=%s", external_id)
            result.errors.append(IngestError(external_id, f"{type(exc).__name__}: {exc}"))
            continue

        result.processed += 1
        if decision.should_post:
            result.posted += 1
        else:
            result.pending += 1

    _logger.info(
        "ingest:done account_id=%s processed=%d posted=%d pending=%d duplicates=%d errors=%d",
        account_id,
        result.processed,
        result.posted,
        result.pending,
        result.duplicates_skipped,
        len(result.errors),
    )
    return result


__all__ = [
    "IngestError",
    "IngestResult",
    "create_ledger_transaction",
    "write_outcome",
    "ingest",
]
