"""Duplicate detection for incoming bank records.

A record is a duplicate of an already-stored bank transaction for the same
account when either:

- **exact**: the provider ``external_id`` matches; or
- **fuzzy**: the signed amount (minor units) is identical, the transaction
  timestamps are at most ``fuzzy_window`` apart (inclusive), and the
  normalized descriptions are at least ``fuzzy_similarity_threshold`` similar.

Exact matches are checked first. Fuzzy candidates are examined newest-imported
first and capped at ``fuzzy_candidate_limit``; the first candidate over the
threshold wins. Database errors propagate to the caller so a record is never
silently treated as "not a duplicate".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from db.models.ledger import BankTransaction
from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import PipelineSettings
from .logging_setup import get_logger
from .models import NormalizedTransaction

_logger = get_logger("bank_ingest.duplicates")

_WS = re.compile(r"\s+")

type DuplicateMatchType = Literal["exact", "fuzzy"]


@dataclass(frozen=True, slots=True)
class DuplicateCheckResult:
    is_duplicate: bool
    match_type: DuplicateMatchType | None = None
    matched_transaction: BankTransaction | None = None


_NOT_DUPLICATE = DuplicateCheckResult(is_duplicate=False)


def normalize_description(text: str | None) -> str:
    """Lower-case, collapse internal whitespace, trim."""

    if not text:
        return ""
    return _WS.sub(" ", text.lower()).strip()


def description_similarity(a: str | None, b: str | None) -> float:
    """Levenshtein similarity in [0, 1]: ``1 - distance / max(len(a), len(b))``.

    Two empty descriptions are identical (1.0); one empty description shares
    nothing with a non-empty one (0.0).
    """

    left = normalize_description(a)
    right = normalize_description(b)
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    return Levenshtein.normalized_similarity(left, right)


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


class DuplicateDetector:
    """Looks up prior bank transactions that a candidate record duplicates."""

    def __init__(self, session: Session, settings: PipelineSettings | None = None) -> None:
        self._session = session
        self._settings = settings or PipelineSettings()

    def find_exact(self, external_id: str, account_id: int) -> BankTransaction | None:
        stmt = select(BankTransaction).where(
            BankTransaction.bank_account_id == account_id,
            BankTransaction.external_id == external_id,
        )
        return self._session.execute(stmt).scalars().first()

    def find_fuzzy(
        self, candidate: NormalizedTransaction, account_id: int
    ) -> BankTransaction | None:
        window = self._settings.fuzzy_window
        when = _as_utc(candidate.transaction_date)
        stmt = (
            select(BankTransaction)
            .where(
                BankTransaction.bank_account_id == account_id,
                BankTransaction.amount_minor == candidate.amount_minor,
                BankTransaction.transaction_date >= when - window,
                BankTransaction.transaction_date <= when + window,
            )
            .order_by(BankTransaction.imported_at.desc(), BankTransaction.id.desc())
            .limit(self._settings.fuzzy_candidate_limit)
        )
        threshold = self._settings.fuzzy_similarity_threshold
        for row in self._session.execute(stmt).scalars():
            # Re-check the window in Python; SQLite compares timestamps as text.
            if abs(_as_utc(row.transaction_date) - when) > window:
                continue
            score = description_similarity(candidate.description, row.description)
            if score >= threshold:
                _logger.debug(
                    "duplicates:fuzzy_match external_id=%s matched_id=%s score=%.3f",
                    candidate.external_id,
                    row.id,
                    score,
                )
                return row
        return None

    def check(self, candidate: NormalizedTransaction, account_id: int) -> DuplicateCheckResult:
        """Return whether ``candidate`` duplicates a stored transaction for ``account_id``."""

        exact = self.find_exact(candidate.external_id, account_id)
        if exact is not None:
            return DuplicateCheckResult(True, "exact", exact)
        fuzzy = self.find_fuzzy(candidate, account_id)
        if fuzzy is not None:
            return DuplicateCheckResult(True, "fuzzy", fuzzy)
        return _NOT_DUPLICATE


__all__ = [
    "DuplicateCheckResult",
    "DuplicateDetector",
    "normalize_description",
    "description_similarity",
]
