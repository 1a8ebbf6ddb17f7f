"""Rule engine: ordered, first-match-wins-per-field accumulation.

Rules apply to one bank account or, when ``bank_account_id`` is ``NULL``, to
every account. For a given account the applicable rules are evaluated in the
order defined by :func:`rule_sort_key`:

1. ascending ``priority``;
2. at equal priority, account rules before global rules;
3. then ascending rule id, so the order never depends on storage order.

Each rule whose condition tree matches contributes its non-null suggestion
fields, but only for fields still unset. A high-priority rule can therefore
supply ``property_id`` while a later rule supplies ``type``/``category``.

The :class:`RuleEngine` snapshots the rule set the first time it sees an
account and reuses it for the engine's lifetime; one engine is created per
ingest batch or reprocess call, so rule edits made meanwhile are picked up by
the next call only.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from db.models.ledger import MatchingRule
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .conditions import ConditionGroup, Matchable, evaluate, parse_conditions
from .errors import RuleValidationError
from .logging_setup import get_logger
from .models import Classification, ClassificationFields

_logger = get_logger("bank_ingest.rules")


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Immutable, session-independent copy of a :class:`MatchingRule` row.

    ``conditions`` is ``None`` when the stored payload could not be parsed; such
    a rule never matches.
    """

    id: int
    bank_account_id: int | None
    priority: int
    name: str
    conditions: ConditionGroup | None
    property_id: int | None = None
    transaction_type: str | None = None
    category: str | None = None
    enabled: bool = True

    @property
    def is_global(self) -> bool:
        return self.bank_account_id is None

    @property
    def suggests_anything(self) -> bool:
        return (
            self.property_id is not None
            or self.transaction_type is not None
            or self.category is not None
        )

    @classmethod
    def from_row(cls, row: MatchingRule) -> RuleSnapshot:
        try:
            conditions: ConditionGroup | None = parse_conditions(row.conditions)
        except RuleValidationError as exc:
            _logger.warning("rules:malformed_conditions rule_id=%s error=%s", row.id, exc)
            conditions = None
        return cls(
            id=row.id,
            bank_account_id=row.bank_account_id,
            priority=row.priority,
            name=row.name,
            conditions=conditions,
            property_id=row.property_id,
            transaction_type=row.type,
            category=row.category,
            enabled=bool(row.enabled),
        )


def rule_sort_key(rule: RuleSnapshot | MatchingRule) -> tuple[int, int, int]:
    """Evaluation order: priority, then account scope before global, then id."""

    return (rule.priority, 1 if rule.bank_account_id is None else 0, rule.id)


def order_rules(rules: Iterable[RuleSnapshot], account_id: int) -> tuple[RuleSnapshot, ...]:
    """Keep the enabled rules that apply to ``account_id`` and sort them for evaluation."""

    applicable = (
        r for r in rules if r.enabled and (r.is_global or r.bank_account_id == account_id)
    )
    return tuple(sorted(applicable, key=rule_sort_key))


def classify(transaction: Matchable, ordered_rules: Sequence[RuleSnapshot]) -> Classification:
    """Accumulate suggestion fields from ``ordered_rules`` (already sorted).

    Earlier rules win per field; later matching rules may still fill fields that
    remain empty. Rules that could not add anything new are not evaluated.
    """

    property_id: int | None = None
    transaction_type: str | None = None
    category: str | None = None
    matched: list[int] = []

    for rule in ordered_rules:
        if property_id is not None and transaction_type is not None and category is not None:
            break
        if not rule.enabled or rule.conditions is None:
            continue
        adds_field = (
            (property_id is None and rule.property_id is not None)
            or (transaction_type is None and rule.transaction_type is not None)
            or (category is None and rule.category is not None)
        )
        if not adds_field:
            continue
        if not evaluate(rule.conditions, transaction):
            continue

        if property_id is None:
            property_id = rule.property_id
        if transaction_type is None:
            transaction_type = rule.transaction_type
        if category is None:
            category = rule.category
        matched.append(rule.id)

    return Classification(
        fields=ClassificationFields(
            property_id=property_id,
            transaction_type=transaction_type,
            category=category,
        ),
        matched_rule_ids=tuple(matched),
    )


def _applicable_rules_stmt(account_id: int | None):
    stmt = select(MatchingRule).where(MatchingRule.enabled.is_(True))
    if account_id is not None:
        stmt = stmt.where(
            or_(MatchingRule.bank_account_id == account_id, MatchingRule.bank_account_id.is_(None))
        )
    return stmt


def load_rules(session: Session, account_id: int) -> tuple[RuleSnapshot, ...]:
    """Fetch and order the enabled account and global rules for ``account_id``."""

    rows = session.execute(_applicable_rules_stmt(account_id)).scalars().all()
    return order_rules((RuleSnapshot.from_row(r) for r in rows), account_id)


class RuleEngine:
    """Classifies transactions using per-account rule snapshots.

    Pass ``rules`` to work from an explicit snapshot (e.g. every enabled rule
    fetched once for a global reprocess); otherwise rules are loaded from
    ``session`` the first time each account is seen.
    """

    def __init__(
        self,
        session: Session | None = None,
        *,
        rules: Iterable[RuleSnapshot] | None = None,
    ) -> None:
        if session is None and rules is None:
            raise ValueError("RuleEngine requires a session or an explicit rule snapshot")
        self._session = session
        self._snapshot = tuple(rules) if rules is not None else None
        self._by_account: dict[int, tuple[RuleSnapshot, ...]] = {}

    @classmethod
    def preload_all(cls, session: Session) -> RuleEngine:
        """Engine over every enabled rule, fetched in a single query."""

        rows = session.execute(_applicable_rules_stmt(None)).scalars().all()
        return cls(rules=[RuleSnapshot.from_row(r) for r in rows])

    def rules_for(self, account_id: int) -> tuple[RuleSnapshot, ...]:
        cached = self._by_account.get(account_id)
        if cached is None:
            if self._snapshot is not None:
                cached = order_rules(self._snapshot, account_id)
            else:
                assert self._session is not None
                cached = load_rules(self._session, account_id)
            self._by_account[account_id] = cached
            _logger.debug(
                "rules:loaded account_id=%s count=%d", account_id, len(cached)
            )
        return cached

    def classify(self, transaction: Matchable, account_id: int) -> Classification:
        return classify(transaction, self.rules_for(account_id))


__all__ = [
    "RuleSnapshot",
    "rule_sort_key",
    "order_rules",
    "classify",
    "load_rules",
    "RuleEngine",
]
