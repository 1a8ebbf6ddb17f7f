# ruff: noqa: I001
"""Matching-rule administration.

Account rules are managed per bank account; global rules (``bank_account_id``
``NULL``) are created by :func:`create_global_rule` / :func:`create_default_rules`
and are read-only for the account-scoped operations.

Every mutation commits in its own ``session_scope`` and then, as a separate
step, re-runs :func:`bank_ingest.reprocess.reprocess` for the affected scope.
The reprocessing counts are returned alongside the rule so callers can report
how many pending items were auto-approved.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import BankAccount, MatchingRule, Property
from .conditions import ConditionGroup, dump_conditions, evaluate, parse_conditions
from .errors import NotFoundError, RuleScopeError, RuleValidationError
from .logging_setup import get_logger
from .models import Classification, NormalizedTransaction, major_to_minor
from .reprocess import ReprocessResult, RuleChange, reprocess
from .rules import RuleSnapshot, classify, rule_sort_key
from .taxonomy import EXPENSE, INCOME, is_valid_type_category

_logger = get_logger("bank_ingest.matching_rules")

_TYPE_ALIASES = {"INCOME": INCOME, "EXPENSE": EXPENSE}


def _coerce_conditions(v: Any) -> ConditionGroup:
    if isinstance(v, ConditionGroup):
        return v
    return parse_conditions(v)


def _coerce_type(v: Any) -> Any:
    if isinstance(v, str):
        stripped = v.strip()
        if not stripped:
            return None
        return _TYPE_ALIASES.get(stripped.upper(), stripped)
    return v


class RulePayload(BaseModel):
    """Fields accepted when creating a rule.

    ``conditions`` may be a :class:`ConditionGroup`, a mapping or JSON text.
    ``type`` accepts ``Income``/``Expense`` in any case.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1)
    enabled: bool = True
    conditions: ConditionGroup
    property_id: int | None = None
    type: str | None = None
    category: str | None = None

    @field_validator("conditions", mode="before")
    @classmethod
    def _parse_conditions(cls, v: Any) -> ConditionGroup:
        return _coerce_conditions(v)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        return _coerce_type(v)

    @field_validator("type")
    @classmethod
    def _known_type(cls, v: str | None) -> str | None:
        if v is not None and v not in (INCOME, EXPENSE):
            raise ValueError("type must be Income or Expense")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class RuleUpdate(RulePayload):
    """Partial update; only explicitly provided fields are written."""

    name: str | None = Field(default=None, min_length=1)
    enabled: bool | None = None
    conditions: ConditionGroup | None = None

    @field_validator("conditions", mode="before")
    @classmethod
    def _parse_conditions(cls, v: Any) -> ConditionGroup | None:
        if v is None:
            return None
        return _coerce_conditions(v)


class RuleSample(BaseModel):
    """Hand-written transaction used by :func:`test_rule`; ``amount`` in major units."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: str = Field(min_length=1)
    amount: Decimal
    currency: str = "GBP"
    counterparty_name: str | None = None
    merchant: str | None = None
    reference: str | None = None


@dataclass(slots=True)
class RuleMutation:
    rule: MatchingRule | None
    reprocessing: ReprocessResult = field(default_factory=ReprocessResult)


@dataclass(frozen=True, slots=True)
class RuleTestResult:
    matches: bool
    classification: Classification


@dataclass(frozen=True, slots=True)
class _DefaultRule:
    name: str
    priority: int
    transaction_type: str
    category: str
    conditions: dict[str, Any]


def _contains(value: str) -> dict[str, Any]:
    return {
        "operator": "AND",
        "rules": [
            {
                "field": "description",
                "matchType": "contains",
                "value": value,
                "caseSensitive": False,
            }
        ],
    }


DEFAULT_RULES: tuple[_DefaultRule, ...] = (
    _DefaultRule("Default: Rent", 100, INCOME, "Rent", _contains("rent")),
    _DefaultRule(
        "Default: Security Deposit", 101, INCOME, "Security Deposit", _contains("deposit")
    ),
    _DefaultRule("Default: Maintenance", 102, EXPENSE, "Maintenance", _contains("maintenance")),
    _DefaultRule("Default: Repair", 103, EXPENSE, "Repair", _contains("repair")),
    _DefaultRule(
        "Default: Negative Amount",
        1000,
        EXPENSE,
        "Other",
        {"operator": "AND", "rules": [{"field": "amount", "matchType": "lessThan", "value": 0}]},
    ),
)


def _validate_payload[M: RulePayload](
    payload: Mapping[str, Any] | BaseModel, model: type[M]
) -> M:
    if isinstance(payload, model):
        return payload
    data = payload.model_dump(exclude_unset=True) if isinstance(payload, BaseModel) else payload
    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise RuleValidationError(f"invalid rule: {exc}") from exc


def _check_references(
    session: Session, property_id: int | None, type_: str | None, category: str | None
) -> None:
    if property_id is not None and session.get(Property, property_id) is None:
        raise NotFoundError("property", property_id)
    if type_ is not None and category is not None and not is_valid_type_category(type_, category):
        raise RuleValidationError(f"category {category!r} is not valid for {type_}")


def _get_rule(session: Session, rule_id: int) -> MatchingRule:
    rule = session.get(MatchingRule, rule_id)
    if rule is None:
        raise NotFoundError("matching rule", rule_id)
    return rule


def _get_account_rule(session: Session, rule_id: int, action: str) -> MatchingRule:
    rule = _get_rule(session, rule_id)
    if rule.bank_account_id is None:
        raise RuleScopeError(f"cannot {action} global rule {rule_id}")
    return rule


def _next_priority(session: Session, account_id: int | None) -> int:
    stmt = select(func.max(MatchingRule.priority))
    if account_id is None:
        stmt = stmt.where(MatchingRule.bank_account_id.is_(None))
    else:
        stmt = stmt.where(MatchingRule.bank_account_id == account_id)
    current = session.execute(stmt).scalar_one_or_none()
    return 0 if current is None else current + 1


def _insert_rule(
    session: Session, account_id: int | None, data: RulePayload, priority: int
) -> MatchingRule:
    _check_references(session, data.property_id, data.type, data.category)
    rule = MatchingRule(
        bank_account_id=account_id,
        priority=priority,
        enabled=data.enabled,
        name=data.name,
        conditions=dump_conditions(data.conditions),
        property_id=data.property_id,
        type=data.type,
        category=data.category,
    )
    session.add(rule)
    session.flush()
    return rule


def _after_commit(change: RuleChange, database_url: str | None) -> ReprocessResult:
    result = reprocess(change, database_url=database_url)
    _logger.info(
        "rules:%s rule_id=%s bank_account_id=%s reprocessed=%d approved=%d failed=%d",
        change.kind,
        change.rule_id,
        change.bank_account_id,
        result.processed,
        result.approved,
        result.failed,
    )
    return result


# ---------------------------
# Queries
# ---------------------------


def get_rule(session: Session, rule_id: int) -> MatchingRule:
    return _get_rule(session, rule_id)


def list_rules(session: Session, account_id: int) -> list[MatchingRule]:
    """Account and global rules for ``account_id`` in evaluation order (disabled included)."""

    if session.get(BankAccount, account_id) is None:
        raise NotFoundError("bank account", account_id)
    rows = session.execute(
        select(MatchingRule).where(
            (MatchingRule.bank_account_id == account_id) | MatchingRule.bank_account_id.is_(None)
        )
    ).scalars()
    return sorted(rows, key=rule_sort_key)


# ---------------------------
# Mutations
# ---------------------------


def create_rule(
    account_id: int,
    payload: Mapping[str, Any] | RulePayload,
    *,
    database_url: str | None = None,
) -> RuleMutation:
    """Create an account rule at the end of the account's priority order."""

    data = _validate_payload(payload, RulePayload)
    with session_scope(database_url=database_url) as session:
        if session.get(BankAccount, account_id) is None:
            raise NotFoundError("bank account", account_id)
        rule = _insert_rule(session, account_id, data, _next_priority(session, account_id))

    reprocessing = _after_commit(RuleChange("created", rule.id, account_id), database_url)
    return RuleMutation(rule, reprocessing)


def create_global_rule(
    payload: Mapping[str, Any] | RulePayload,
    *,
    priority: int | None = None,
    database_url: str | None = None,
) -> RuleMutation:
    """Create a rule that applies to every account."""

    data = _validate_payload(payload, RulePayload)
    if priority is not None and priority < 0:
        raise RuleValidationError("priority must be >= 0")
    with session_scope(database_url=database_url) as session:
        prio = _next_priority(session, None) if priority is None else priority
        rule = _insert_rule(session, None, data, prio)

    reprocessing = _after_commit(RuleChange("created", rule.id, None), database_url)
    return RuleMutation(rule, reprocessing)


def update_rule(
    rule_id: int,
    changes: Mapping[str, Any] | RuleUpdate,
    *,
    database_url: str | None = None,
) -> RuleMutation:
    """Apply ``changes`` to an account rule; global rules raise :class:`RuleScopeError`."""

    data = _validate_payload(changes, RuleUpdate)
    provided = data.model_fields_set
    if "name" in provided and data.name is None:
        raise RuleValidationError("name cannot be cleared")
    if "enabled" in provided and data.enabled is None:
        raise RuleValidationError("enabled cannot be cleared")
    if "conditions" in provided and data.conditions is None:
        raise RuleValidationError("conditions cannot be cleared")

    with session_scope(database_url=database_url) as session:
        rule = _get_account_rule(session, rule_id, "update")
        new_type = data.type if "type" in provided else rule.type
        new_category = data.category if "category" in provided else rule.category
        new_property = data.property_id if "property_id" in provided else rule.property_id
        _check_references(session, new_property, new_type, new_category)

        for name in provided:
            value = getattr(data, name)
            if name == "conditions":
                value = dump_conditions(value)
            setattr(rule, name, value)
        session.flush()
        account_id = rule.bank_account_id

    reprocessing = _after_commit(RuleChange("updated", rule_id, account_id), database_url)
    return RuleMutation(rule, reprocessing)


def delete_rule(rule_id: int, *, database_url: str | None = None) -> RuleMutation:
    with session_scope(database_url=database_url) as session:
        rule = _get_account_rule(session, rule_id, "delete")
        account_id = rule.bank_account_id
        session.delete(rule)

    reprocessing = _after_commit(RuleChange("deleted", rule_id, account_id), database_url)
    return RuleMutation(None, reprocessing)


def reorder_rules(rule_ids: Sequence[int], *, database_url: str | None = None) -> RuleMutation:
    """Set each listed account rule's priority to its position in ``rule_ids``.

    All rules must exist, belong to the same account and none may be global.
    """

    ids = list(rule_ids)
    if not ids:
        raise RuleValidationError("at least one rule id is required")
    if len(set(ids)) != len(ids):
        raise RuleValidationError("rule ids must be unique")

    with session_scope(database_url=database_url) as session:
        rows = session.execute(select(MatchingRule).where(MatchingRule.id.in_(ids))).scalars().all()
        by_id = {r.id: r for r in rows}
        missing = [i for i in ids if i not in by_id]
        if missing:
            raise NotFoundError("matching rule", missing[0])
        if any(r.bank_account_id is None for r in rows):
            raise RuleScopeError("cannot reorder global rules")
        accounts = {r.bank_account_id for r in rows}
        if len(accounts) != 1:
            raise RuleValidationError("rules to reorder must belong to one bank account")
        for position, rule_id in enumerate(ids):
            by_id[rule_id].priority = position
        (account_id,) = accounts

    reprocessing = _after_commit(RuleChange("reordered", None, account_id), database_url)
    return RuleMutation(None, reprocessing)


def create_default_rules(*, database_url: str | None = None) -> list[MatchingRule]:
    """Seed the built-in global rules that are not present yet (matched by name)."""

    created: list[MatchingRule] = []
    with session_scope(database_url=database_url) as session:
        existing = set(
            session.execute(
                select(MatchingRule.name).where(MatchingRule.bank_account_id.is_(None))
            ).scalars()
        )
        for default in DEFAULT_RULES:
            if default.name in existing:
                continue
            rule = MatchingRule(
                bank_account_id=None,
                priority=default.priority,
                enabled=True,
                name=default.name,
                conditions=dump_conditions(parse_conditions(default.conditions)),
                property_id=None,
                type=default.transaction_type,
                category=default.category,
            )
            session.add(rule)
            created.append(rule)
        session.flush()

    if created:
        _after_commit(RuleChange("created", None, None), database_url)
    _logger.info("rules:defaults_seeded created=%d", len(created))
    return created


# ---------------------------
# Dry run
# ---------------------------


def test_rule(
    rule_id: int,
    sample: Mapping[str, Any] | RuleSample,
    *,
    database_url: str | None = None,
) -> RuleTestResult:
    """Evaluate one rule against ``sample`` without touching stored data."""

    if not isinstance(sample, RuleSample):
        try:
            sample = RuleSample.model_validate(dict(sample))
        except ValidationError as exc:
            raise RuleValidationError(f"invalid sample: {exc}") from exc

    with session_scope(database_url=database_url) as session:
        snapshot = RuleSnapshot.from_row(_get_rule(session, rule_id))

    currency = sample.currency.upper()
    probe = NormalizedTransaction(
        external_id="test",
        amount_minor=major_to_minor(sample.amount, currency),
        currency=currency,
        description=sample.description,
        transaction_date=datetime.now(UTC),
        counterparty_name=sample.counterparty_name,
        reference=sample.reference,
        merchant=sample.merchant,
    )
    # Disabled rules are still evaluated so they can be checked before enabling.
    probe_rule = replace(snapshot, enabled=True)
    matches = probe_rule.conditions is not None and evaluate(probe_rule.conditions, probe)
    return RuleTestResult(matches, classify(probe, [probe_rule]))


# Not a pytest test function.
test_rule.__test__ = False  # type: ignore[attr-defined]


__all__ = [
    "DEFAULT_RULES",
    "RulePayload",
    "RuleUpdate",
    "RuleSample",
    "RuleMutation",
    "RuleTestResult",
    "get_rule",
    "list_rules",
    "create_rule",
    "create_global_rule",
    "update_rule",
    "delete_rule",
    "reorder_rules",
    "create_default_rules",
    "test_rule",
]
