"""Condition trees for matching rules: a tiny, data-only predicate language.

A rule's ``conditions`` column stores one :class:`ConditionGroup` as JSON::

    {
        "operator": "AND",
        "rules": [
            {"field": "description", "matchType": "contains", "value": "rent"},
            {"field": "amount", "matchType": "greaterThan", "value": 0}
        ]
    }

Semantics
---------
- ``AND`` requires every clause to pass; an empty ``AND`` matches everything.
- ``OR`` requires at least one clause to pass; an empty ``OR`` matches nothing.
- String match types (``contains``, ``equals``, ``startsWith``, ``endsWith``)
  compare the field's string value, lower-casing both sides unless
  ``caseSensitive`` is true. Numbers (``amount`` and numeric clause
  values) are rendered without trailing zeros first.
- Numeric match types (``greaterThan``, ``lessThan``) compare as ``Decimal``;
  ``amount`` is the signed major-unit amount.
- A clause on a field whose value is ``None`` never passes.

Trees are parsed once (pydantic) and evaluated without ``eval``/code execution.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Protocol

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    model_validator,
)

from .errors import RuleValidationError
from .models import minor_to_major

type ConditionField = Literal["description", "counterpartyName", "reference", "merchant", "amount"]
type MatchType = Literal["contains", "equals", "startsWith", "endsWith", "greaterThan", "lessThan"]

STRING_MATCH_TYPES: frozenset[str] = frozenset({"contains", "equals", "startsWith", "endsWith"})
NUMERIC_MATCH_TYPES: frozenset[str] = frozenset({"greaterThan", "lessThan"})


class Matchable(Protocol):
    """Attributes read by the evaluator (normalized records and ORM rows both qualify)."""

    description: str
    counterparty_name: str | None
    reference: str | None
    merchant: str | None
    amount_minor: int
    currency: str


def _to_decimal(value: object) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


class Clause(BaseModel):
    """One field comparison: ``<field> <matchType> <value>``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    field: ConditionField
    match_type: MatchType = Field(alias="matchType")
    value: StrictStr | StrictInt | StrictFloat
    case_sensitive: bool = Field(default=False, alias="caseSensitive")

    @model_validator(mode="after")
    def _numeric_value_for_numeric_match(self) -> Clause:
        if self.match_type in NUMERIC_MATCH_TYPES and _to_decimal(self.value) is None:
            raise ValueError(f"{self.match_type} requires a numeric value, got {self.value!r}")
        return self


class ConditionGroup(BaseModel):
    """``operator`` applied across ``rules``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    operator: Literal["AND", "OR"] = "AND"
    rules: tuple[Clause, ...] = ()


def parse_conditions(data: Mapping[str, Any] | str) -> ConditionGroup:
    """Parse a stored condition payload (mapping or JSON text).

    Raises :class:`~bank_ingest.errors.RuleValidationError` when malformed.
    """

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise RuleValidationError(f"conditions are not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise RuleValidationError("conditions must be an object with 'operator' and 'rules'")
    try:
        return ConditionGroup.model_validate(dict(data))
    except ValidationError as exc:
        raise RuleValidationError(f"invalid conditions: {exc}") from exc


def dump_conditions(tree: ConditionGroup) -> dict[str, Any]:
    """Serialize ``tree`` with the camelCase keys used in storage."""

    return tree.model_dump(by_alias=True, mode="json")


def field_value(transaction: Matchable, name: str) -> str | Decimal | None:
    match name:
        case "description":
            return transaction.description
        case "counterpartyName":
            return transaction.counterparty_name
        case "reference":
            return transaction.reference
        case "merchant":
            return transaction.merchant
        case "amount":
            return minor_to_major(transaction.amount_minor, transaction.currency)
    return None


def _as_text(value: object) -> str:
    # Numbers compare in their shortest plain form, so -100.00 reads as "-100".
    if isinstance(value, (Decimal, int, float)) and not isinstance(value, bool):
        number = _to_decimal(value)
        if number is not None and number.is_finite():
            return format(number.normalize(), "f")
    return str(value)


def _string_match(actual: str, expected: str, match_type: str, case_sensitive: bool) -> bool:
    if not case_sensitive:
        actual = actual.lower()
        expected = expected.lower()
    match match_type:
        case "contains":
            return expected in actual
        case "equals":
            return actual == expected
        case "startsWith":
            return actual.startswith(expected)
        case "endsWith":
            return actual.endswith(expected)
    return False


def evaluate_clause(clause: Clause, transaction: Matchable) -> bool:
    actual = field_value(transaction, clause.field)
    if actual is None:
        return False

    if clause.match_type in STRING_MATCH_TYPES:
        return _string_match(
            _as_text(actual), _as_text(clause.value), clause.match_type, clause.case_sensitive
        )

    left = _to_decimal(actual)
    right = _to_decimal(clause.value)
    if left is None or right is None:
        return False
    if clause.match_type == "greaterThan":
        return left > right
    return left < right


def evaluate(tree: ConditionGroup, transaction: Matchable) -> bool:
    """Return whether ``transaction`` satisfies ``tree``."""

    if tree.operator == "AND":
        return all(evaluate_clause(c, transaction) for c in tree.rules)
    return any(evaluate_clause(c, transaction) for c in tree.rules)


__all__ = [
    "Clause",
    "ConditionGroup",
    "Matchable",
    "STRING_MATCH_TYPES",
    "NUMERIC_MATCH_TYPES",
    "parse_conditions",
    "dump_conditions",
    "field_value",
    "evaluate_clause",
    "evaluate",
]
