"""In-memory records passed between pipeline stages.

ORM rows live in ``db.models.ledger``; the types here are the immutable views
the normalizer, rule engine and decider exchange. Classification fields use
``None`` for "not set"; there are no sentinel strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

# Currencies whose minor unit is not 1/100 of the major unit (ISO 4217).
_MINOR_UNIT_EXPONENTS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "BHD": 3,
    "JOD": 3,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
}


def minor_unit_exponent(currency: str) -> int:
    return _MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def minor_to_major(amount_minor: int, currency: str) -> Decimal:
    """Convert signed minor units to a signed major-unit ``Decimal`` (exact)."""

    return Decimal(amount_minor).scaleb(-minor_unit_exponent(currency))


def major_to_minor(amount: Decimal | int | str, currency: str) -> int:
    """Convert a major-unit amount to signed minor units, rounding half away from zero."""

    scaled = Decimal(str(amount)).scaleb(minor_unit_exponent(currency))
    return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """A provider record in the pipeline's internal shape.

    ``transaction_date`` and ``settled_date`` are timezone-aware UTC datetimes.
    ``amount_minor`` keeps the provider's sign convention untouched.
    """

    external_id: str
    amount_minor: int
    currency: str
    description: str
    transaction_date: datetime
    settled_date: datetime | None = None
    counterparty_name: str | None = None
    reference: str | None = None
    merchant: str | None = None
    provider_category: str | None = None
    provider_account_id: str | None = None

    @property
    def amount(self) -> Decimal:
        return minor_to_major(self.amount_minor, self.currency)


@dataclass(frozen=True, slots=True)
class ClassificationFields:
    """Suggested property/type/category; each field independently optional."""

    property_id: int | None = None
    transaction_type: str | None = None
    category: str | None = None

    @property
    def is_complete(self) -> bool:
        return (
            self.property_id is not None
            and self.transaction_type is not None
            and self.category is not None
        )

    def missing(self) -> tuple[str, ...]:
        names = []
        if self.property_id is None:
            names.append("property_id")
        if self.transaction_type is None:
            names.append("transaction_type")
        if self.category is None:
            names.append("category")
        return tuple(names)


@dataclass(frozen=True, slots=True)
class Classification:
    """Rule-engine output: accumulated fields plus the ids of the rules that fired."""

    fields: ClassificationFields = field(default_factory=ClassificationFields)
    matched_rule_ids: tuple[int, ...] = ()


__all__ = [
    "minor_unit_exponent",
    "minor_to_major",
    "major_to_minor",
    "NormalizedTransaction",
    "ClassificationFields",
    "Classification",
]
