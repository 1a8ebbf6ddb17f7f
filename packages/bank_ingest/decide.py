"""Post-or-pending decision for a classified bank transaction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from db.models.ledger import BankTransaction, Property
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import ClassificationFields, NormalizedTransaction
from .taxonomy import categories_for, is_transaction_type, is_valid_type_category

_logger = get_logger("bank_ingest.decide")

type Outcome = Literal["post", "pending"]


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome plus the fields to persist and, for ``pending``, why.

    ``fields`` is always the classification as suggested; pending items keep
    partial or invalid suggestions so a reviewer can correct them.
    """

    outcome: Outcome
    fields: ClassificationFields
    reasons: tuple[str, ...] = ()

    @property
    def should_post(self) -> bool:
        return self.outcome == "post"


class ClassificationDecider:
    """Checks completeness, property existence and the type/category taxonomy."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._known_properties: dict[int, bool] = {}

    def property_exists(self, property_id: int) -> bool:
        known = self._known_properties.get(property_id)
        if known is None:
            known = self._session.get(Property, property_id) is not None
            self._known_properties[property_id] = known
        return known

    def validation_errors(self, fields: ClassificationFields) -> tuple[str, ...]:
        """Reasons ``fields`` cannot be posted (empty when postable)."""

        reasons = [f"missing {name}" for name in fields.missing()]
        if fields.property_id is not None and not self.property_exists(fields.property_id):
            reasons.append(f"property {fields.property_id} does not exist")
        if fields.transaction_type is not None and not is_transaction_type(
            fields.transaction_type
        ):
            reasons.append(f"unknown transaction type {fields.transaction_type!r}")
        elif (
            fields.transaction_type is not None
            and fields.category is not None
            and not is_valid_type_category(fields.transaction_type, fields.category)
        ):
            allowed = ", ".join(categories_for(fields.transaction_type))
            reasons.append(
                f"category {fields.category!r} is not valid for {fields.transaction_type} "
                f"(allowed: {allowed})"
            )
        return tuple(reasons)

    def decide(
        self,
        bank_transaction: BankTransaction | NormalizedTransaction,
        fields: ClassificationFields,
    ) -> Decision:
        reasons = self.validation_errors(fields)
        if not reasons:
            return Decision("post", fields)
        _logger.debug(
            "decide:pending external_id=%s reasons=%s",
            bank_transaction.external_id,
            "; ".join(reasons),
        )
        return Decision("pending", fields, reasons)


__all__ = ["Decision", "ClassificationDecider"]
