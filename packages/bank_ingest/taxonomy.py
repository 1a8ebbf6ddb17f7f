"""Fixed transaction taxonomy: the two transaction types and their categories."""

from __future__ import annotations

from typing import Literal

type TransactionType = Literal["Income", "Expense"]

INCOME = "Income"
EXPENSE = "Expense"
TRANSACTION_TYPES: tuple[str, ...] = (INCOME, EXPENSE)

INCOME_CATEGORIES: tuple[str, ...] = (
    "Rent",
    "Security Deposit",
    "Late Fee",
    "Lease Fee",
)

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "Maintenance",
    "Repair",
    "Utilities",
    "Insurance",
    "Property Tax",
    "Management Fee",
    "Legal Fee",
    "Transport",
    "Other",
)

_CATEGORIES_BY_TYPE: dict[str, frozenset[str]] = {
    INCOME: frozenset(INCOME_CATEGORIES),
    EXPENSE: frozenset(EXPENSE_CATEGORIES),
}


def is_transaction_type(value: object) -> bool:
    return isinstance(value, str) and value in _CATEGORIES_BY_TYPE


def categories_for(transaction_type: str) -> tuple[str, ...]:
    """Return the categories allowed for ``transaction_type`` (empty when unknown)."""

    if transaction_type == INCOME:
        return INCOME_CATEGORIES
    if transaction_type == EXPENSE:
        return EXPENSE_CATEGORIES
    return ()


def is_valid_type_category(transaction_type: str, category: str) -> bool:
    """True when ``category`` belongs to ``transaction_type``'s fixed list (exact match)."""

    allowed = _CATEGORIES_BY_TYPE.get(transaction_type)
    return allowed is not None and category in allowed


__all__ = [
    "TransactionType",
    "INCOME",
    "EXPENSE",
    "TRANSACTION_TYPES",
    "INCOME_CATEGORIES",
    "EXPENSE_CATEGORIES",
    "is_transaction_type",
    "categories_for",
    "is_valid_type_category",
]
