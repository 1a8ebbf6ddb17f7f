"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``bank_ingest``.
"""

from .ledger import (
    BankAccount,
    BankTransaction,
    Base,
    MatchingRule,
    PendingTransaction,
    Property,
    Transaction,
)

__all__ = [
    "Base",
    "Property",
    "BankAccount",
    "BankTransaction",
    "MatchingRule",
    "Transaction",
    "PendingTransaction",
]
