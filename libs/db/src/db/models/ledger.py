from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT identity on Postgres; SQLite only autoincrements an INTEGER PRIMARY KEY.
_PK = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: properties / bank_accounts
# ---------------------------


class Property(Base):
    """Minimal view of a managed property; the CRUD layer owns the full record."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # Provider-assigned account id (e.g. Monzo ``acc_...``); raw records must agree when set.
    external_account_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    account_name: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False, server_default="monzo")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------
# Core: bank_transactions
# ---------------------------


class BankTransaction(Base):
    __tablename__ = "bank_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    bank_account_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    # Signed integer in minor currency units, exactly as received from the provider.
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default="GBP")
    description: Mapped[str] = mapped_column(Text, nullable=False)
    counterparty_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_category: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    # Outcome links: at most one is set; exactly one once the record has been classified.
    transaction_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    pending_transaction_id: Mapped[int | None] = mapped_column(
        _PK,
        ForeignKey("pending_transactions.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    # Set when a reviewer rejects the pending item; the row stays for duplicate detection.
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("bank_account_id", "external_id", name="uq_bank_tx_account_external_id"),
        Index("ix_bank_tx_account_date", "bank_account_id", "transaction_date"),
        CheckConstraint(
            "transaction_id IS NULL OR pending_transaction_id IS NULL",
            name="ck_bank_tx_single_link",
        ),
    )


# ---------------------------
# Rules: matching_rules
# ---------------------------


class MatchingRule(Base):
    __tablename__ = "matching_rules"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # NULL means a global rule that applies to every account.
    bank_account_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=True
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    property_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("properties.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_matching_rules_account_priority", "bank_account_id", "priority"),
        CheckConstraint("priority >= 0", name="ck_matching_rules_priority"),
        CheckConstraint(
            "type IS NULL OR type in ('Income','Expense')", name="ck_matching_rules_type"
        ),
    )


# ---------------------------
# Outcomes: transactions / pending_transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    # Major units; sign copied unchanged from the source bank transaction.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 3), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Back-reference without an FK to keep the link graph acyclic.
    bank_transaction_id: Mapped[int | None] = mapped_column(_PK, nullable=True, unique=True)
    is_imported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("type in ('Income','Expense')", name="ck_transactions_type"),
    )


class PendingTransaction(Base):
    __tablename__ = "pending_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    bank_transaction_id: Mapped[int] = mapped_column(_PK, nullable=False, unique=True)
    # Classification fields are independently nullable and may hold values that
    # failed validation; reviewers correct them before approval.
    property_id: Mapped[int | None] = mapped_column(_PK, nullable=True)
    type: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (Index("ix_pending_tx_reviewed_at", "reviewed_at"),)


__all__ = [
    "Base",
    "Property",
    "BankAccount",
    "BankTransaction",
    "MatchingRule",
    "Transaction",
    "PendingTransaction",
]
