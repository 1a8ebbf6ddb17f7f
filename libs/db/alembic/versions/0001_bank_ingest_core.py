# ruff: noqa: I001
"""Bank ingest core tables.

Revision ID: 0001_bank_ingest_core
Revises: None
Create Date: 2026-01-20
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_bank_ingest_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "properties",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("external_account_id", sa.Text(), nullable=True, unique=True),
        sa.Column("account_name", sa.Text(), nullable=False),
        sa.Column("provider", sa.Text(), nullable=False, server_default=sa.text("'monzo'")),
        _created_at(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("property_id", sa.BigInteger(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 3), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("bank_transaction_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("is_imported", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("imported_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(
            ["property_id"],
            ["properties.id"],
            name="fk_transactions_property",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("type in ('Income','Expense')", name="ck_transactions_type"),
    )

    op.create_table(
        "pending_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("bank_transaction_id", sa.BigInteger(), nullable=False, unique=True),
        sa.Column("property_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _created_at(),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.Text(), nullable=True),
    )
    op.create_index("ix_pending_tx_reviewed_at", "pending_transactions", ["reviewed_at"])

    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("bank_account_id", sa.BigInteger(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'GBP'")),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("counterparty_name", sa.Text(), nullable=True),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("provider_category", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("settled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "imported_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("transaction_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("pending_transaction_id", sa.BigInteger(), nullable=True, unique=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["bank_account_id"],
            ["bank_accounts.id"],
            name="fk_bank_tx_account",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["transaction_id"],
            ["transactions.id"],
            name="fk_bank_tx_transaction",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["pending_transaction_id"],
            ["pending_transactions.id"],
            name="fk_bank_tx_pending",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint(
            "bank_account_id", "external_id", name="uq_bank_tx_account_external_id"
        ),
        sa.CheckConstraint(
            "transaction_id IS NULL OR pending_transaction_id IS NULL",
            name="ck_bank_tx_single_link",
        ),
    )
    op.create_index(
        "ix_bank_tx_account_date",
        "bank_transactions",
        ["bank_account_id", "transaction_date"],
    )

    op.create_table(
        "matching_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("bank_account_id", sa.BigInteger(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("property_id", sa.BigInteger(), nullable=True),
        sa.Column("type", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(
            ["bank_account_id"],
            ["bank_accounts.id"],
            name="fk_matching_rules_account",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["property_id"],
            ["properties.id"],
            name="fk_matching_rules_property",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("priority >= 0", name="ck_matching_rules_priority"),
        sa.CheckConstraint(
            "type IS NULL OR type in ('Income','Expense')", name="ck_matching_rules_type"
        ),
    )
    op.create_index(
        "ix_matching_rules_account_priority",
        "matching_rules",
        ["bank_account_id", "priority"],
    )


def downgrade() -> None:
    op.drop_index("ix_matching_rules_account_priority", table_name="matching_rules")
    op.drop_table("matching_rules")
    op.drop_index("ix_bank_tx_account_date", table_name="bank_transactions")
    op.drop_table("bank_transactions")
    op.drop_index("ix_pending_tx_reviewed_at", table_name="pending_transactions")
    op.drop_table("pending_transactions")
    op.drop_table("transactions")
    op.drop_table("bank_accounts")
    op.drop_table("properties")
