from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from bank_ingest.errors import ApprovalError, NotFoundError
from bank_ingest.persistence import ingest
from bank_ingest.review import (
    approve_pending,
    bulk_approve,
    bulk_reject,
    bulk_update_pending,
    count_unreviewed,
    list_pending,
    reject_pending,
    update_pending_fields,
)
from db.client import session_scope
from db.models.ledger import BankTransaction, PendingTransaction, Transaction
from sqlalchemy import select

from tests.helpers.db import count_rows, fetch_all, monzo_record, seed_bank_account

JAN_20 = datetime(2026, 1, 20, 10, 0, tzinfo=UTC)


def _seed_pending(db_url: str, account: int, *records: tuple[str, str, int]) -> dict[str, int]:
    """Ingest ``(external_id, description, day_offset)`` tuples; map external id to pending id."""

    batch = [
        monzo_record(ext, description=desc, amount=-1_000 - i, created=JAN_20 + timedelta(days))
        for i, (ext, desc, days) in enumerate(records)
    ]
    result = ingest(batch, account, database_url=db_url)
    assert result.pending == len(records)
    with session_scope(database_url=db_url) as session:
        rows = session.execute(
            select(BankTransaction.external_id, BankTransaction.pending_transaction_id).where(
                BankTransaction.bank_account_id == account
            )
        ).all()
    return {ext: pid for ext, pid in rows}


def _update(db_url: str, pending_id: int, **changes) -> None:
    with session_scope(database_url=db_url) as session:
        update_pending_fields(session, pending_id, **changes)


def _approve(db_url: str, pending_id: int) -> Transaction:
    with session_scope(database_url=db_url) as session:
        return approve_pending(session, pending_id, reviewed_by="alice@example.com")


def test_list_pending_is_newest_first_and_filters(db_url: str, account: int) -> None:
    other = seed_bank_account(db_url, account_name="Other")
    ids = _seed_pending(
        db_url, account, ("tx_1", "Boiler service", 0), ("tx_2", "B&Q Warrington", 3)
    )
    other_ids = _seed_pending(db_url, other, ("tx_9", "BOILER parts", 1))

    with session_scope(database_url=db_url) as session:
        everything = list_pending(session)
        mine = list_pending(session, bank_account_id=account)
        boilers = list_pending(session, search="  boiler ")
        count_all = count_unreviewed(session)
        count_other = count_unreviewed(session, bank_account_id=other)

    assert [p.id for p in everything] == [ids["tx_2"], other_ids["tx_9"], ids["tx_1"]]
    assert [p.external_id for p in mine] == ["tx_2", "tx_1"]
    assert {p.external_id for p in boilers} == {"tx_1", "tx_9"}
    assert (count_all, count_other) == (3, 1)
    item = mine[1]
    assert item.amount == Decimal("-10.00")
    assert item.currency == "GBP"
    assert item.bank_account_id == account
    assert item.reviewed_at is None


def test_update_sets_and_clears_only_given_fields(
    db_url: str, account: int, property_: int
) -> None:
    pid = _seed_pending(db_url, account, ("tx_1", "Boiler service", 0))["tx_1"]

    _update(db_url, pid, property_id=property_, transaction_type="Expense", category="Repair")
    _update(db_url, pid, category=None)

    with session_scope(database_url=db_url) as session:
        pending = session.get(PendingTransaction, pid)
        assert (pending.property_id, pending.type, pending.category) == (
            property_,
            "Expense",
            None,
        )


@pytest.mark.parametrize(
    ("changes", "error"),
    [
        ({"transaction_type": "Refund"}, ApprovalError),
        ({"colour": "blue"}, ApprovalError),
        ({"property_id": 404}, NotFoundError),
    ],
)
def test_update_rejects_bad_input(db_url: str, account: int, changes: dict, error: type) -> None:
    pid = _seed_pending(db_url, account, ("tx_1", "Boiler service", 0))["tx_1"]

    with pytest.raises(error):
        _update(db_url, pid, **changes)


def test_update_unknown_pending_item(db_url: str) -> None:
    with pytest.raises(NotFoundError):
        _update(db_url, 12345, category="Repair")


def test_approve_posts_transaction_and_keeps_reviewed_row(
    db_url: str, account: int, property_: int
) -> None:
    pid = _seed_pending(db_url, account, ("tx_1", "Boiler service", 0))["tx_1"]
    _update(db_url, pid, property_id=property_, transaction_type="Expense", category="Maintenance")

    tx = _approve(db_url, pid)

    assert tx.amount == Decimal("-10.00")
    assert (tx.property_id, tx.type, tx.category) == (property_, "Expense", "Maintenance")
    assert tx.is_imported is True
    (bank_tx,) = fetch_all(db_url, BankTransaction)
    assert bank_tx.transaction_id == tx.id
    assert bank_tx.pending_transaction_id is None
    with session_scope(database_url=db_url) as session:
        pending = session.get(PendingTransaction, pid)
        assert pending.reviewed_by == "alice@example.com"
        assert pending.reviewed_at is not None
        reviewed = list_pending(session, review_status="reviewed")
        assert count_unreviewed(session) == 0
    assert [p.id for p in reviewed] == [pid]

    with pytest.raises(ApprovalError, match="already been reviewed"):
        _approve(db_url, pid)


def test_approve_requires_complete_valid_fields(
    db_url: str, account: int, property_: int
) -> None:
    pid = _seed_pending(db_url, account, ("tx_1", "Boiler service", 0))["tx_1"]

    with pytest.raises(ApprovalError, match="missing property_id"):
        _approve(db_url, pid)

    _update(db_url, pid, property_id=property_, transaction_type="Income", category="Repair")
    with pytest.raises(ApprovalError, match="not valid for Income"):
        _approve(db_url, pid)

    assert count_rows(db_url, Transaction) == 0


def test_reject_removes_item_but_keeps_bank_record(db_url: str, account: int) -> None:
    record = monzo_record("tx_1", description="Boiler service")
    ingest([record], account, database_url=db_url)
    (bank_tx,) = fetch_all(db_url, BankTransaction)

    with session_scope(database_url=db_url) as session:
        rejected = reject_pending(session, bank_tx.pending_transaction_id)

    assert rejected.id == bank_tx.id
    (bank_tx,) = fetch_all(db_url, BankTransaction)
    assert bank_tx.rejected_at is not None
    assert bank_tx.pending_transaction_id is None
    assert bank_tx.transaction_id is None
    assert count_rows(db_url, PendingTransaction) == 0
    # the provider may send the record again; it must not come back
    assert ingest([record], account, database_url=db_url).duplicates_skipped == 1


def test_bulk_operations_report_per_item_failures(
    db_url: str, account: int, property_: int
) -> None:
    ids = _seed_pending(
        db_url,
        account,
        ("tx_1", "Boiler service", 0),
        ("tx_2", "Gutter clearing", 2),
        ("tx_3", "Key cutting", 4),
    )
    p1, p2, p3 = ids["tx_1"], ids["tx_2"], ids["tx_3"]

    updated = bulk_update_pending(
        [p1, p2, 999],
        database_url=db_url,
        property_id=property_,
        transaction_type="Expense",
        category="Maintenance",
    )
    approved = bulk_approve([p1, p3, p2], reviewed_by="bob", database_url=db_url)
    rejected = bulk_reject([p3, p1], database_url=db_url)

    assert updated.succeeded == [p1, p2]
    assert list(updated.failed) == [999]
    assert approved.succeeded == [p1, p2]
    assert "missing property_id" in approved.failed[p3]
    assert rejected.succeeded == [p3]
    assert "already been reviewed" in rejected.failed[p1]
    assert count_rows(db_url, Transaction) == 2
