from __future__ import annotations

from datetime import UTC, datetime

import pytest
from bank_ingest.decide import ClassificationDecider
from bank_ingest.models import ClassificationFields, NormalizedTransaction
from db.client import session_scope

TX = NormalizedTransaction(
    external_id="tx_1",
    amount_minor=-12_000,
    currency="GBP",
    description="ACME PLUMBING",
    transaction_date=datetime(2026, 1, 20, 10, tzinfo=UTC),
)


def _decide(db_url: str, fields: ClassificationFields):
    with session_scope(database_url=db_url) as session:
        return ClassificationDecider(session).decide(TX, fields)


def test_complete_valid_fields_post(db_url: str, property_: int) -> None:
    fields = ClassificationFields(property_, "Expense", "Repair")

    decision = _decide(db_url, fields)

    assert decision.should_post
    assert decision.fields == fields
    assert decision.reasons == ()


@pytest.mark.parametrize(
    ("fields", "reason"),
    [
        (ClassificationFields(None, "Expense", "Repair"), "missing property_id"),
        (ClassificationFields(None, None, None), "missing transaction_type"),
        (ClassificationFields(None, "Income", None), "missing category"),
    ],
)
def test_incomplete_fields_go_pending(
    db_url: str, fields: ClassificationFields, reason: str
) -> None:
    decision = _decide(db_url, fields)

    assert decision.outcome == "pending"
    assert reason in decision.reasons
    # partial suggestions are kept for the reviewer
    assert decision.fields == fields


def test_unknown_property_goes_pending(db_url: str) -> None:
    decision = _decide(db_url, ClassificationFields(404, "Expense", "Repair"))

    assert decision.outcome == "pending"
    assert decision.reasons == ("property 404 does not exist",)


def test_category_from_the_other_type_goes_pending(db_url: str, property_: int) -> None:
    decision = _decide(db_url, ClassificationFields(property_, "Income", "Maintenance"))

    assert decision.outcome == "pending"
    assert len(decision.reasons) == 1
    assert "'Maintenance' is not valid for Income" in decision.reasons[0]
    assert "Rent" in decision.reasons[0]


def test_type_and_category_are_case_sensitive(db_url: str, property_: int) -> None:
    lower_type = _decide(db_url, ClassificationFields(property_, "expense", "Repair"))
    lower_category = _decide(db_url, ClassificationFields(property_, "Expense", "repair"))

    assert lower_type.reasons == ("unknown transaction type 'expense'",)
    assert lower_category.outcome == "pending"


def test_property_lookups_are_cached_per_decider(
    db_url: str, property_: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    with session_scope(database_url=db_url) as session:
        decider = ClassificationDecider(session)
        assert decider.property_exists(property_)
        assert not decider.property_exists(property_ + 1)

        monkeypatch.setattr(session, "get", lambda *a, **k: pytest.fail("property looked up twice"))
        assert decider.property_exists(property_)
        assert not decider.property_exists(property_ + 1)
