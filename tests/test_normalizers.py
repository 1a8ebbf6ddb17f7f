from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from bank_ingest.config import PipelineSettings
from bank_ingest.errors import NormalizationError
from bank_ingest.normalizers import normalize_record
from db.models.ledger import BankAccount

from tests.helpers.db import monzo_record


def test_monzo_record_to_normalized_transaction() -> None:
    raw = monzo_record(
        "tx_0000A1",
        amount=15_000,
        description="  FASTER PAYMENT J SMITH  ",
        account_id="acc_00009",
        notes="FLAT2-JAN",
        counterparty={"name": "J Smith", "sort_code": "040004"},
        merchant={"name": "Ignored Ltd", "logo": "https://example.invalid/x.png"},
        settled="2026-01-21T09:00:00Z",
    )

    tx = normalize_record(raw)

    assert tx.external_id == "tx_0000A1"
    assert tx.amount_minor == 15_000
    assert tx.amount == Decimal("150.00")
    assert tx.currency == "GBP"
    assert tx.description == "FASTER PAYMENT J SMITH"
    assert tx.transaction_date == datetime(2026, 1, 20, 10, 0, tzinfo=UTC)
    assert tx.settled_date == datetime(2026, 1, 21, 9, 0, tzinfo=UTC)
    assert tx.counterparty_name == "J Smith"
    assert tx.reference == "FLAT2-JAN"
    assert tx.merchant == "Ignored Ltd"
    assert tx.provider_category == "general"
    assert tx.provider_account_id == "acc_00009"


def test_blank_optional_fields_become_none() -> None:
    tx = normalize_record(monzo_record("tx_1", notes="   ", settled="", category=""))

    assert tx.reference is None
    assert tx.settled_date is None
    assert tx.provider_category is None
    assert tx.merchant is None
    assert tx.counterparty_name is None


def test_timestamps_are_converted_to_utc() -> None:
    naive = normalize_record(monzo_record("tx_1", created="2026-01-20T10:00:00"))
    offset = normalize_record(monzo_record("tx_2", created="2026-01-20T11:00:00+01:00"))

    assert naive.transaction_date == datetime(2026, 1, 20, 10, 0, tzinfo=UTC)
    assert offset.transaction_date == datetime(2026, 1, 20, 10, 0, tzinfo=UTC)
    assert offset.transaction_date.tzinfo is UTC


def test_merchant_may_be_a_plain_string_or_nameless_object() -> None:
    assert normalize_record(monzo_record("tx_1", merchant="Tesco")).merchant == "Tesco"
    assert normalize_record(monzo_record("tx_2", merchant={"id": "merch_1"})).merchant is None


def test_amount_sign_is_preserved() -> None:
    assert normalize_record(monzo_record("tx_1", amount=-2_550)).amount == Decimal("-25.50")


def test_currency_defaults_from_settings_and_is_upper_cased() -> None:
    raw = monzo_record("tx_1")
    raw.pop("currency")

    assert normalize_record(raw).currency == "GBP"
    assert normalize_record(raw, settings=PipelineSettings(default_currency="eur")).currency == (
        "EUR"
    )
    assert normalize_record(monzo_record("tx_2", currency="usd")).currency == "USD"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"amount": 12.5}, "amount"),
        ({"amount": "100"}, "amount"),
        ({"amount": True}, "amount"),
        ({"created": "yesterday"}, "created"),
        ({"description": "   "}, "description"),
        ({"currency": "POUNDS"}, "currency"),
    ],
)
def test_invalid_fields_raise_with_location(overrides: dict, message: str) -> None:
    with pytest.raises(NormalizationError) as excinfo:
        normalize_record(monzo_record("tx_bad", **overrides))

    assert message in str(excinfo.value)
    assert excinfo.value.external_id == "tx_bad"


def test_missing_id_raises_without_external_id() -> None:
    raw = monzo_record("tx_1")
    del raw["id"]

    with pytest.raises(NormalizationError) as excinfo:
        normalize_record(raw)

    assert excinfo.value.external_id is None


def test_non_mapping_record_rejected() -> None:
    with pytest.raises(NormalizationError):
        normalize_record(["tx_1", -100])  # type: ignore[arg-type]


def test_record_for_another_provider_account_rejected() -> None:
    account = BankAccount(id=3, account_name="Rent", external_account_id="acc_00009")

    ok = normalize_record(monzo_record("tx_1", account_id="acc_00009"), bank_account=account)
    unscoped = normalize_record(monzo_record("tx_2"), bank_account=account)
    with pytest.raises(NormalizationError) as excinfo:
        normalize_record(monzo_record("tx_3", account_id="acc_99999"), bank_account=account)

    assert ok.provider_account_id == "acc_00009"
    assert unscoped.provider_account_id is None
    assert excinfo.value.external_id == "tx_3"
