from __future__ import annotations

from datetime import UTC, datetime

from bank_ingest.conditions import parse_conditions
from bank_ingest.models import NormalizedTransaction
from bank_ingest.rules import (
    RuleEngine,
    RuleSnapshot,
    classify,
    load_rules,
    order_rules,
    rule_sort_key,
)
from db.client import session_scope
from db.models.ledger import MatchingRule

from tests.helpers.db import contains, seed_bank_account, seed_rule

ACCOUNT = 1


def _tx(description: str = "ACME PLUMBING repair flat 2", amount_minor: int = -12_000):
    return NormalizedTransaction(
        external_id="tx_1",
        amount_minor=amount_minor,
        currency="GBP",
        description=description,
        transaction_date=datetime(2026, 1, 20, 10, tzinfo=UTC),
    )


def _rule(
    rule_id: int,
    *,
    priority: int = 0,
    account_id: int | None = ACCOUNT,
    needle: str = "repair",
    property_id: int | None = None,
    transaction_type: str | None = None,
    category: str | None = None,
    enabled: bool = True,
) -> RuleSnapshot:
    return RuleSnapshot(
        id=rule_id,
        bank_account_id=account_id,
        priority=priority,
        name=f"rule {rule_id}",
        conditions=parse_conditions(contains(needle)),
        property_id=property_id,
        transaction_type=transaction_type,
        category=category,
        enabled=enabled,
    )


def test_sort_key_orders_by_priority_then_scope_then_id() -> None:
    global_p0 = _rule(1, priority=0, account_id=None)
    account_p1 = _rule(2, priority=1)
    account_p0 = _rule(5, priority=0)
    account_p0_later = _rule(7, priority=0)

    ordered = sorted([account_p1, global_p0, account_p0_later, account_p0], key=rule_sort_key)

    assert [r.id for r in ordered] == [5, 7, 1, 2]


def test_order_rules_drops_disabled_and_foreign_account_rules() -> None:
    rules = [
        _rule(1),
        _rule(2, enabled=False),
        _rule(3, account_id=ACCOUNT + 1),
        _rule(4, account_id=None),
    ]

    assert [r.id for r in order_rules(rules, ACCOUNT)] == [1, 4]


def test_fields_accumulate_across_rules_first_match_wins() -> None:
    rule_a = _rule(10, priority=0, property_id=7)
    rule_b = _rule(11, priority=1, property_id=9, transaction_type="Expense", category="Repair")

    result = classify(_tx(), order_rules([rule_b, rule_a], ACCOUNT))

    assert result.fields.property_id == 7
    assert result.fields.transaction_type == "Expense"
    assert result.fields.category == "Repair"
    assert result.matched_rule_ids == (10, 11)


def test_account_rule_wins_tie_against_global_rule() -> None:
    global_rule = _rule(1, account_id=None, transaction_type="Expense", category="Other")
    account_rule = _rule(2, transaction_type="Expense", category="Repair", property_id=3)

    result = classify(_tx(), order_rules([global_rule, account_rule], ACCOUNT))

    assert result.fields.category == "Repair"
    assert result.matched_rule_ids == (2,)


def test_evaluation_stops_once_every_field_is_set() -> None:
    complete = _rule(1, property_id=3, transaction_type="Expense", category="Repair")
    later = _rule(2, priority=5, property_id=4, transaction_type="Expense", category="Other")

    result = classify(_tx(), order_rules([complete, later], ACCOUNT))

    assert result.matched_rule_ids == (1,)
    assert result.fields.property_id == 3


def test_non_matching_and_unparseable_rules_contribute_nothing() -> None:
    miss = _rule(1, needle="deposit", transaction_type="Income", category="Security Deposit")
    broken = RuleSnapshot(
        id=2,
        bank_account_id=ACCOUNT,
        priority=0,
        name="broken",
        conditions=None,
        category="Other",
    )

    result = classify(_tx(), order_rules([miss, broken], ACCOUNT))

    assert result.fields.property_id is None
    assert result.fields.transaction_type is None
    assert result.fields.category is None
    assert result.matched_rule_ids == ()


def test_snapshot_from_row_with_malformed_conditions_never_matches() -> None:
    row = MatchingRule(
        id=3,
        bank_account_id=ACCOUNT,
        priority=0,
        enabled=True,
        name="bad",
        conditions={"operator": "XOR", "rules": []},
        type="Expense",
        category="Other",
    )

    snapshot = RuleSnapshot.from_row(row)

    assert snapshot.conditions is None
    assert classify(_tx(), [snapshot]).fields.category is None


def test_load_rules_reads_enabled_account_and_global_rules(db_url: str) -> None:
    account_id = seed_bank_account(db_url)
    other_account = seed_bank_account(db_url, account_name="Other")
    global_id = seed_rule(db_url, account_id=None, conditions=contains("repair"), priority=0)
    acct_rule = seed_rule(db_url, account_id=account_id, conditions=contains("x"), priority=0)
    seed_rule(db_url, account_id=account_id, conditions=contains("y"), enabled=False)
    seed_rule(db_url, account_id=other_account, conditions=contains("z"))
    late_id = seed_rule(db_url, account_id=account_id, conditions=contains("w"), priority=4)

    with session_scope(database_url=db_url) as session:
        rules = load_rules(session, account_id)

    assert [r.id for r in rules] == [acct_rule, global_id, late_id]


def test_engine_reuses_one_snapshot_per_account(db_url: str) -> None:
    account_id = seed_bank_account(db_url)
    seed_rule(
        db_url,
        account_id=account_id,
        conditions=contains("repair"),
        priority=5,
        type="Expense",
        category="Repair",
    )

    with session_scope(database_url=db_url) as session:
        engine = RuleEngine(session)
        first = engine.classify(_tx(), account_id)

    # A higher-priority rule added afterwards is not seen by the existing engine.
    seed_rule(
        db_url,
        account_id=account_id,
        conditions=contains("plumbing"),
        priority=0,
        type="Expense",
        category="Maintenance",
    )
    second = engine.classify(_tx(), account_id)

    with session_scope(database_url=db_url) as session:
        fresh = RuleEngine(session).classify(_tx(), account_id)

    assert first == second
    assert first.fields.category == "Repair"
    assert fresh.fields.category == "Maintenance"
