import datetime as dt

import pytest
from db.models.finance import MerchantKeyword, Transaction
from sqlalchemy import func, select
from tally.models import ApiTransaction, NewTransaction
from tally.transactions import (
    create_transaction,
    delete_transaction,
    import_transactions,
    match_display_vendor,
    split_over_months,
    split_transaction,
    toggle_reviewed,
    update_display_vendor,
    update_notes,
    update_transaction_category,
    update_transaction_merchant,
)

from tests.helpers.db import add_category, add_merchant, add_transaction


def _count(session, user_id="u1"):
    return session.execute(
        select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)
    ).scalar_one()


def _api(ext, details="COFFEE", amount=-450, day=15, **kw):
    return ApiTransaction(
        amount=amount,
        date=dt.date(2024, 1, day),
        transaction_details=details,
        external_id=ext,
        **kw,
    )


def _keywords(session, merchant_id):
    return sorted(
        session.execute(
            select(MerchantKeyword.keyword).where(MerchantKeyword.merchant_id == merchant_id)
        ).scalars()
    )


# ---- import ---------------------------------------------------------------------


def test_import_is_idempotent(db_session):
    batch = [_api("A1"), _api("A2"), _api("A3")]
    assert import_transactions(db_session, "u1", batch) == 3
    assert import_transactions(db_session, "u1", batch) == 0
    assert _count(db_session) == 3


def test_import_dedup_is_per_user_and_within_batch(db_session):
    assert import_transactions(db_session, "u1", [_api("A1"), _api("A1")]) == 1
    assert import_transactions(db_session, "u2", [_api("A1")]) == 1
    assert _count(db_session, "u1") == 1


def test_import_fills_recommendations_but_explicit_ids_win(db_session):
    coffee = add_category(db_session, "u1", "Coffee")
    treats = add_category(db_session, "u1", "Treats")
    sbux = add_merchant(db_session, "u1", "Starbucks", ["STARBUCKS"], category=coffee)

    import_transactions(
        db_session,
        "u1",
        [
            _api("S1", "STARBUCKS #1"),
            _api("S2", "STARBUCKS #2", category_id=treats.id),
            _api("X1", "UNKNOWN"),
        ],
    )

    rows = {
        r.external_id: r
        for r in db_session.execute(select(Transaction).where(Transaction.user_id == "u1")).scalars()
    }
    assert (rows["S1"].merchant_id, rows["S1"].category_id) == (sbux.id, coffee.id)
    assert rows["S1"].display_vendor == "Starbucks"
    assert (rows["S2"].merchant_id, rows["S2"].category_id) == (sbux.id, treats.id)
    assert rows["X1"].merchant_id is None and rows["X1"].category_id is None
    assert all(r.reviewed is False for r in rows.values())
    assert rows["S1"].transaction_details == "STARBUCKS #1"


def test_import_rejects_foreign_ids(db_session):
    other = add_category(db_session, "u2", "Not mine")
    with pytest.raises(ValueError, match="Category not found"):
        import_transactions(db_session, "u1", [_api("A1", category_id=other.id)])


def test_import_empty_batch(db_session):
    assert import_transactions(db_session, "u1", []) == 0


# ---- manual creation --------------------------------------------------------------


def test_create_transaction_uses_recommendation(db_session):
    coffee = add_category(db_session, "u1", "Coffee")
    add_transaction(db_session, "u1", "BLUE BOTTLE 12", reviewed=True, category=coffee)

    row = create_transaction(
        db_session,
        "u1",
        NewTransaction(amount=-500, date=dt.date(2024, 2, 1), transaction_details="BLUE BOTTLE 12"),
    )

    assert row.category_id == coffee.id
    assert row.merchant_id is None
    assert row.external_id is None


def test_create_transaction_requires_details(db_session):
    with pytest.raises(ValueError):
        create_transaction(
            db_session, "u1", NewTransaction(amount=1, date=dt.date(2024, 1, 1), transaction_details=" ")
        )


# ---- review edits -----------------------------------------------------------------


def test_simple_edits(db_session):
    cat = add_category(db_session, "u1", "Misc")
    tx = add_transaction(db_session, "u1", "THING")

    assert update_transaction_category(db_session, "u1", tx.id, cat.id).category_id == cat.id
    assert toggle_reviewed(db_session, "u1", tx.id).reviewed is True
    assert toggle_reviewed(db_session, "u1", tx.id).reviewed is False
    assert update_notes(db_session, "u1", tx.id, "gift").notes == "gift"
    assert update_display_vendor(db_session, "u1", tx.id, "  Thing Co ").display_vendor == "Thing Co"
    with pytest.raises(ValueError):
        update_transaction_category(db_session, "u2", tx.id, None)

    delete_transaction(db_session, "u1", tx.id)
    assert _count(db_session) == 0


def test_merchant_reassignment_learns_and_forgets_keywords(db_session):
    coffee = add_category(db_session, "u1", "Coffee")
    wrong = add_merchant(db_session, "u1", "Wrong", ["PEET S #77", "PEET"])
    right = add_merchant(db_session, "u1", "Peet's", ["PEETS"], category=coffee)
    tx = add_transaction(db_session, "u1", "PEET S #77", merchant=wrong)

    row = update_transaction_merchant(db_session, "u1", tx.id, right.id)

    assert row.merchant_id == right.id
    assert row.category_id == coffee.id
    assert row.display_vendor == "Peet's"
    assert _keywords(db_session, wrong.id) == ["PEET"]
    assert _keywords(db_session, right.id) == ["PEET S #77", "PEETS"]


def test_merchant_reassignment_skips_learning_when_keyword_matches(db_session):
    keep = add_category(db_session, "u1", "Keep")
    m = add_merchant(db_session, "u1", "Uber", ["UBER"])
    tx = add_transaction(db_session, "u1", "UBER *TRIP", category=keep)

    row = update_transaction_merchant(db_session, "u1", tx.id, m.id)

    assert _keywords(db_session, m.id) == ["UBER"]
    assert row.category_id == keep.id


def test_clearing_merchant_drops_its_display_label(db_session):
    keep = add_category(db_session, "u1", "Keep")
    m = add_merchant(db_session, "u1", "Lyft", ["LYFT"])
    tx = add_transaction(db_session, "u1", "LYFT *RIDE", merchant=m, category=keep)
    tx.display_vendor = "Lyft"
    labelled = add_transaction(db_session, "u1", "LYFT *BIKE", merchant=m)
    labelled.display_vendor = "Bike share"
    db_session.flush()

    row = update_transaction_merchant(db_session, "u1", tx.id, None)
    assert row.merchant_id is None
    assert row.display_vendor is None
    assert row.category_id == keep.id

    kept = update_transaction_merchant(db_session, "u1", labelled.id, None)
    assert kept.display_vendor == "Bike share"


# ---- splits -----------------------------------------------------------------------


def test_split_conserves_amount(db_session):
    cat = add_category(db_session, "u1", "Groceries")
    tx = add_transaction(
        db_session, "u1", "COSTCO #1", amount=-5000, category=cat, external_id="F1"
    )

    original, part = split_transaction(db_session, "u1", tx.id, -2000)

    assert (original.amount, part.amount) == (-3000, -2000)
    assert original.amount + part.amount == -5000
    assert part.transaction_details == original.transaction_details
    assert part.date == original.date
    assert part.category_id == cat.id
    assert part.external_id == "F1SPLIT-2000"
    assert original.external_id == "F1"


@pytest.mark.parametrize("amount", [0, 2000, -5000, -6000])
def test_split_rejects_invalid_amounts(db_session, amount):
    tx = add_transaction(db_session, "u1", "X", amount=-5000)
    with pytest.raises(ValueError):
        split_transaction(db_session, "u1", tx.id, amount)


def test_split_over_months(db_session):
    cat = add_category(db_session, "u1", "Insurance")
    m = add_merchant(db_session, "u1", "Geico", ["GEICO"])
    tx = add_transaction(
        db_session,
        "u1",
        "GEICO ANNUAL",
        amount=-10001,
        date=dt.date(2024, 11, 20),
        merchant=m,
        category=cat,
        external_id="G1",
        reviewed=True,
    )

    result = split_over_months(db_session, "u1", tx.id, 3)

    rows = [db_session.get(Transaction, i) for i in result.transaction_ids]
    assert [r.amount for r in rows] == [-3334, -3334, -3333]
    assert sum(r.amount for r in rows) == -10001
    assert [r.date for r in rows] == [dt.date(2024, 11, 1), dt.date(2024, 12, 1), dt.date(2025, 1, 1)]
    assert [r.transaction_details for r in rows] == [
        "GEICO ANNUAL (Split 1/3)",
        "GEICO ANNUAL (Split 2/3)",
        "GEICO ANNUAL (Split 3/3)",
    ]
    assert {r.split_group_id for r in rows} == {result.split_group_id}
    assert all(r.reviewed is False and r.original_amount == -10001 for r in rows)
    assert rows[0].external_id == "G1"
    assert db_session.get(Transaction, tx.id) is None
    assert _count(db_session) == 3


def test_split_over_months_preconditions(db_session):
    cat = add_category(db_session, "u1", "C")
    no_merchant = add_transaction(db_session, "u1", "X", category=cat)
    with pytest.raises(ValueError, match="merchant"):
        split_over_months(db_session, "u1", no_merchant.id, 2)
    with pytest.raises(ValueError, match="between"):
        split_over_months(db_session, "u1", no_merchant.id, 1)


# ---- display vendor ---------------------------------------------------------------


def test_match_display_vendor(db_session):
    tx = add_transaction(db_session, "u1", "SQ *BLUE BOTTLE COFFEE 123")
    tx.display_vendor = "Blue Bottle"
    db_session.flush()

    assert match_display_vendor(db_session, "u1", "SQ *BLUE BOTTLE COFFEE 123") == "Blue Bottle"
    assert match_display_vendor(db_session, "u1", "SQ *BLUE BOTTLE COFFEE 999") == "Blue Bottle"
    assert match_display_vendor(db_session, "u1", "TARGET 00012") is None
    assert match_display_vendor(db_session, "u1", "SQ") is None
