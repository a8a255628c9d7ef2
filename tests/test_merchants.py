import pytest
from db.models.finance import Merchant, MerchantKeyword, Transaction
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from tally.merchants import (
    apply_all_merchants,
    clean_keywords,
    create_merchant,
    delete_merchant,
    get_merchant_from_vendor,
    list_merchants,
    merge_merchants,
    update_merchant,
)
from tally.models import MergeError

from tests.helpers.db import add_category, add_merchant, add_transaction


def _keywords(session, merchant_id):
    return sorted(
        session.execute(
            select(MerchantKeyword.keyword).where(MerchantKeyword.merchant_id == merchant_id)
        ).scalars()
    )


def test_clean_keywords_trims_and_dedupes_case_insensitively():
    assert clean_keywords([" Netflix ", "NETFLIX", "", "  ", "nflx"]) == ["Netflix", "nflx"]


def test_create_merchant_validates_name_and_category(db_session):
    cat = add_category(db_session, "u1", "Coffee")
    view = create_merchant(
        db_session, "u1", name="  Blue   Bottle ", recommended_category_id=cat.id, keywords=["BLUE BOTTLE"]
    )
    assert view.name == "Blue Bottle"
    assert view.keywords == ("BLUE BOTTLE",)

    with pytest.raises(ValueError, match="already exists"):
        create_merchant(db_session, "u1", name="blue bottle")
    with pytest.raises(ValueError, match="Category not found"):
        create_merchant(db_session, "u1", name="X", recommended_category_id="nope")
    with pytest.raises(ValueError, match="empty"):
        create_merchant(db_session, "u1", name="   ")


def test_list_and_vendor_lookup(db_session):
    add_merchant(db_session, "u1", "Zed", ["ZED"])
    a = add_merchant(db_session, "u1", "alpha", ["ALPHA"])
    assert [m.name for m in list_merchants(db_session, "u1")] == ["alpha", "Zed"]
    assert get_merchant_from_vendor(db_session, "u1", "alpha store 9").id == a.id
    assert get_merchant_from_vendor(db_session, "u1", "nothing") is None


def test_update_merchant_name_only_does_not_propagate(db_session):
    m = add_merchant(db_session, "u1", "Old", ["OLD"])
    add_transaction(db_session, "u1", "OLD SHOP")

    result = update_merchant(db_session, "u1", m.id, name="New")

    assert result.propagation is None
    assert result.updated_count == 0
    assert result.message == "Merchant updated successfully"


def test_update_merchant_replaces_keywords_and_reports_count(db_session):
    m = add_merchant(db_session, "u1", "Netflix", ["NFLX"])
    add_transaction(db_session, "u1", "NETFLIX.COM")

    result = update_merchant(db_session, "u1", m.id, keywords=["netflix", "Netflix "])

    assert _keywords(db_session, m.id) == ["netflix"]
    assert result.updated_count == 1
    assert result.message == "Updated 1 transaction with this merchant"


def test_apply_all_merchants(db_session):
    m = add_merchant(db_session, "u1", "Uber", ["UBER"])
    add_transaction(db_session, "u1", "UBER TRIP")
    results = apply_all_merchants(db_session, "u1")
    assert [(r.merchant_id, r.updated_count) for r in results] == [(m.id, 1)]


def test_delete_merchant_keeps_transactions(db_session):
    cat = add_category(db_session, "u1", "Rides")
    m = add_merchant(db_session, "u1", "Uber", ["UBER"])
    tx = add_transaction(db_session, "u1", "UBER TRIP", merchant=m, category=cat)

    assert delete_merchant(db_session, "u1", m.id) == 1

    db_session.expire_all()
    row = db_session.get(Transaction, tx.id)
    assert row.merchant_id is None
    assert row.category_id == cat.id
    assert _keywords(db_session, m.id) == []


def test_merge_unions_keywords_and_repoints_transactions(db_session):
    source = add_merchant(db_session, "u1", "Amzn", ["AMZN", "amazon"])
    target = add_merchant(db_session, "u1", "Amazon", ["AMAZON"])
    t1 = add_transaction(db_session, "u1", "AMZN MKTP", merchant=source)
    t2 = add_transaction(db_session, "u1", "AMZN DIGITAL", merchant=source, reviewed=True)

    result = merge_merchants(db_session, "u1", source.id, target.id)

    assert result.keywords_added == 1
    assert result.transactions_reassigned == 2
    assert result.message == (
        'Successfully merged "Amzn" into "Amazon". 1 keywords added, 2 transactions reassigned.'
    )
    assert _keywords(db_session, target.id) == ["AMAZON", "AMZN"]
    db_session.expire_all()
    assert db_session.get(Merchant, source.id) is None
    assert {db_session.get(Transaction, t.id).merchant_id for t in (t1, t2)} == {target.id}


def test_merge_rejects_self_and_unknown(db_session):
    m = add_merchant(db_session, "u1", "A")
    with pytest.raises(ValueError):
        merge_merchants(db_session, "u1", m.id, m.id)
    with pytest.raises(ValueError):
        merge_merchants(db_session, "u1", m.id, "missing")


def test_merge_failure_is_atomic(db_session, monkeypatch):
    source = add_merchant(db_session, "u1", "Src", ["SRC"])
    target = add_merchant(db_session, "u1", "Dst", ["DST"])
    tx = add_transaction(db_session, "u1", "SRC 1", merchant=source)

    real_delete = db_session.delete

    def failing_delete(obj):
        if isinstance(obj, Merchant):
            raise SQLAlchemyError("delete failed")
        real_delete(obj)

    monkeypatch.setattr(db_session, "delete", failing_delete)

    with pytest.raises(MergeError):
        merge_merchants(db_session, "u1", source.id, target.id)

    db_session.expire_all()
    assert db_session.get(Transaction, tx.id).merchant_id == source.id
    assert db_session.get(Merchant, source.id) is not None
    assert _keywords(db_session, target.id) == ["DST"]
