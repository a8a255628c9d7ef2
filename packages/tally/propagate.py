"""Retroactive merchant propagation over existing transactions.

When a merchant's keywords or recommended category change, two passes bring
the user's transactions in line:

- keyword pass: *unreviewed* rows whose raw details contain one of the
  merchant's keywords (same case-insensitive rule as :mod:`tally.keywords`)
  are pointed at the merchant and, when it has one, its recommended category.
  Only rows that would actually change are touched.
- refresh pass: rows already pointing at the merchant, reviewed or not, get
  the merchant's current recommended category if they differ.

Both passes run inside one SAVEPOINT. Either every change of an invocation is
applied or none is, and the returned counts are the exact rows written.
"""

from __future__ import annotations

from collections.abc import Sequence

from db.models.finance import Merchant, Transaction
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .keywords import MerchantView, keyword_matches, load_merchant_views, match, to_view
from .logging_setup import get_logger
from .models import PropagationError, PropagationResult

logger = get_logger(__name__)

# Upper bound on ids per UPDATE ... WHERE id IN (...) statement.
_ID_CHUNK = 500


def _differs(column, value: str):
    return or_(column.is_(None), column != value)


def _unreviewed_rows(session: Session, user_id: str):
    return session.execute(
        select(
            Transaction.id,
            Transaction.transaction_details,
            Transaction.merchant_id,
            Transaction.category_id,
        ).where(Transaction.user_id == user_id, Transaction.reviewed.is_(False))
    ).all()


def _would_change(merchant: MerchantView, merchant_id: str | None, category_id: str | None) -> bool:
    rec = merchant.recommended_category_id
    return merchant_id != merchant.id or (rec is not None and category_id != rec)


def _keyword_candidates(session: Session, user_id: str, merchant: MerchantView) -> list[str]:
    """Ids of unreviewed rows matching the merchant's keywords that would change."""

    if not merchant.keywords:
        return []
    return [
        tx_id
        for tx_id, details, merchant_id, category_id in _unreviewed_rows(session, user_id)
        if any(keyword_matches(details, kw) for kw in merchant.keywords)
        and _would_change(merchant, merchant_id, category_id)
    ]


def _assign_merchant(session: Session, user_id: str, merchant: MerchantView, ids: Sequence[str]) -> int:
    values: dict[str, object] = {"merchant_id": merchant.id}
    if merchant.recommended_category_id is not None:
        values["category_id"] = merchant.recommended_category_id
    total = 0
    for start in range(0, len(ids), _ID_CHUNK):
        chunk = ids[start : start + _ID_CHUNK]
        result = session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.reviewed.is_(False),
                Transaction.id.in_(chunk),
            )
            .values(**values)
        )
        total += result.rowcount or 0
    return total


def _refresh_category(session: Session, user_id: str, merchant: MerchantView) -> int:
    rec = merchant.recommended_category_id
    if rec is None:
        return 0
    result = session.execute(
        update(Transaction)
        .where(
            Transaction.user_id == user_id,
            Transaction.merchant_id == merchant.id,
            _differs(Transaction.category_id, rec),
        )
        .values(category_id=rec)
    )
    return result.rowcount or 0


def _load_merchant(session: Session, user_id: str, merchant_id: str) -> MerchantView:
    row = (
        session.execute(
            select(Merchant)
            .where(Merchant.id == merchant_id, Merchant.user_id == user_id)
            .options(selectinload(Merchant.keywords))
        )
        .scalars()
        .first()
    )
    if row is None:
        raise ValueError(f"Merchant not found: {merchant_id!r}")
    return to_view(row)


def propagate_view(session: Session, user_id: str, merchant: MerchantView) -> PropagationResult:
    """Apply ``merchant`` to the user's transactions atomically."""

    try:
        with session.begin_nested():
            ids = _keyword_candidates(session, user_id, merchant)
            matched = _assign_merchant(session, user_id, merchant, ids)
            refreshed = _refresh_category(session, user_id, merchant)
    except SQLAlchemyError as e:
        logger.error("propagation for merchant %s failed; nothing applied: %s", merchant.id, e)
        raise PropagationError(f"Failed to apply merchant {merchant.name!r}: {e}") from e

    result = PropagationResult(
        merchant_id=merchant.id, keyword_matched=matched, category_refreshed=refreshed
    )
    logger.info(
        "propagated merchant %s: %d keyword-matched, %d category-refreshed",
        merchant.id,
        matched,
        refreshed,
    )
    return result


def propagate(session: Session, user_id: str, merchant_id: str) -> PropagationResult:
    """Propagate the stored definition of ``merchant_id``.

    Raises ``ValueError`` when the merchant does not exist for the user and
    :class:`~tally.models.PropagationError` when the update could not be
    applied as a whole.
    """

    merchant = _load_merchant(session, user_id, merchant_id)
    return propagate_view(session, user_id, merchant)


def propagate_all(session: Session, user_id: str) -> list[PropagationResult]:
    """Apply every merchant with keywords in one atomic step.

    A row matching several merchants goes to the one :func:`tally.keywords.match`
    picks (earliest created), so the outcome equals what the recommendation
    engine would suggest for it today.
    """

    merchants = [m for m in load_merchant_views(session, user_id) if m.keywords]
    if not merchants:
        return []

    try:
        with session.begin_nested():
            by_merchant: dict[str, list[str]] = {m.id: [] for m in merchants}
            for tx_id, details, merchant_id, category_id in _unreviewed_rows(session, user_id):
                hit = match(details, merchants)
                if hit is not None and _would_change(hit, merchant_id, category_id):
                    by_merchant[hit.id].append(tx_id)
            results = []
            for merchant in merchants:
                matched = _assign_merchant(session, user_id, merchant, by_merchant[merchant.id])
                refreshed = _refresh_category(session, user_id, merchant)
                results.append(
                    PropagationResult(
                        merchant_id=merchant.id,
                        keyword_matched=matched,
                        category_refreshed=refreshed,
                    )
                )
    except SQLAlchemyError as e:
        logger.error("applying all merchants for user %s failed; nothing applied: %s", user_id, e)
        raise PropagationError(f"Failed to apply merchants: {e}") from e

    logger.info(
        "applied %d merchants for user %s: %d transactions updated",
        len(results),
        user_id,
        sum(r.updated_count for r in results),
    )
    return results


__all__ = [
    "propagate",
    "propagate_view",
    "propagate_all",
]
