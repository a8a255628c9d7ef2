"""Merchant service operations.

Merchants are user-defined vendor entities with keyword lists. Edits that can
change which transactions a merchant claims (keywords, recommended category)
trigger :mod:`tally.propagate`, and the reported count is the exact number of
rows that propagation wrote.

All functions take a caller-owned ``Session``; none of them commit.
"""

from __future__ import annotations

from collections.abc import Iterable

from db.models.finance import Category, Merchant, MerchantKeyword, Transaction
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .keywords import MerchantView, load_merchant_views, match, to_view
from .logging_setup import get_logger
from .models import MergeError, MergeResult, MerchantUpdateResult, PropagationResult
from .propagate import propagate_all, propagate_view

logger = get_logger(__name__)

_UNSET = object()


def clean_keywords(keywords: Iterable[str]) -> list[str]:
    """Trim, drop blanks and de-duplicate case-insensitively (first spelling wins)."""

    seen: set[str] = set()
    out: list[str] = []
    for kw in keywords:
        k = kw.strip()
        if not k or k.casefold() in seen:
            continue
        seen.add(k.casefold())
        out.append(k)
    return out


def _get(session: Session, user_id: str, merchant_id: str) -> Merchant:
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
    return row


def _check_name(session: Session, user_id: str, name: str, *, exclude_id: str | None = None) -> str:
    n = " ".join(name.strip().split())
    if not n:
        raise ValueError("Merchant name cannot be empty")
    stmt = select(Merchant.id).where(
        Merchant.user_id == user_id, func.lower(Merchant.name) == n.lower()
    )
    if exclude_id is not None:
        stmt = stmt.where(Merchant.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise ValueError(f"Merchant '{n}' already exists")
    return n


def _check_category(session: Session, user_id: str, category_id: str | None) -> None:
    if category_id is None:
        return
    found = session.execute(
        select(Category.id).where(Category.id == category_id, Category.user_id == user_id)
    ).first()
    if found is None:
        raise ValueError(f"Category not found: {category_id!r}")


def list_merchants(session: Session, user_id: str) -> list[MerchantView]:
    """Return the user's merchants sorted by name."""

    return sorted(load_merchant_views(session, user_id), key=lambda m: (m.name.lower(), m.id))


def get_merchant_from_vendor(session: Session, user_id: str, vendor: str) -> MerchantView | None:
    """Return the merchant whose keyword matches ``vendor``, if any."""

    return match(vendor, load_merchant_views(session, user_id))


def create_merchant(
    session: Session,
    user_id: str,
    *,
    name: str,
    recommended_category_id: str | None = None,
    keywords: Iterable[str] = (),
) -> MerchantView:
    n = _check_name(session, user_id, name)
    _check_category(session, user_id, recommended_category_id)

    row = Merchant(user_id=user_id, name=n, recommended_category_id=recommended_category_id)
    row.keywords = [
        MerchantKeyword(user_id=user_id, keyword=kw) for kw in clean_keywords(keywords)
    ]
    session.add(row)
    session.flush()
    logger.info("created merchant %s (%s) with %d keywords", row.id, n, len(row.keywords))
    return to_view(row)


def _replace_keywords(session: Session, row: Merchant, keywords: Iterable[str]) -> None:
    session.execute(delete(MerchantKeyword).where(MerchantKeyword.merchant_id == row.id))
    session.expire(row, ["keywords"])
    for kw in clean_keywords(keywords):
        session.add(MerchantKeyword(merchant_id=row.id, user_id=row.user_id, keyword=kw))
    session.flush()
    session.expire(row, ["keywords"])


def update_merchant(
    session: Session,
    user_id: str,
    merchant_id: str,
    *,
    name: str | None = None,
    recommended_category_id: str | None | object = _UNSET,
    keywords: Iterable[str] | None = None,
) -> MerchantUpdateResult:
    """Update a merchant and propagate when its matching definition changed.

    Passing ``recommended_category_id=None`` clears it. Passing ``keywords``
    replaces the whole keyword list. Either change runs propagation; a failed
    propagation raises :class:`~tally.models.PropagationError` and leaves the
    merchant itself unchanged as well.
    """

    row = _get(session, user_id, merchant_id)

    with session.begin_nested():
        if name is not None:
            row.name = _check_name(session, user_id, name, exclude_id=row.id)
        category_changed = recommended_category_id is not _UNSET
        if category_changed:
            rec = None if recommended_category_id is None else str(recommended_category_id)
            _check_category(session, user_id, rec)
            row.recommended_category_id = rec
        if keywords is not None:
            _replace_keywords(session, row, keywords)
        session.flush()

        propagation: PropagationResult | None = None
        if keywords is not None or category_changed:
            propagation = propagate_view(session, user_id, to_view(row))

    return MerchantUpdateResult(merchant_id=row.id, propagation=propagation)


def apply_merchant(session: Session, user_id: str, merchant_id: str) -> PropagationResult:
    """Re-run propagation for one merchant as currently stored."""

    row = _get(session, user_id, merchant_id)
    return propagate_view(session, user_id, to_view(row))


def apply_all_merchants(session: Session, user_id: str) -> list[PropagationResult]:
    return propagate_all(session, user_id)


def delete_merchant(session: Session, user_id: str, merchant_id: str) -> int:
    """Delete a merchant; returns how many transactions lost their merchant link.

    Keywords go with the merchant; transactions stay and keep their category.
    """

    row = _get(session, user_id, merchant_id)
    unlinked = session.execute(
        update(Transaction)
        .where(Transaction.user_id == user_id, Transaction.merchant_id == merchant_id)
        .values(merchant_id=None)
    ).rowcount
    session.delete(row)
    session.flush()
    logger.info("deleted merchant %s; unlinked %d transactions", merchant_id, unlinked or 0)
    return unlinked or 0


def merge_merchants(
    session: Session, user_id: str, source_id: str, target_id: str
) -> MergeResult:
    """Fold ``source_id`` into ``target_id`` atomically.

    Source keywords missing from the target (compared case-insensitively) are
    added to it, every transaction of the source is repointed to the target,
    and the source is deleted. On failure nothing of the merge remains.
    """

    if source_id == target_id:
        raise ValueError("Cannot merge a merchant into itself")
    source = _get(session, user_id, source_id)
    target = _get(session, user_id, target_id)

    existing = {k.keyword.casefold() for k in target.keywords}
    to_add = [
        kw
        for kw in clean_keywords(k.keyword for k in source.keywords)
        if kw.casefold() not in existing
    ]

    try:
        with session.begin_nested():
            for kw in to_add:
                session.add(MerchantKeyword(merchant_id=target.id, user_id=user_id, keyword=kw))
            reassigned = session.execute(
                update(Transaction)
                .where(Transaction.user_id == user_id, Transaction.merchant_id == source.id)
                .values(merchant_id=target.id)
            ).rowcount or 0
            session.delete(source)
            session.flush()
    except SQLAlchemyError as e:
        logger.error("merge of %s into %s failed; nothing applied: %s", source_id, target_id, e)
        raise MergeError(f"Failed to merge merchants: {e}") from e

    session.expire(target, ["keywords"])
    message = (
        f'Successfully merged "{source.name}" into "{target.name}". '
        f"{len(to_add)} keywords added, {reassigned} transactions reassigned."
    )
    logger.info(message)
    return MergeResult(
        source_merchant_id=source_id,
        target_merchant_id=target_id,
        keywords_added=len(to_add),
        transactions_reassigned=reassigned,
        message=message,
    )


__all__ = [
    "clean_keywords",
    "list_merchants",
    "get_merchant_from_vendor",
    "create_merchant",
    "update_merchant",
    "apply_merchant",
    "apply_all_merchants",
    "delete_merchant",
    "merge_merchants",
]
