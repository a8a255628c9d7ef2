"""Keyword matching: raw bank description -> merchant.

A merchant owns a set of keywords. A description belongs to the first merchant
(in the order supplied by the caller) with any keyword contained in it,
compared case-insensitively. There is no scoring between merchants; ordering
is the only tie-break, so callers load merchants in a fixed order (see
:func:`load_merchant_views`).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from db.models.finance import Merchant
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload


@dataclass(frozen=True, slots=True)
class MerchantView:
    """Read-only snapshot of a merchant and its keywords for matching."""

    id: str
    name: str
    recommended_category_id: str | None
    keywords: tuple[str, ...]


def normalize(text: str) -> str:
    return text.casefold()


def keyword_matches(description: str, keyword: str) -> bool:
    """Return True when ``keyword`` occurs in ``description`` ignoring case.

    Blank keywords never match (an empty substring would match everything).
    """

    kw = keyword.strip()
    if not kw:
        return False
    return normalize(kw) in normalize(description)


def match(description: str, merchants: Iterable[MerchantView]) -> MerchantView | None:
    """Return the first merchant with a keyword contained in ``description``."""

    haystack = normalize(description)
    for merchant in merchants:
        for kw in merchant.keywords:
            needle = normalize(kw.strip())
            if needle and needle in haystack:
                return merchant
    return None


def to_view(merchant: Merchant) -> MerchantView:
    return MerchantView(
        id=merchant.id,
        name=merchant.name,
        recommended_category_id=merchant.recommended_category_id,
        keywords=tuple(k.keyword for k in merchant.keywords),
    )


def load_merchant_views(session: Session, user_id: str) -> list[MerchantView]:
    """Load a user's merchants with keywords in creation order (ties by id)."""

    rows: Sequence[Merchant] = (
        session.execute(
            select(Merchant)
            .where(Merchant.user_id == user_id)
            .options(selectinload(Merchant.keywords))
            .order_by(Merchant.created_at, Merchant.id)
        )
        .scalars()
        .all()
    )
    return [to_view(m) for m in rows]


__all__ = [
    "MerchantView",
    "normalize",
    "keyword_matches",
    "match",
    "to_view",
    "load_merchant_views",
]
