"""Merchant/category recommendation for a raw transaction description.

Order of precedence (first hit wins):

1. keyword match on the user's merchants -> merchant + its recommended category
2. exact vendor match in reviewed history -> category only
3. fuzzy vendor match in reviewed history -> category only
4. nothing -> an empty recommendation ("uncategorized"), never an error

History matches never guess a merchant: historical vendor strings are raw
bank text, not merchant references.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.orm import Session

from .fuzzy import ReviewedVendor, exact_vendor_match, fuzzy_vendor_match, load_reviewed_vendors
from .keywords import MerchantView, load_merchant_views, match
from .similarity import SimilarityScorer

RecommendationSource = Literal["keyword", "exact_vendor", "fuzzy_vendor", "none"]


@dataclass(frozen=True, slots=True)
class Recommendation:
    merchant_id: str | None = None
    category_id: str | None = None
    source: RecommendationSource = "none"

    @property
    def is_empty(self) -> bool:
        return self.merchant_id is None and self.category_id is None


EMPTY = Recommendation()


@dataclass(frozen=True, slots=True)
class RecommendationContext:
    """Everything the engine reads for one user, loaded once per batch."""

    merchants: Sequence[MerchantView] = field(default_factory=tuple)
    reviewed: Sequence[ReviewedVendor] = field(default_factory=tuple)
    scorer: SimilarityScorer | None = None
    max_distance: float | None = None


def load_context(
    session: Session,
    user_id: str,
    *,
    scorer: SimilarityScorer | None = None,
    max_distance: float | None = None,
) -> RecommendationContext:
    return RecommendationContext(
        merchants=tuple(load_merchant_views(session, user_id)),
        reviewed=tuple(load_reviewed_vendors(session, user_id)),
        scorer=scorer,
        max_distance=max_distance,
    )


def recommend_from_context(description: str, ctx: RecommendationContext) -> Recommendation:
    if not description or not description.strip():
        return EMPTY

    merchant = match(description, ctx.merchants)
    if merchant is not None:
        return Recommendation(
            merchant_id=merchant.id,
            category_id=merchant.recommended_category_id,
            source="keyword",
        )

    hit = exact_vendor_match(description, ctx.reviewed)
    if hit is not None:
        return Recommendation(category_id=hit.category_id, source="exact_vendor")

    hit = fuzzy_vendor_match(
        description, ctx.reviewed, scorer=ctx.scorer, max_distance=ctx.max_distance
    )
    if hit is not None:
        return Recommendation(category_id=hit.category_id, source="fuzzy_vendor")

    return EMPTY


def recommend(
    session: Session,
    user_id: str,
    description: str,
    *,
    scorer: SimilarityScorer | None = None,
    max_distance: float | None = None,
) -> Recommendation:
    """Load the user's matching context and recommend for ``description``."""

    ctx = load_context(session, user_id, scorer=scorer, max_distance=max_distance)
    return recommend_from_context(description, ctx)


__all__ = [
    "Recommendation",
    "RecommendationContext",
    "EMPTY",
    "load_context",
    "recommend_from_context",
    "recommend",
]
