"""Fuzzy vendor matching against reviewed transaction history.

Given a raw description and the user's *reviewed* transactions, infer a
category:

1. Exact vendor shortcut: a reviewed row whose raw details equal the
   description wins outright. With several, the most recent one by
   ``(date, created_at)`` wins; remaining ties keep the first in input order.
2. Fuzzy fallback: each distinct reviewed vendor is scored against the
   description. The best score at or above ``1 - max_distance`` wins; ties go
   to the vendor whose latest reviewed row is most recent, then to the
   lexicographically smallest vendor string.

The matcher itself never filters by reviewed status: callers pass only
reviewed rows (see :func:`load_reviewed_vendors`).
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from db.models.finance import Transaction
from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .similarity import SimilarityScorer, TokenScorer, max_distance_from_env

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ReviewedVendor:
    vendor: str
    category_id: str | None
    date: dt.date
    created_at: dt.datetime | None = None


@dataclass(frozen=True, slots=True)
class _Candidate:
    vendor: str
    latest: ReviewedVendor
    score: float


def _recency_key(row: ReviewedVendor) -> tuple[dt.date, float]:
    ts = row.created_at.timestamp() if row.created_at is not None else float("-inf")
    return (row.date, ts)


def _most_recent(rows: Sequence[ReviewedVendor]) -> ReviewedVendor:
    # max() keeps the first maximal element, so input order breaks exact ties.
    return max(rows, key=_recency_key)


def exact_vendor_match(description: str, reviewed: Iterable[ReviewedVendor]) -> ReviewedVendor | None:
    exact = [r for r in reviewed if r.vendor == description]
    if not exact:
        return None
    return _most_recent(exact)


def fuzzy_vendor_match(
    description: str,
    reviewed: Iterable[ReviewedVendor],
    *,
    scorer: SimilarityScorer | None = None,
    max_distance: float | None = None,
) -> ReviewedVendor | None:
    """Return the latest reviewed row of the best-scoring vendor, or None."""

    scorer = scorer or TokenScorer()
    limit = max_distance_from_env() if max_distance is None else max_distance
    threshold = 1.0 - limit

    by_vendor: dict[str, list[ReviewedVendor]] = {}
    for row in reviewed:
        if row.vendor:
            by_vendor.setdefault(row.vendor, []).append(row)

    candidates: list[_Candidate] = []
    for vendor, rows in by_vendor.items():
        s = scorer.score(description, vendor)
        if s >= threshold:
            candidates.append(_Candidate(vendor=vendor, latest=_most_recent(rows), score=s))
    if not candidates:
        return None

    candidates.sort(key=lambda c: c.vendor)
    candidates.sort(key=lambda c: (c.score, _recency_key(c.latest)), reverse=True)
    best = candidates[0]
    logger.debug("fuzzy match %r -> %r (score=%.3f)", description, best.vendor, best.score)
    return best.latest


def fuzzy_match(
    description: str,
    reviewed: Iterable[ReviewedVendor],
    *,
    scorer: SimilarityScorer | None = None,
    max_distance: float | None = None,
) -> str | None:
    """Return the inferred category id for ``description`` or ``None``.

    A matched vendor whose latest reviewed row has no category also yields
    ``None``; the caller cannot tell the two apart and does not need to.
    """

    if not description or not description.strip():
        return None
    rows = list(reviewed)
    hit = exact_vendor_match(description, rows)
    if hit is None:
        hit = fuzzy_vendor_match(description, rows, scorer=scorer, max_distance=max_distance)
    return hit.category_id if hit is not None else None


def load_reviewed_vendors(session: Session, user_id: str) -> list[ReviewedVendor]:
    """Load a user's reviewed transactions as matcher input, oldest first."""

    rows = session.execute(
        select(
            Transaction.transaction_details,
            Transaction.category_id,
            Transaction.date,
            Transaction.created_at,
        )
        .where(Transaction.user_id == user_id, Transaction.reviewed.is_(True))
        .order_by(Transaction.date, Transaction.created_at, Transaction.id)
    ).all()
    return [
        ReviewedVendor(vendor=r[0], category_id=r[1], date=r[2], created_at=r[3]) for r in rows
    ]


__all__ = [
    "ReviewedVendor",
    "exact_vendor_match",
    "fuzzy_vendor_match",
    "fuzzy_match",
    "load_reviewed_vendors",
]
