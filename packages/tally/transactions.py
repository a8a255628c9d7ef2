"""Transaction service: creation, import, review edits and splits.

Matching results only ever fill ``merchant_id``, ``category_id`` and
``display_vendor``. The raw ``transaction_details`` is never rewritten by
matching, and ``notes``/``description`` are only written from user input.
"""

from __future__ import annotations

import datetime as dt
import uuid
from collections.abc import Iterable

from db.models.finance import Category, Merchant, MerchantKeyword, Transaction
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from .keywords import keyword_matches
from .logging_setup import get_logger
from .models import ApiTransaction, NewTransaction, SplitResult
from .persistence import insert_transactions_ignore_conflicts
from .recommend import EMPTY, load_context, recommend, recommend_from_context
from .similarity import SimilarityScorer, TokenScorer, max_distance_from_env

logger = get_logger(__name__)

MIN_SPLIT_MONTHS = 2
MAX_SPLIT_MONTHS = 60
# Prefix length used to narrow display-vendor candidates before fuzzy scoring.
_DISPLAY_PREFIX = 5


# ---------------------------
# Lookups
# ---------------------------


def get_transaction(session: Session, user_id: str, transaction_id: str) -> Transaction:
    row = (
        session.execute(
            select(Transaction).where(
                Transaction.id == transaction_id, Transaction.user_id == user_id
            )
        )
        .scalars()
        .first()
    )
    if row is None:
        raise ValueError(f"Transaction not found: {transaction_id!r}")
    return row


def _merchant(session: Session, user_id: str, merchant_id: str) -> Merchant:
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


def _check_category(session: Session, user_id: str, category_id: str) -> None:
    found = session.execute(
        select(Category.id).where(Category.id == category_id, Category.user_id == user_id)
    ).first()
    if found is None:
        raise ValueError(f"Category not found: {category_id!r}")


def match_display_vendor(
    session: Session,
    user_id: str,
    vendor: str,
    *,
    scorer: SimilarityScorer | None = None,
) -> str | None:
    """Suggest a display label for ``vendor`` from the user's earlier rows.

    An earlier row with identical raw details and a label wins. Otherwise rows
    sharing the first five characters (case-insensitive) are scored and the
    best label at or above the fuzzy threshold is returned.
    """

    exact = session.execute(
        select(Transaction.display_vendor)
        .where(
            Transaction.user_id == user_id,
            Transaction.transaction_details == vendor,
            Transaction.display_vendor.is_not(None),
        )
        .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        .limit(1)
    ).scalar()
    if exact:
        return exact
    if len(vendor) < _DISPLAY_PREFIX:
        return None

    prefix = vendor[:_DISPLAY_PREFIX].upper()
    rows = session.execute(
        select(Transaction.transaction_details, Transaction.display_vendor)
        .where(
            Transaction.user_id == user_id,
            Transaction.display_vendor.is_not(None),
            func.substr(func.upper(Transaction.transaction_details), 1, _DISPLAY_PREFIX) == prefix,
        )
        .order_by(Transaction.date.desc(), Transaction.created_at.desc(), Transaction.id)
    ).all()
    scorer = scorer or TokenScorer()
    threshold = 1.0 - max_distance_from_env()
    best: tuple[float, str] | None = None
    for details, label in rows:
        s = scorer.score(vendor, details)
        if s >= threshold and (best is None or s > best[0]):
            best = (s, label)
    return best[1] if best is not None else None


# ---------------------------
# Creation and import
# ---------------------------


def create_transaction(session: Session, user_id: str, new: NewTransaction) -> Transaction:
    """Create one manually entered transaction.

    Missing merchant/category are filled from :func:`tally.recommend.recommend`.
    """

    details = new.transaction_details.strip()
    if not details:
        raise ValueError("Transaction details are required")

    rec = EMPTY
    if new.merchant_id is None or new.category_id is None:
        rec = recommend(session, user_id, details)
    merchant_id = new.merchant_id or rec.merchant_id
    category_id = new.category_id or rec.category_id

    display_vendor: str | None = None
    if merchant_id is not None:
        display_vendor = _merchant(session, user_id, merchant_id).name
    else:
        display_vendor = match_display_vendor(session, user_id, details)
    if category_id is not None:
        _check_category(session, user_id, category_id)

    row = Transaction(
        user_id=user_id,
        external_id=new.external_id,
        amount=new.amount,
        date=new.date,
        transaction_details=details,
        display_vendor=display_vendor,
        merchant_id=merchant_id,
        category_id=category_id,
        notes=new.notes,
        description=new.description,
        reviewed=new.reviewed,
    )
    session.add(row)
    session.flush()
    logger.info("created transaction %s (recommendation: %s)", row.id, rec.source)
    return row


def import_transactions(session: Session, user_id: str, items: Iterable[ApiTransaction]) -> int:
    """Insert a batch of API transactions; returns the number actually inserted.

    Recommendations are computed from one context loaded per batch. Rows whose
    ``external_id`` already exists for the user are skipped by the database,
    so importing the same batch twice inserts nothing the second time.
    """

    items = list(items)
    if not items:
        return 0

    ctx = load_context(session, user_id)
    merchant_names = {m.id: m.name for m in ctx.merchants}
    category_ids = set(
        session.execute(select(Category.id).where(Category.user_id == user_id)).scalars()
    )
    now = dt.datetime.now(dt.UTC)

    rows: list[dict[str, object]] = []
    for item in items:
        if item.merchant_id is not None and item.merchant_id not in merchant_names:
            raise ValueError(f"Merchant not found: {item.merchant_id!r}")
        if item.category_id is not None and item.category_id not in category_ids:
            raise ValueError(f"Category not found: {item.category_id!r}")

        rec = EMPTY
        if item.merchant_id is None or item.category_id is None:
            rec = recommend_from_context(item.transaction_details, ctx)
        merchant_id = item.merchant_id or rec.merchant_id
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "external_id": item.external_id,
                "amount": item.amount,
                "date": item.date,
                "transaction_details": item.transaction_details,
                "display_vendor": merchant_names.get(merchant_id) if merchant_id else None,
                "merchant_id": merchant_id,
                "category_id": item.category_id or rec.category_id,
                "notes": item.notes,
                "reviewed": False,
                "created_at": now,
                "updated_at": now,
            }
        )

    return len(insert_transactions_ignore_conflicts(session, rows))


# ---------------------------
# Review edits
# ---------------------------


def update_transaction_category(
    session: Session, user_id: str, transaction_id: str, category_id: str | None
) -> Transaction:
    row = get_transaction(session, user_id, transaction_id)
    if category_id is not None:
        _check_category(session, user_id, category_id)
    row.category_id = category_id
    session.flush()
    return row


def _forget_exact_keyword(session: Session, merchant: Merchant, details: str) -> None:
    target = details.casefold()
    for kw in list(merchant.keywords):
        if kw.keyword.casefold() == target:
            logger.info("removing keyword %r from merchant %s", kw.keyword, merchant.name)
            merchant.keywords.remove(kw)


def _learn_keyword(session: Session, merchant: Merchant, details: str) -> None:
    if any(keyword_matches(details, kw.keyword) for kw in merchant.keywords):
        return
    merchant.keywords.append(
        MerchantKeyword(merchant_id=merchant.id, user_id=merchant.user_id, keyword=details)
    )
    logger.info("added keyword %r to merchant %s", details, merchant.name)


def update_transaction_merchant(
    session: Session, user_id: str, transaction_id: str, merchant_id: str | None
) -> Transaction:
    """Reassign a transaction's merchant and learn from the correction.

    - The old merchant loses a keyword equal to this row's details (ignoring
      case), since that keyword evidently pointed the wrong way.
    - The new merchant learns the details as a keyword unless one of its
      keywords already matches.
    - The category follows the new merchant's recommended category when it
      has one; otherwise the current category is kept.
    - Clearing the merchant also clears a display label that was the old
      merchant's name; a hand-edited label stays.
    """

    row = get_transaction(session, user_id, transaction_id)
    new_merchant = _merchant(session, user_id, merchant_id) if merchant_id is not None else None

    if row.merchant_id is not None and row.merchant_id != merchant_id:
        old = (
            session.execute(
                select(Merchant)
                .where(Merchant.id == row.merchant_id)
                .options(selectinload(Merchant.keywords))
            )
            .scalars()
            .first()
        )
        if old is not None:
            _forget_exact_keyword(session, old, row.transaction_details)
            if merchant_id is None and row.display_vendor == old.name:
                row.display_vendor = None

    row.merchant_id = merchant_id
    if new_merchant is not None:
        row.display_vendor = new_merchant.name
        if new_merchant.recommended_category_id is not None:
            row.category_id = new_merchant.recommended_category_id
        _learn_keyword(session, new_merchant, row.transaction_details)

    session.flush()
    return row


def toggle_reviewed(session: Session, user_id: str, transaction_id: str) -> Transaction:
    row = get_transaction(session, user_id, transaction_id)
    row.reviewed = not row.reviewed
    session.flush()
    return row


def update_notes(
    session: Session, user_id: str, transaction_id: str, notes: str | None
) -> Transaction:
    row = get_transaction(session, user_id, transaction_id)
    row.notes = notes
    session.flush()
    return row


def update_display_vendor(
    session: Session, user_id: str, transaction_id: str, display_vendor: str | None
) -> Transaction:
    row = get_transaction(session, user_id, transaction_id)
    row.display_vendor = (display_vendor or "").strip() or None
    session.flush()
    return row


def delete_transaction(session: Session, user_id: str, transaction_id: str) -> None:
    row = get_transaction(session, user_id, transaction_id)
    session.delete(row)
    session.flush()


# ---------------------------
# Splits
# ---------------------------


def _external_id_taken(session: Session, user_id: str, external_id: str) -> bool:
    return (
        session.execute(
            select(Transaction.id).where(
                Transaction.user_id == user_id, Transaction.external_id == external_id
            )
        ).first()
        is not None
    )


def split_transaction(
    session: Session, user_id: str, transaction_id: str, split_amount: int
) -> tuple[Transaction, Transaction]:
    """Carve ``split_amount`` out of a transaction into a new row.

    The original keeps ``amount - split_amount`` (and its external id), the new
    row gets ``split_amount`` with the same details, date, merchant and
    category, so the two amounts always sum to the original amount.
    """

    row = get_transaction(session, user_id, transaction_id)
    if split_amount == 0 or row.amount == 0:
        raise ValueError("Split amount must be non-zero")
    if (split_amount < 0) != (row.amount < 0):
        raise ValueError("Split amount must have the same sign as the transaction amount")
    if abs(split_amount) >= abs(row.amount):
        raise ValueError("Split amount must be smaller than the transaction amount")

    external_id = f"{row.external_id}SPLIT{split_amount}" if row.external_id else None
    if external_id is not None and _external_id_taken(session, user_id, external_id):
        raise ValueError(f"Transaction was already split by {split_amount}")

    part = Transaction(
        user_id=user_id,
        external_id=external_id,
        amount=split_amount,
        date=row.date,
        transaction_details=row.transaction_details,
        display_vendor=row.display_vendor,
        merchant_id=row.merchant_id,
        category_id=row.category_id,
    )
    row.amount = row.amount - split_amount
    session.add(part)
    session.flush()
    logger.info("split %s: kept %d, new %s with %d", row.id, row.amount, part.id, part.amount)
    return row, part


def _first_of_month(d: dt.date, offset: int) -> dt.date:
    months = d.month - 1 + offset
    return dt.date(d.year + months // 12, months % 12 + 1, 1)


def split_over_months(
    session: Session, user_id: str, transaction_id: str, months: int
) -> SplitResult:
    """Replace a transaction with ``months`` monthly parts.

    Parts are dated the first of each month starting with the original's
    month, share a ``split_group_id``, and need review again. The absolute
    amount is divided evenly with leftover cents on the first parts, so the
    parts sum exactly to the original amount. The first part keeps the
    original external id, so re-importing the source file does not bring the
    original back.
    """

    if not MIN_SPLIT_MONTHS <= months <= MAX_SPLIT_MONTHS:
        raise ValueError(f"months must be between {MIN_SPLIT_MONTHS} and {MAX_SPLIT_MONTHS}")
    row = get_transaction(session, user_id, transaction_id)
    if row.split_group_id is not None:
        raise ValueError("Transaction is already part of a split")
    if row.merchant_id is None:
        raise ValueError("Transaction must have a merchant assigned before splitting")
    if row.category_id is None:
        raise ValueError("Transaction must have a category assigned before splitting")

    total = abs(row.amount)
    base, remainder = divmod(total, months)
    sign = -1 if row.amount < 0 else 1
    group_id = str(uuid.uuid4())

    parts: list[Transaction] = []
    for i in range(months):
        if i == 0:
            ext = row.external_id
        else:
            ext = f"{row.external_id}SPLIT{i + 1}of{months}" if row.external_id else None
        parts.append(
            Transaction(
                user_id=user_id,
                external_id=ext,
                amount=sign * (base + (1 if i < remainder else 0)),
                date=_first_of_month(row.date, i),
                transaction_details=f"{row.transaction_details} (Split {i + 1}/{months})",
                display_vendor=row.display_vendor,
                merchant_id=row.merchant_id,
                category_id=row.category_id,
                notes=row.notes,
                reviewed=False,
                split_group_id=group_id,
                split_index=i + 1,
                split_total=months,
                original_amount=row.amount,
            )
        )

    with session.begin_nested():
        session.delete(row)
        session.flush()
        session.add_all(parts)
        session.flush()

    logger.info("split %s over %d months into group %s", transaction_id, months, group_id)
    return SplitResult(split_group_id=group_id, transaction_ids=tuple(p.id for p in parts))


__all__ = [
    "get_transaction",
    "match_display_vendor",
    "create_transaction",
    "import_transactions",
    "update_transaction_category",
    "update_transaction_merchant",
    "toggle_reviewed",
    "update_notes",
    "update_display_vendor",
    "delete_transaction",
    "split_transaction",
    "split_over_months",
]
