"""Category domain helpers and service operations.

This module centralizes small, server-side validated operations on the
``categories`` table. Validation is duplicated lightly in interactive callers
but authoritatively enforced here.

Exports
-------
- ``create_category(...)``: idempotent creation with case-insensitive conflict
  detection. Returns the created/existing row and a ``created`` flag.
- ``update_category(...)`` / ``delete_category(...)``: edits; deleting a
  category unlinks it from transactions and merchants, never deleting them.
- ``normalize_name(...)`` and ``validate_name(...)``: helpers shared with
  callers that want early feedback before hitting the database.
- ``generate_palette(...)``: pure colour palette helper for new categories.
"""

from __future__ import annotations

import colorsys
import random
import re
from dataclasses import dataclass
from typing import TypedDict

from db.models.finance import Category, Merchant, Transaction
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .logging_setup import get_logger

logger = get_logger(__name__)

# ---------------------------
# Name normalization/validation
# ---------------------------

_ALLOWED_RE = re.compile(r"^[\w &\-/'.,()+]+$")


def normalize_name(name: str) -> str:
    """Return a trimmed, single-spaced representation of ``name``.

    Does not change case.
    """

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, min_len: int = 1, max_len: int = 64) -> NameValidation:
    """Lightweight validation for category names.

    Rules
    -----
    - Trim whitespace; enforce length bounds 1..64.
    - Allowed characters: letters, numbers, spaces, and ``& - / ' . , ( ) +``.
    """

    n = normalize_name(name)
    if len(n) < min_len:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    if not _ALLOWED_RE.match(n):
        return NameValidation(
            False, "Only letters, numbers, spaces, and & - / ' . , ( ) + are allowed"
        )
    return NameValidation(True, None)


# ---------------------------
# Palette
# ---------------------------


def generate_palette(n: int, *, seed: int | str | None = None) -> list[str]:
    """Return ``n`` hex colours spaced 30 degrees apart in hue.

    Saturation and lightness vary slightly per colour. The same ``seed``
    always yields the same palette; ``None`` draws a fresh one.
    """

    if n < 0:
        raise ValueError("palette size must be non-negative")
    rng = random.Random(seed)
    start = rng.random() * 360
    colours: list[str] = []
    for i in range(n):
        hue = (start + i * 30) % 360
        saturation = 0.70 + rng.random() * 0.20
        lightness = 0.50 + rng.random() * 0.20
        r, g, b = colorsys.hls_to_rgb(hue / 360, lightness, saturation)
        colours.append(f"#{round(r * 255):02x}{round(g * 255):02x}{round(b * 255):02x}")
    return colours


# ---------------------------
# Service result shape
# ---------------------------


class CategoryDict(TypedDict):
    id: str
    name: str
    parent_category_id: str | None
    icon: str | None
    color: str | None
    treat_as_income: bool
    hide_from_insights: bool


class CreateCategoryResult(TypedDict):
    category: CategoryDict
    created: bool


def _row_to_dict(row: Category) -> CategoryDict:  # pragma: no cover - trivial mapping
    return {
        "id": row.id,
        "name": row.name,
        "parent_category_id": row.parent_category_id,
        "icon": row.icon,
        "color": row.color,
        "treat_as_income": bool(row.treat_as_income),
        "hide_from_insights": bool(row.hide_from_insights),
    }


def _get(session: Session, user_id: str, category_id: str) -> Category:
    row = (
        session.execute(
            select(Category).where(Category.id == category_id, Category.user_id == user_id)
        )
        .scalars()
        .first()
    )
    if row is None:
        raise ValueError(f"Category not found: {category_id!r}")
    return row


def _find_by_name(session: Session, user_id: str, name: str) -> Category | None:
    return (
        session.execute(
            select(Category).where(
                Category.user_id == user_id, func.lower(Category.name) == name.lower()
            )
        )
        .scalars()
        .first()
    )


def _has_children(session: Session, category_id: str) -> bool:
    return (
        session.execute(
            select(Category.id).where(Category.parent_category_id == category_id).limit(1)
        ).first()
        is not None
    )


def _validated_parent(
    session: Session, user_id: str, parent_id: str, *, child_id: str | None = None
) -> Category:
    if child_id is not None and parent_id == child_id:
        raise ValueError("A category cannot be its own parent")
    parent = _get(session, user_id, parent_id)
    if parent.parent_category_id is not None:
        raise ValueError("Parent must be a top-level category (cannot be a child)")
    if child_id is not None and _has_children(session, child_id):
        raise ValueError("A category with subcategories cannot become a subcategory")
    return parent


def _validated_name(name: str) -> str:
    n = normalize_name(name)
    v = validate_name(n)
    if not v.ok:
        raise ValueError(f"Invalid category name: {v.reason or 'invalid_name'}")
    return n


def create_category(
    session: Session,
    user_id: str,
    *,
    name: str,
    parent_category_id: str | None = None,
    icon: str | None = None,
    color: str | None = None,
    treat_as_income: bool = False,
    hide_from_insights: bool = False,
) -> CreateCategoryResult:
    """Create a category unless one with the same name (any case) exists.

    Returns
    -------
    dict
        ``{"category": {...}, "created": bool}``. An existing case-insensitive
        duplicate is returned with ``created=False``.
    """

    n = _validated_name(name)

    existing = _find_by_name(session, user_id, n)
    if existing is not None:
        return {"category": _row_to_dict(existing), "created": False}

    if parent_category_id is not None:
        _validated_parent(session, user_id, parent_category_id)

    row = Category(
        user_id=user_id,
        name=n,
        parent_category_id=parent_category_id,
        icon=icon,
        color=color or generate_palette(1)[0],
        treat_as_income=treat_as_income,
        hide_from_insights=hide_from_insights,
    )
    session.add(row)
    session.flush()
    logger.info("created category %s (%s) for user %s", row.id, n, user_id)
    return {"category": _row_to_dict(row), "created": True}


_UNSET = object()


def update_category(
    session: Session,
    user_id: str,
    category_id: str,
    *,
    name: str | None = None,
    parent_category_id: str | None | object = _UNSET,
    icon: str | None | object = _UNSET,
    color: str | None | object = _UNSET,
    treat_as_income: bool | None = None,
    hide_from_insights: bool | None = None,
) -> CategoryDict:
    """Update provided fields; ``parent_category_id=None`` makes it top-level."""

    row = _get(session, user_id, category_id)

    if name is not None:
        n = _validated_name(name)
        clash = _find_by_name(session, user_id, n)
        if clash is not None and clash.id != row.id:
            raise ValueError(f"Category '{n}' already exists")
        row.name = n
    if parent_category_id is not _UNSET:
        if parent_category_id is not None:
            _validated_parent(session, user_id, str(parent_category_id), child_id=row.id)
        row.parent_category_id = parent_category_id  # type: ignore[assignment]
    if icon is not _UNSET:
        row.icon = icon  # type: ignore[assignment]
    if color is not _UNSET:
        row.color = color  # type: ignore[assignment]
    if treat_as_income is not None:
        row.treat_as_income = treat_as_income
    if hide_from_insights is not None:
        row.hide_from_insights = hide_from_insights

    session.flush()
    return _row_to_dict(row)


def delete_category(session: Session, user_id: str, category_id: str) -> int:
    """Delete a category and return how many transactions were unlinked.

    Transactions and merchants keep existing with the link set to NULL;
    subcategories become top-level.
    """

    row = _get(session, user_id, category_id)
    unlinked = session.execute(
        update(Transaction)
        .where(Transaction.user_id == user_id, Transaction.category_id == category_id)
        .values(category_id=None)
    ).rowcount
    session.execute(
        update(Merchant)
        .where(Merchant.user_id == user_id, Merchant.recommended_category_id == category_id)
        .values(recommended_category_id=None)
    )
    session.execute(
        update(Category)
        .where(Category.user_id == user_id, Category.parent_category_id == category_id)
        .values(parent_category_id=None)
    )
    session.delete(row)
    session.flush()
    logger.info("deleted category %s; unlinked %d transactions", category_id, unlinked or 0)
    return unlinked or 0


def list_categories(session: Session, user_id: str, *, top_level_only: bool = False) -> list[CategoryDict]:
    """Return a user's categories sorted by name (case-insensitive)."""

    stmt = select(Category).where(Category.user_id == user_id)
    if top_level_only:
        stmt = stmt.where(Category.parent_category_id.is_(None))
    rows = session.execute(stmt.order_by(func.lower(Category.name), Category.id)).scalars().all()
    return [_row_to_dict(r) for r in rows]


__all__ = [
    "normalize_name",
    "validate_name",
    "generate_palette",
    "create_category",
    "update_category",
    "delete_category",
    "list_categories",
    "NameValidation",
    "CategoryDict",
    "CreateCategoryResult",
]
