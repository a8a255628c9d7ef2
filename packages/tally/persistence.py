# ruff: noqa: I001
"""Persistence integration for ``tally`` imports.

Functions here write transactions to the shared database owned by
``libs/db`` using the ORM models in ``db.models.finance``.

Scope:
- Batch insert with "ignore conflicts on (user_id, external_id)" semantics, so
  re-importing the same statement never creates duplicates and concurrent
  imports of overlapping data are safe without application-level locking.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.finance import Transaction

from .logging_setup import get_logger

logger = get_logger(__name__)

_CONFLICT_COLUMNS = ("user_id", "external_id")
# Keeps bound parameters per statement well under SQLite's variable limit.
_ROWS_PER_STATEMENT = 200


def _norm_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _insert_for(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"unsupported database dialect for conflict-ignoring insert: {dialect}")


def insert_transactions_ignore_conflicts(
    session: Session, rows: Iterable[Mapping[str, Any]]
) -> list[str]:
    """Insert transaction rows, skipping any whose (user_id, external_id) exists.

    Each mapping carries ``Transaction`` column values. Missing ``id`` values
    are generated here. Returns the ids of rows actually inserted; the length
    of the list is the post-deduplication count. Duplicates within ``rows``
    itself are absorbed the same way as duplicates already in the table.
    """

    payloads: list[dict[str, Any]] = []
    for row in rows:
        values = dict(row)
        values.setdefault("id", str(uuid.uuid4()))
        values["external_id"] = _norm_str(values.get("external_id"))
        payloads.append(values)
    if not payloads:
        return []

    insert = _insert_for(session)
    inserted: list[str] = []
    for start in range(0, len(payloads), _ROWS_PER_STATEMENT):
        stmt = (
            insert(Transaction)
            .values(payloads[start : start + _ROWS_PER_STATEMENT])
            .on_conflict_do_nothing(index_elements=list(_CONFLICT_COLUMNS))
            .returning(Transaction.id)
        )
        inserted.extend(r[0] for r in session.execute(stmt))
    logger.info(
        "inserted %d of %d transactions (%d duplicates ignored)",
        len(inserted),
        len(payloads),
        len(payloads) - len(inserted),
    )
    return inserted


__all__ = ["insert_transactions_ignore_conflicts"]
