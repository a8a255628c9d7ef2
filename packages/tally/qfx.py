"""Reader for QFX/OFX bank statement exports.

QFX is SGML-like: tags are frequently unclosed and values run until the next
``<``. Rather than coerce it into XML, each ``<STMTTRN>`` block is cut out and
split on angle brackets.

Contract
--------
- Required tags per record: ``DTPOSTED``, ``TRNAMT``, ``FITID``, ``NAME``.
  Optional: ``MEMO``, ``TRNTYPE``.
- ``DTPOSTED`` is sliced to its first 8 characters (``YYYYMMDD``) and must be a
  real calendar date; ``20240115120000.000`` becomes ``2024-01-15``.
- ``TRNAMT`` is a decimal string in major units. Conversion to cents rounds
  half away from zero, so ``-12.005`` becomes ``-1201`` and ``0.125`` becomes
  ``13``.

Failure mode
------------
A record that misses a required tag or carries an unparseable date/amount is
reported as a :class:`RecordError` and skipped; the remaining records still
parse. Only a file without any ``<STMTTRN>`` block at all raises ``ValueError``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path

from .logging_setup import get_logger
from .models import ApiTransaction

logger = get_logger(__name__)

REQUIRED_TAGS = ("DTPOSTED", "TRNAMT", "FITID", "NAME")
_CENTS = Decimal("1")


@dataclass(frozen=True, slots=True)
class QfxRecord:
    date: dt.date
    amount: Decimal
    name: str
    fit_id: str
    memo: str | None = None
    trn_type: str | None = None


@dataclass(frozen=True, slots=True)
class RecordError:
    index: int  # 1-based position of the <STMTTRN> block in the file
    message: str


@dataclass(slots=True)
class QfxParseResult:
    transactions: list[QfxRecord] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)


def _tags(block: str) -> dict[str, str]:
    content = block.replace("\n", "").replace("\r", "")
    tags: dict[str, str] = {}
    for part in content.split("<"):
        if not part.strip() or ">" not in part:
            continue
        name, _, value = part.partition(">")
        name = name.strip()
        if not name or name.startswith("/"):
            continue
        tags[name.upper()] = value.strip()
    return tags


def parse_date(raw: str) -> dt.date:
    """Return the calendar date encoded in the first 8 characters of ``raw``."""

    head = raw.strip()[:8]
    if len(head) != 8 or not head.isdigit():
        raise ValueError(f"Invalid DTPOSTED value: {raw!r}")
    try:
        return dt.date(int(head[:4]), int(head[4:6]), int(head[6:8]))
    except ValueError as e:
        raise ValueError(f"Invalid DTPOSTED value: {raw!r}") from e


def to_cents(amount: Decimal | str) -> int:
    """Convert major units to integer cents, rounding half away from zero."""

    try:
        d = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid TRNAMT value: {amount!r}") from e
    if not d.is_finite():
        raise ValueError(f"Invalid TRNAMT value: {amount!r}")
    return int((d * 100).quantize(_CENTS, rounding=ROUND_HALF_UP))


def _record(tags: dict[str, str]) -> QfxRecord:
    missing = [t for t in REQUIRED_TAGS if not tags.get(t)]
    if missing:
        raise ValueError(f"missing required field(s): {', '.join(missing)}")
    try:
        amount = Decimal(tags["TRNAMT"])
    except InvalidOperation as e:
        raise ValueError(f"Invalid TRNAMT value: {tags['TRNAMT']!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid TRNAMT value: {tags['TRNAMT']!r}")
    return QfxRecord(
        date=parse_date(tags["DTPOSTED"]),
        amount=amount,
        name=tags["NAME"],
        fit_id=tags["FITID"],
        memo=tags.get("MEMO") or None,
        trn_type=tags.get("TRNTYPE") or None,
    )


def parse_qfx(text: str) -> QfxParseResult:
    blocks = text.split("<STMTTRN>")[1:]
    if not blocks:
        raise ValueError("No transactions found in QFX file")

    result = QfxParseResult()
    for index, block in enumerate(blocks, start=1):
        body, sep, _ = block.partition("</STMTTRN")
        if not sep:
            result.errors.append(RecordError(index, "unterminated <STMTTRN> block"))
            continue
        try:
            result.transactions.append(_record(_tags(body)))
        except ValueError as e:
            result.errors.append(RecordError(index, str(e)))

    for err in result.errors:
        logger.warning("QFX record %d skipped: %s", err.index, err.message)
    logger.info(
        "parsed %d QFX records (%d skipped)", len(result.transactions), len(result.errors)
    )
    return result


def load_qfx(path: str | Path) -> QfxParseResult:
    """Read and parse a QFX file; Latin-1 is used when the file is not UTF-8."""

    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        text = p.read_text(encoding="latin-1")
    return parse_qfx(text)


def map_to_api_format(record: QfxRecord) -> ApiTransaction:
    details = f"{record.name} - {record.memo}" if record.memo else record.name
    return ApiTransaction(
        amount=to_cents(record.amount),
        date=record.date,
        transaction_details=details,
        notes=record.memo,
        external_id=record.fit_id,
    )


__all__ = [
    "QfxRecord",
    "RecordError",
    "QfxParseResult",
    "parse_date",
    "to_cents",
    "parse_qfx",
    "load_qfx",
    "map_to_api_format",
]
