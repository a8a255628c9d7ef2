"""Data models shared across ``tally``.

Two families live here:

- Frozen dataclasses returned by the service layer (propagation, merge and
  split results, manual transaction input).
- Pydantic models describing the import wire format used by both the upload
  client and the HTTP endpoint. The wire format uses camelCase keys
  (``transactionDetails``, ``externalId``); Python code uses snake_case.

Amounts are always signed integers in minor units (cents). The sign is the
only thing that says whether money went in or out.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PropagationError(RuntimeError):
    """Raised when a merchant propagation could not be applied atomically.

    Nothing from the failed invocation remains applied when this is raised.
    """


class MergeError(RuntimeError):
    """Raised when a merchant merge could not be applied atomically."""


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PropagationResult:
    """Exact row counts touched by one propagation.

    ``keyword_matched`` and ``category_refreshed`` are disjoint; their sum is
    ``updated_count``.
    """

    merchant_id: str
    keyword_matched: int
    category_refreshed: int

    @property
    def updated_count(self) -> int:
        return self.keyword_matched + self.category_refreshed

    @property
    def message(self) -> str:
        n = self.updated_count
        if n == 0:
            return "No matching unreviewed transactions found"
        return f"Updated {n} transaction{'' if n == 1 else 's'} with this merchant"


@dataclass(frozen=True, slots=True)
class MerchantUpdateResult:
    merchant_id: str
    propagation: PropagationResult | None

    @property
    def updated_count(self) -> int:
        return self.propagation.updated_count if self.propagation is not None else 0

    @property
    def message(self) -> str:
        if self.updated_count > 0 and self.propagation is not None:
            return self.propagation.message
        return "Merchant updated successfully"


@dataclass(frozen=True, slots=True)
class MergeResult:
    source_merchant_id: str
    target_merchant_id: str
    keywords_added: int
    transactions_reassigned: int
    message: str


@dataclass(frozen=True, slots=True)
class NewTransaction:
    """Input for a single manually entered transaction.

    ``merchant_id``/``category_id`` left as ``None`` are filled from the
    recommendation engine at creation time.
    """

    amount: int
    date: dt.date
    transaction_details: str
    external_id: str | None = None
    merchant_id: str | None = None
    category_id: str | None = None
    notes: str | None = None
    description: str | None = None
    reviewed: bool = False


@dataclass(frozen=True, slots=True)
class SplitResult:
    split_group_id: str
    transaction_ids: tuple[str, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Import wire format
# ---------------------------------------------------------------------------

MAX_BATCH_SIZE = 100


class ApiTransaction(BaseModel):
    """One transaction as submitted to ``POST /api/transactions``."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )

    amount: int = Field(strict=True)
    date: dt.date
    transaction_details: str = Field(min_length=1)
    external_id: str = Field(min_length=1)
    merchant_id: str | None = None
    category_id: str | None = None
    notes: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _datetime_to_date(cls, v: object) -> object:
        # JavaScript clients send Date objects as ISO datetimes; keep the
        # calendar date as written.
        if isinstance(v, dt.datetime):
            return v.date()
        if isinstance(v, str) and len(v.strip()) > 10:
            try:
                return dt.datetime.fromisoformat(v.strip().replace("Z", "+00:00")).date()
            except ValueError:
                return v
        return v

    @field_validator("merchant_id", "category_id", "notes")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v or None

    def to_wire(self) -> dict[str, object]:
        """JSON-ready mapping with camelCase keys and ISO dates; ``None`` fields omitted."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ImportRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transactions: list[ApiTransaction] = Field(min_length=1, max_length=MAX_BATCH_SIZE)


class ImportResponse(BaseModel):
    message: str
    count: int


__all__ = [
    "PropagationError",
    "MergeError",
    "PropagationResult",
    "MerchantUpdateResult",
    "MergeResult",
    "NewTransaction",
    "SplitResult",
    "MAX_BATCH_SIZE",
    "ApiTransaction",
    "ImportRequest",
    "ImportResponse",
]
