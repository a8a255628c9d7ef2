"""Batch upload client for ``POST {api_url}/api/transactions``.

Transactions are sent in batches of :data:`BATCH_SIZE`. Each batch is an
independent request authenticated with a bearer token; a failed batch is
recorded and the upload moves on to the next one. The server reports how many
rows it actually inserted, so ``total_duplicates`` is whatever the server
skipped as already known.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .logging_setup import get_logger
from .models import MAX_BATCH_SIZE, ApiTransaction

logger = get_logger(__name__)

BATCH_SIZE = MAX_BATCH_SIZE

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass(frozen=True, slots=True)
class BatchError:
    batch: int  # 1-based
    error: str


@dataclass(slots=True)
class UploadProgress:
    current_batch: int
    total_batches: int
    uploaded: int
    total: int
    success_count: int
    error_count: int
    errors: list[BatchError] = field(default_factory=list)


@dataclass(slots=True)
class UploadResult:
    success: bool
    total_uploaded: int
    total_failed: int
    total_duplicates: int
    errors: list[BatchError] = field(default_factory=list)


def _error_message(status: int, body: str) -> str:
    message = f"HTTP {status}: {body}"
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return message
    if not isinstance(payload, dict):
        return message
    if payload.get("error"):
        message = str(payload["error"])
    elif isinstance(payload.get("detail"), str):
        message = payload["detail"]
    if payload.get("details"):
        message += f" - {json.dumps(payload['details'])}"
    return message


def post_batch(
    batch: Sequence[ApiTransaction], *, api_url: str, token: str, timeout: float = 30
) -> dict[str, Any]:
    """POST one batch and return the parsed JSON body.

    Raises ``RuntimeError`` carrying the server's error message on a non-2xx
    response or when a 2xx body is not a JSON object, and lets transport errors
    (``urllib.error.URLError``, ``TimeoutError``) propagate.
    """

    url = f"{api_url.rstrip('/')}/api/transactions"
    data = json.dumps({"transactions": [t.to_wire() for t in batch]}).encode("utf-8")
    req = urllib.request.Request(url, data=data, method="POST")
    req.add_header("Authorization", f"Bearer {token}")
    req.add_header("Content-Type", "application/json")

    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except urllib.error.HTTPError as e:
        try:
            err_body = e.read().decode("utf-8", errors="replace")
        except OSError:
            err_body = ""
        raise RuntimeError(_error_message(e.code, err_body)) from e

    try:
        payload = json.loads(body.decode("utf-8"))
    except json.JSONDecodeError as e:
        raise RuntimeError("Server returned a non-JSON response") from e
    if not isinstance(payload, dict):
        raise RuntimeError(f"Unexpected response body: {payload!r}")
    return payload


def upload_transactions(
    transactions: Sequence[ApiTransaction],
    *,
    api_url: str,
    token: str,
    batch_size: int = BATCH_SIZE,
    on_progress: Callable[[UploadProgress], None] | None = None,
    timeout: float = 30,
) -> UploadResult:
    if not transactions:
        raise ValueError("No transactions to upload")
    if not token:
        raise ValueError("Authentication token is required")
    if not api_url:
        raise ValueError("API URL is required")

    batches = list(chunked(transactions, batch_size))
    uploaded = 0
    failed = 0
    duplicates = 0
    errors: list[BatchError] = []

    for i, batch in enumerate(batches, start=1):
        try:
            body = post_batch(batch, api_url=api_url, token=token, timeout=timeout)
            count = body.get("count")
            added = count if isinstance(count, int) else len(batch)
            uploaded += added
            duplicates += max(len(batch) - added, 0)
            logger.info("batch %d/%d: %d inserted of %d", i, len(batches), added, len(batch))
        except (RuntimeError, urllib.error.URLError, TimeoutError, OSError) as e:
            failed += len(batch)
            errors.append(BatchError(batch=i, error=str(e)))
            logger.warning("batch %d/%d failed: %s", i, len(batches), e)

        if on_progress is not None:
            on_progress(
                UploadProgress(
                    current_batch=i,
                    total_batches=len(batches),
                    uploaded=uploaded,
                    total=len(transactions),
                    success_count=uploaded,
                    error_count=failed,
                    errors=list(errors),
                )
            )

    return UploadResult(
        success=failed == 0,
        total_uploaded=uploaded,
        total_failed=failed,
        total_duplicates=duplicates,
        errors=errors,
    )


__all__ = [
    "BATCH_SIZE",
    "chunked",
    "BatchError",
    "UploadProgress",
    "UploadResult",
    "post_batch",
    "upload_transactions",
]
