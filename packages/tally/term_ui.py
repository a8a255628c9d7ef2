"""Terminal rendering and prompts for the QFX import command (prompt_toolkit-based).

Rendering helpers return plain strings so they are easy to test; only
:func:`confirm` touches the terminal.
"""

from __future__ import annotations

from collections.abc import Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .models import ApiTransaction
from .upload import UploadProgress, UploadResult

PREVIEW_WIDTH = 100
PREVIEW_ROWS = 50
PROGRESS_WIDTH = 80
_BAR_WIDTH = 50
_RECENT_ERRORS = 5


def format_amount(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def render_preview(transactions: Sequence[ApiTransaction]) -> str:
    """Table of the first 50 transactions plus totals and the date range."""

    if not transactions:
        return "No transactions to preview."

    rule = "=" * PREVIEW_WIDTH
    lines = [rule, "TRANSACTION PREVIEW", rule, ""]
    lines.append(f"{'Date':<12} | {'Amount':<12} | {'Description':<50} | {'External ID':<20}")
    lines.append("-" * PREVIEW_WIDTH)
    for t in transactions[:PREVIEW_ROWS]:
        lines.append(
            f"{t.date.isoformat():<12} | {format_amount(t.amount):<12} | "
            f"{t.transaction_details[:50]:<50} | {t.external_id[:20]:<20}"
        )
    if len(transactions) > PREVIEW_ROWS:
        lines.append("")
        lines.append(f"... and {len(transactions) - PREVIEW_ROWS} more transactions")

    dates = [t.date for t in transactions]
    lines.append("")
    lines.append(rule)
    lines.append(f"Total Transactions: {len(transactions)}")
    lines.append(f"Date Range: {min(dates).isoformat()} to {max(dates).isoformat()}")
    lines.append(f"Total Amount: ${format_amount(sum(t.amount for t in transactions))}")
    lines.append(rule)
    return "\n".join(lines)


def render_progress(progress: UploadProgress) -> str:
    rule = "=" * PROGRESS_WIDTH
    done = progress.uploaded + progress.error_count
    ratio = done / progress.total if progress.total > 0 else 0.0
    filled = min(round(ratio * _BAR_WIDTH), _BAR_WIDTH)
    bar = "█" * filled + "░" * (_BAR_WIDTH - filled)

    lines = [rule, "UPLOAD PROGRESS", rule, ""]
    lines.append(f"Batch: {progress.current_batch} / {progress.total_batches}")
    lines.append(f"Progress: [{bar}] {round(ratio * 100)}%")
    lines.append(f"Uploaded: {progress.uploaded} / {progress.total} transactions")
    lines.append(f"Success: {progress.success_count} | Errors: {progress.error_count}")
    lines.append("")
    if progress.errors:
        lines.append("Recent Errors:")
        for err in progress.errors[-_RECENT_ERRORS:]:
            lines.append(f"  Batch {err.batch}: {err.error[:60]}")
        if len(progress.errors) > _RECENT_ERRORS:
            lines.append(f"  ... and {len(progress.errors) - _RECENT_ERRORS} more errors")
        lines.append("")
    lines.append(rule)
    return "\n".join(lines)


def render_summary(result: UploadResult, total: int) -> str:
    rule = "=" * PROGRESS_WIDTH
    lines = [rule, "UPLOAD COMPLETE", rule, ""]
    lines.append(f"Total Transactions: {total}")
    lines.append(f"Successfully Uploaded: {result.total_uploaded}")
    lines.append(f"Skipped as duplicates: {result.total_duplicates}")
    lines.append(f"Failed: {result.total_failed}")
    if result.errors:
        lines.append("")
        lines.append("Errors:")
        for err in result.errors:
            lines.append(f"  Batch {err.batch}: {err.error}")
    lines.append("")
    lines.append(rule)
    return "\n".join(lines)


_YES = {"y", "yes"}
_NO = {"n", "no"}


def confirm(
    message: str = "Proceed with upload? (y/n): ",
    *,
    session: PromptSession | None = None,
) -> bool:
    """Ask a yes/no question. Esc or Ctrl+C counts as "no"."""

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result="n")

    @kb.add("c-c", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result="n")

    class _YesNo(Validator):
        def validate(self, document) -> None:
            if document.text.strip().lower() not in _YES | _NO:
                raise ValidationError(message="Please answer y or n")

    if session is None:
        sess: PromptSession = PromptSession(key_bindings=kb)
    else:
        sess = PromptSession(
            input=getattr(session, "input", None),
            output=getattr(session, "output", None),
            key_bindings=kb,
        )

    answer = sess.prompt(message, validator=_YesNo(), validate_while_typing=False)
    return (answer or "").strip().lower() in _YES


__all__ = [
    "format_amount",
    "render_preview",
    "render_progress",
    "render_summary",
    "confirm",
]
