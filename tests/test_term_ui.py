import contextlib
import datetime as dt

from prompt_toolkit import PromptSession
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput
from tally.models import ApiTransaction
from tally.term_ui import confirm, format_amount, render_preview, render_progress, render_summary
from tally.upload import BatchError, UploadProgress, UploadResult


@contextlib.contextmanager
def pipe_session():
    with create_pipe_input() as pipe:
        sess = PromptSession(input=pipe, output=DummyOutput())
        yield pipe, sess


def _tx(i: int, amount: int = -100, day: int = 1) -> ApiTransaction:
    return ApiTransaction(
        amount=amount,
        date=dt.date(2024, 1, day),
        transaction_details=f"VENDOR {i}",
        external_id=f"EXT{i}",
    )


def test_confirm_yes_and_no():
    with pipe_session() as (pipe, sess):
        pipe.send_text("y\r")
        assert confirm(session=sess) is True
    with pipe_session() as (pipe, sess):
        pipe.send_text("No\r")
        assert confirm(session=sess) is False


def test_confirm_rejects_other_answers_until_valid():
    with pipe_session() as (pipe, sess):
        # "maybe" fails validation; clear the line and answer yes.
        pipe.send_text("maybe\r\x01\x0byes\r")
        assert confirm(session=sess) is True


def test_format_amount():
    assert format_amount(-1201) == "-12.01"
    assert format_amount(5) == "0.05"
    assert format_amount(150000) == "1500.00"


def test_render_preview_truncates_and_summarizes():
    txs = [_tx(i, day=1 + i % 28) for i in range(60)]
    text = render_preview(txs)

    assert "TRANSACTION PREVIEW" in text
    assert "VENDOR 49" in text
    assert "VENDOR 50 " not in text
    assert "... and 10 more transactions" in text
    assert "Total Transactions: 60" in text
    assert "Date Range: 2024-01-01 to 2024-01-28" in text
    assert "Total Amount: $-60.00" in text
    assert render_preview([]) == "No transactions to preview."


def test_render_progress_and_summary():
    progress = UploadProgress(
        current_batch=2,
        total_batches=4,
        uploaded=100,
        total=400,
        success_count=100,
        error_count=100,
        errors=[BatchError(batch=i, error=f"err {i}") for i in range(1, 8)],
    )
    text = render_progress(progress)
    assert "Batch: 2 / 4" in text
    assert "50%" in text
    assert "Batch 7: err 7" in text
    assert "Batch 2: err 2" not in text
    assert "... and 2 more errors" in text

    summary = render_summary(
        UploadResult(success=True, total_uploaded=8, total_failed=0, total_duplicates=2), 10
    )
    assert "Successfully Uploaded: 8" in summary
    assert "Skipped as duplicates: 2" in summary
