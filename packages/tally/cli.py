# ruff: noqa: I001
"""CLI for the ``tally`` package.

This module exposes callable command handlers (``cmd_import_qfx``,
``cmd_recommend``, ...) returning process exit codes, and a Typer-based
console interface wrapping them. Environment variables are loaded from a local
``.env`` using ``python-dotenv`` before any command runs.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from prompt_toolkit import PromptSession

from .logging_setup import configure_logging


# ---- Command handlers --------------------------------------------------------


def cmd_import_qfx(
    file_path: str,
    *,
    token: str | None = None,
    api_url: str | None = None,
    assume_yes: bool = False,
    session: PromptSession | None = None,
) -> int:
    """Parse a QFX file, preview it, confirm, and upload it in batches.

    Returns 0 when every batch uploaded (duplicates skipped by the server
    count as success) and 1 on a missing token, an unreadable file, no valid
    transactions, a declined confirmation, or any failed batch.
    """

    from pydantic import ValidationError

    from . import config
    from .qfx import load_qfx, map_to_api_format
    from .term_ui import confirm, render_preview, render_progress, render_summary
    from .upload import upload_transactions

    path = Path(file_path)
    if not path.is_file():
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        return 1

    if api_url:
        config.set_api_url(api_url)
    if token:
        config.set_auth_token(token)
    auth_token = config.get_auth_token()
    if not auth_token:
        print(
            "Error: Authentication token not found. Please provide one using --token.",
            file=sys.stderr,
        )
        return 1

    print(f"Parsing QFX file: {path}...")
    try:
        parsed = load_qfx(path)
    except (OSError, ValueError) as e:
        print(f"Error: Failed to parse QFX file: {e}", file=sys.stderr)
        return 1

    for err in parsed.errors:
        print(f"Warning: transaction {err.index} skipped: {err.message}", file=sys.stderr)

    api_transactions = []
    for i, record in enumerate(parsed.transactions, start=1):
        try:
            api_transactions.append(map_to_api_format(record))
        except (ValidationError, ValueError) as e:
            print(f"Warning: transaction {i} could not be mapped: {e}", file=sys.stderr)

    if not api_transactions:
        print("Error: No valid transactions to upload.", file=sys.stderr)
        return 1

    print(render_preview(api_transactions))
    print()

    if not assume_yes and not confirm(session=session):
        print("Upload cancelled.")
        return 1

    print("Starting upload...")
    result = upload_transactions(
        api_transactions,
        api_url=config.get_api_url(),
        token=auth_token,
        on_progress=lambda p: print(render_progress(p)),
    )
    print(render_summary(result, len(api_transactions)))

    if result.success:
        print("All transactions uploaded successfully.")
        return 0
    print("Some transactions failed to upload.", file=sys.stderr)
    return 1


def cmd_recommend(description: str, *, user_id: str, database_url: str | None = None) -> int:
    """Print the merchant/category suggestion for ``description`` as tab-separated fields."""

    from db.client import session_scope

    from .recommend import recommend

    try:
        with session_scope(database_url=database_url) as session:
            rec = recommend(session, user_id, description)
    except (RuntimeError, ValueError) as e:
        print(f"Error: recommendation failed: {e}", file=sys.stderr)
        return 1

    print(f"{rec.source}\t{rec.merchant_id or ''}\t{rec.category_id or ''}")
    return 0


def cmd_apply_merchants(*, user_id: str, database_url: str | None = None) -> int:
    """Re-apply every merchant's keywords to the user's unreviewed transactions."""

    from db.client import session_scope

    from .merchants import apply_all_merchants

    try:
        with session_scope(database_url=database_url) as session:
            results = apply_all_merchants(session, user_id)
    except (RuntimeError, ValueError) as e:
        print(f"Error: applying merchants failed: {e}", file=sys.stderr)
        return 1

    for r in results:
        print(f"{r.merchant_id}\t{r.keyword_matched}\t{r.category_refreshed}")
    print(f"Updated {sum(r.updated_count for r in results)} transactions.")
    return 0


def cmd_create_token(*, user_id: str, database_url: str | None = None) -> int:
    from db.client import session_scope

    from .tokens import create_auth_token

    try:
        with session_scope(database_url=database_url) as session:
            token = create_auth_token(session, user_id)
    except (RuntimeError, ValueError) as e:
        print(f"Error: token creation failed: {e}", file=sys.stderr)
        return 1

    print(token)
    return 0


# ---- Typer app -----------------------------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Tally: merchant matching, category recommendation and QFX import.",
)

DatabaseUrlOption = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]
UserIdOption = Annotated[str, typer.Option(help="Owner of the data to operate on.")]


@app.command("import-qfx")
def import_qfx_cmd(
    file: Annotated[Path, typer.Argument(help="Path to a QFX/OFX export", dir_okay=False)],
    token: Annotated[
        str | None, typer.Option(help="API token (saved to the config file).")
    ] = None,
    api_url: Annotated[
        str | None, typer.Option(help="API base URL (saved to the config file).")
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt.")] = False,
) -> None:
    raise typer.Exit(cmd_import_qfx(str(file), token=token, api_url=api_url, assume_yes=yes))


@app.command("recommend")
def recommend_cmd(
    description: Annotated[str, typer.Argument(help="Raw transaction description")],
    user_id: UserIdOption,
    database_url: DatabaseUrlOption = None,
) -> None:
    raise typer.Exit(cmd_recommend(description, user_id=user_id, database_url=database_url))


@app.command("apply-merchants")
def apply_merchants_cmd(user_id: UserIdOption, database_url: DatabaseUrlOption = None) -> None:
    raise typer.Exit(cmd_apply_merchants(user_id=user_id, database_url=database_url))


@app.command("create-token")
def create_token_cmd(user_id: UserIdOption, database_url: DatabaseUrlOption = None) -> None:
    raise typer.Exit(cmd_create_token(user_id=user_id, database_url=database_url))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Load ``.env`` from the current directory and configure logging."""

    # override=False keeps already-set environment variables
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
