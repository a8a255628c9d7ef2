"""Pytest configuration for test isolation.

- The workspace ``packages/`` and ``libs/db/src`` directories are put on
  ``sys.path`` so ``tally`` and ``db`` import without an install.
- ``TALLY_CONFIG_DIR`` points at a per-test temporary directory so the CLI
  never reads or writes the real ``~/.tally/config.json``.
- Environment knobs that change matching behaviour are cleared per test.
"""

# ruff: noqa: E402
from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

import pytest
from sqlalchemy.orm import Session

from db.client import dispose_engines, get_session
from tests.helpers.db import bootstrap_sqlite_db


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_root = tmp_path / "config"
    config_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("TALLY_CONFIG_DIR", os.fspath(config_root))
    for name in ("TALLY_FUZZY_MAX_DISTANCE", "TALLY_TOKEN", "TALLY_API_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def database_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "tally.sqlite3")
    yield url
    dispose_engines()


@pytest.fixture
def db_session(database_url: str) -> Iterator[Session]:
    """A session on a fresh file-backed SQLite database; rolled back afterwards."""

    session = get_session(database_url=database_url)
    try:
        yield session
    finally:
        session.rollback()
        session.close()
