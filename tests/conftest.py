"""Pytest configuration for test isolation.

Every test that needs a database gets its own file-backed SQLite DB under
``tmp_path``. Engines are cached per URL by ``db.client``; they are disposed
after each test so file handles do not leak between tests.

``DATABASE_URL`` and the ``BANK_INGEST_*`` settings are removed from the
environment for each test so a developer's shell or ``.env`` cannot change
thresholds or point the code at a real database.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from db.client import dispose_engines

from tests.helpers.db import bootstrap_sqlite_db, seed_bank_account, seed_property


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for key in list(os.environ):
        if key.startswith("BANK_INGEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Undo ``configure_logging`` side effects so ``caplog`` keeps seeing records."""

    yield
    logger = logging.getLogger("bank_ingest")
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    for h in list(logger.handlers):
        if not isinstance(h, logging.NullHandler):
            logger.removeHandler(h)


@pytest.fixture
def db_url(tmp_path: Path) -> Iterator[str]:
    url = bootstrap_sqlite_db(tmp_path / "bank_ingest.sqlite3")
    yield url
    dispose_engines()


@pytest.fixture
def account(db_url: str) -> int:
    return seed_bank_account(db_url, external_account_id="acc_00009")


@pytest.fixture
def property_(db_url: str) -> int:
    return seed_property(db_url)
