"""Pytest configuration and shared fixtures.

The test suite imports the ``brokerage`` package from ``brokerage/src``.
When pytest runs without the project installed, that directory is not
on ``sys.path``; this file puts it there before collection.

Every test gets its own file-backed SQLite database.  A file is used
rather than ``:memory:`` so that several threads can open their own
connections to the same data.
"""

from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]

src_str = str(ROOT / "brokerage" / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from brokerage.services.db import Database  # noqa: E402
from brokerage.services.ledger import AssetLedger  # noqa: E402
from brokerage.services.order_engine import OrderEngine  # noqa: E402


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database.from_uri(f"sqlite:///{tmp_path / 'ledger.db'}", lock_timeout_seconds=30.0)
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def ledger(database: Database) -> AssetLedger:
    return AssetLedger(database, base_currency="TRY")


@pytest.fixture
def engine(database: Database, ledger: AssetLedger) -> OrderEngine:
    return OrderEngine(database, ledger, tradeable_assets=frozenset({"AAPL", "GOOGL"}))


@pytest.fixture
def funded(ledger: AssetLedger) -> AssetLedger:
    """Account 1 holds TRY 10000.00 and AAPL 10.00."""
    ledger.deposit(1, "TRY", Decimal("10000.00"))
    ledger.deposit(1, "AAPL", Decimal("10.00"))
    return ledger
