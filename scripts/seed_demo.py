"""
Seed demo balances.

Funds two demo customer accounts so the order flow can be tried end
to end:

* account 1: TRY 10000.00, AAPL 10.00
* account 2: TRY 15000.00, GOOGL 5.00

Usage
-----

.. code-block:: bash

    STATE_STORE_URI=sqlite:///brokerage.db python scripts/seed_demo.py

Tables are created if missing.  Running the script twice credits the
balances twice.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from brokerage.config import load_settings
from brokerage.services.order_engine import OrderEngine

DEMO_BALANCES = [
    (1, "TRY", Decimal("10000.00")),
    (1, "AAPL", Decimal("10.00")),
    (2, "TRY", Decimal("15000.00")),
    (2, "GOOGL", Decimal("5.00")),
]


def main() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    engine = OrderEngine.from_settings(settings)
    engine.database.init_db()
    for account_id, asset, amount in DEMO_BALANCES:
        engine.ledger.deposit(account_id, asset, amount)
    engine.database.dispose()
    print(f"Seeded {len(DEMO_BALANCES)} balances into {settings.state_store_uri}")


if __name__ == "__main__":
    main()
