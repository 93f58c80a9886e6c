"""Service layer for the brokerage engine.

This package exposes the relational store, the asset ledger and the
order engine built on top of it.
"""

from .db import Database  # noqa: F401
from .event_store import EventStore  # noqa: F401
from .ledger import AssetLedger  # noqa: F401
from .order_engine import OrderEngine  # noqa: F401
