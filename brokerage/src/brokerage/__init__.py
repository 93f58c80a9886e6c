"""
Brokerage asset ledger and order engine.

Customers place BUY/SELL orders against balances of a base currency and
tradeable securities; an operator matches or cancels them.  The
``services`` subpackage holds the relational store, the asset ledger
that reserves, releases and settles balances, and the order engine that
drives the ledger through each order's lifecycle.  Any transport (the
bundled CLI, a REST layer, an RPC server) can front the engine.
"""

from .config import Settings, load_settings  # noqa: F401
from .models import AssetBalance, Order, OrderSide, OrderStatus  # noqa: F401
from .services import AssetLedger, Database, OrderEngine  # noqa: F401

__version__ = "0.1.0"
