"""
Error taxonomy for the ledger and order engine.

Every error carries a stable ``code`` and a ``status_code`` hint so
that whatever transport fronts the engine (CLI, REST, RPC) can map
failures without inspecting messages.  Business errors describe a
rejected request and leave the store untouched.  Internal errors
describe a store or invariant failure; only ``StoreContention`` is
safe to retry.
"""

from __future__ import annotations


class BrokerageError(Exception):
    """Base class for all errors raised by the engine."""

    code = "brokerage_error"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidOrder(BrokerageError):
    code = "invalid_order"
    status_code = 400


class InvalidAsset(BrokerageError):
    code = "invalid_asset"
    status_code = 400


class InsufficientBalance(BrokerageError):
    code = "insufficient_balance"
    status_code = 409


class AssetNotFound(BrokerageError):
    code = "asset_not_found"
    status_code = 404


class OrderNotFound(BrokerageError):
    code = "order_not_found"
    status_code = 404


class InvalidTransition(BrokerageError):
    code = "invalid_transition"
    status_code = 400


class UnauthorizedAccess(BrokerageError):
    code = "unauthorized_access"
    status_code = 403


class StoreError(BrokerageError):
    """A definite store failure.  The transaction has been rolled back."""

    code = "store_error"


class StoreContention(StoreError):
    """Lock wait timeout, serialization failure or deadlock.

    The whole transaction may be re-run: every operation re-reads the
    rows it mutates.
    """

    code = "store_contention"


class LedgerInvariantError(BrokerageError):
    """A mutation would break ``0 <= usable <= total``."""

    code = "ledger_invariant"


class ConfigError(BrokerageError):
    code = "config_error"


BUSINESS_ERRORS = (
    InvalidOrder,
    InvalidAsset,
    InsufficientBalance,
    AssetNotFound,
    OrderNotFound,
    InvalidTransition,
    UnauthorizedAccess,
)
