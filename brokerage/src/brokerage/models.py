"""
Domain models for balances and orders using Pydantic.  These models
validate order input at the edge of the engine and give the store
rows a typed, serializable shape that any transport can return as JSON.
"""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Context, Decimal
from enum import Enum
from typing import Any, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Every amount is stored with eight decimal places.
QUANTUM = Decimal("0.00000001")
# Amounts must stay below 10**20: 20 integer digits plus 8 decimals fit NUMERIC(28, 8).
MAX_AMOUNT = Decimal("1e20")

_WIDE = Context(prec=64)


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(QUANTUM, rounding=ROUND_HALF_UP, context=_WIDE)


def fits_store(amount: Decimal) -> bool:
    """Return True if ``amount`` can be stored without overflowing a column."""
    return abs(amount) < MAX_AMOUNT


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    CANCELLED = "CANCELLED"


class OrderRequest(BaseModel):
    """Request to open a new order."""

    account_id: int = Field(..., description="Owner of the order")
    asset: str = Field(..., min_length=1, max_length=16, description="Traded symbol, e.g. AAPL")
    side: OrderSide = Field(..., description="Order side")
    size: Decimal = Field(..., gt=0, lt=MAX_AMOUNT, description="Quantity of the traded asset")
    price: Decimal = Field(..., gt=0, lt=MAX_AMOUNT, description="Price per unit in the base currency")

    @field_validator("asset")
    @classmethod
    def _normalise_asset(cls, value: str) -> str:
        symbol = value.strip().upper()
        if not symbol.isalnum():
            raise ValueError(f"asset symbol {value!r} must be alphanumeric")
        return symbol

    @field_validator("side", mode="before")
    @classmethod
    def _normalise_side(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("size", "price")
    @classmethod
    def _max_eight_places(cls, value: Decimal) -> Decimal:
        if quantize(value) != value:
            raise ValueError("at most 8 decimal places are supported")
        return value

    @model_validator(mode="after")
    def _notional_fits(self) -> "OrderRequest":
        if not fits_store(self.size * self.price):
            raise ValueError(f"notional of {self.size} x {self.price} is too large")
        return self

    @property
    def notional(self) -> Decimal:
        return quantize(self.size * self.price)


class Order(BaseModel):
    """An order as persisted in the order store."""

    model_config = ConfigDict(frozen=True)

    id: int
    account_id: int
    asset: str
    side: OrderSide
    size: Decimal
    price: Decimal
    status: OrderStatus
    created_at: dt.datetime

    @property
    def notional(self) -> Decimal:
        return quantize(self.size * self.price)

    def funding(self, base_currency: str) -> Tuple[str, Decimal]:
        """Return ``(asset, amount)`` reserved to back this order."""
        return funding_for(self.side, self.asset, self.size, self.price, base_currency)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        created_at = row["created_at"]
        # SQLite hands timestamps back without tzinfo; they are stored as UTC.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=dt.timezone.utc)
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            asset=row["asset"],
            side=OrderSide(row["side"]),
            size=Decimal(row["size"]),
            price=Decimal(row["price"]),
            status=OrderStatus(row["status"]),
            created_at=created_at,
        )


class AssetBalance(BaseModel):
    """Balance of one asset for one account."""

    model_config = ConfigDict(frozen=True)

    account_id: int
    asset: str
    total: Decimal
    usable: Decimal

    @property
    def reserved(self) -> Decimal:
        return self.total - self.usable

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AssetBalance":
        return cls(
            account_id=row["account_id"],
            asset=row["asset"],
            total=Decimal(row["total"]),
            usable=Decimal(row["usable"]),
        )


def funding_for(
    side: OrderSide,
    asset: str,
    size: Decimal,
    price: Decimal,
    base_currency: str,
) -> Tuple[str, Decimal]:
    """BUY orders are funded in the base currency, SELL orders in the asset."""
    if side is OrderSide.BUY:
        return base_currency, quantize(size * price)
    return asset, size


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


__all__ = [
    "AssetBalance",
    "Order",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "MAX_AMOUNT",
    "QUANTUM",
    "fits_store",
    "funding_for",
    "quantize",
    "utcnow",
]
