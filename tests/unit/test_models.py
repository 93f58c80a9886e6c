"""Unit tests for order request validation and funding rules."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from brokerage.models import Order, OrderRequest, OrderSide, OrderStatus, funding_for, quantize


def test_request_normalises_symbol_and_side() -> None:
    req = OrderRequest(account_id=1, asset=" aapl ", side="buy", size="2", price="150.5")
    assert req.asset == "AAPL"
    assert req.side is OrderSide.BUY
    assert req.notional == Decimal("301.00000000")


@pytest.mark.parametrize(
    "field, value",
    [
        ("size", "0"),
        ("price", "-1"),
        ("size", "0.000000001"),
        ("asset", "A B"),
        ("size", "1e25"),
        ("price", "100000000000000000000"),
    ],
)
def test_request_rejects_bad_values(field, value) -> None:
    kwargs = {"account_id": 1, "asset": "AAPL", "side": "SELL", "size": "1", "price": "1"}
    kwargs[field] = value
    with pytest.raises(ValidationError):
        OrderRequest(**kwargs)


def test_funding_asset_depends_on_side() -> None:
    assert funding_for(OrderSide.BUY, "AAPL", Decimal("2"), Decimal("150"), "TRY") == (
        "TRY",
        Decimal("300.00000000"),
    )
    assert funding_for(OrderSide.SELL, "AAPL", Decimal("2"), Decimal("150"), "TRY") == (
        "AAPL",
        Decimal("2"),
    )


def test_order_from_naive_row_is_utc() -> None:
    order = Order.from_row(
        {
            "id": 1,
            "account_id": 1,
            "asset": "AAPL",
            "side": "SELL",
            "size": Decimal("1"),
            "price": Decimal("3.333"),
            "status": "PENDING",
            "created_at": dt.datetime(2026, 1, 1, 12, 0),
        }
    )
    assert order.created_at.tzinfo is dt.timezone.utc
    assert order.status is OrderStatus.PENDING
    assert order.funding("TRY") == ("AAPL", Decimal("1"))


def test_notional_beyond_storable_range_is_a_validation_error() -> None:
    with pytest.raises(ValidationError, match="too large"):
        OrderRequest(
            account_id=1, asset="AAPL", side="BUY", size="10000000000", price="10000000000"
        )


def test_quantize_handles_wide_values() -> None:
    assert quantize(Decimal("1e25")) == Decimal("1e25")
    assert quantize(Decimal("0.123456785")) == Decimal("0.12345679")
