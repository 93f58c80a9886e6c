"""Tests for the AssetLedger reserve/release/settle protocol."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from brokerage.exceptions import (
    AssetNotFound,
    InsufficientBalance,
    InvalidOrder,
    LedgerInvariantError,
)
from brokerage.models import Order, OrderSide, OrderStatus


def _order(side: OrderSide, size: str, price: str, asset: str = "AAPL") -> Order:
    return Order(
        id=99,
        account_id=1,
        asset=asset,
        side=side,
        size=Decimal(size),
        price=Decimal(price),
        status=OrderStatus.PENDING,
        created_at=dt.datetime.now(dt.timezone.utc),
    )


def test_deposit_creates_then_credits(ledger) -> None:
    ledger.deposit(7, "TRY", Decimal("100"))
    ledger.deposit(7, "TRY", Decimal("50.5"))
    balance = ledger.get_balance(7, "TRY")
    assert balance.total == Decimal("150.5")
    assert balance.usable == Decimal("150.5")


def test_reserve_reduces_usable_only(funded) -> None:
    balance = funded.reserve(1, "TRY", Decimal("300"))
    assert balance.usable == Decimal("9700")
    stored = funded.get_balance(1, "TRY")
    assert stored.total == Decimal("10000")
    assert stored.usable == Decimal("9700")
    assert stored.reserved == Decimal("300")


def test_reserve_then_release_restores_usable(funded) -> None:
    before = funded.get_balance(1, "AAPL")
    funded.reserve(1, "AAPL", Decimal("3.25"))
    funded.release(1, "AAPL", Decimal("3.25"))
    after = funded.get_balance(1, "AAPL")
    assert after == before


def test_failed_reserve_leaves_balance_unchanged(funded) -> None:
    before = funded.get_balance(1, "AAPL")
    with pytest.raises(InsufficientBalance):
        funded.reserve(1, "AAPL", Decimal("50"))
    assert funded.get_balance(1, "AAPL") == before


def test_reserve_missing_record_raises_asset_not_found(funded) -> None:
    with pytest.raises(AssetNotFound):
        funded.reserve(1, "MSFT", Decimal("1"))
    with pytest.raises(AssetNotFound):
        funded.reserve(2, "TRY", Decimal("1"))


def test_reserve_rejects_non_positive_amount(funded) -> None:
    with pytest.raises(InvalidOrder):
        funded.reserve(1, "TRY", Decimal("0"))


def test_deposit_above_storable_range_is_rejected(ledger) -> None:
    with pytest.raises(InvalidOrder):
        ledger.deposit(1, "TRY", Decimal("1e20"))
    assert ledger.get_balance(1, "TRY") is None


def test_credit_overflowing_balance_is_refused(ledger) -> None:
    ledger.deposit(1, "TRY", Decimal("60000000000000000000"))
    with pytest.raises(LedgerInvariantError):
        ledger.deposit(1, "TRY", Decimal("60000000000000000000"))
    assert ledger.get_balance(1, "TRY").total == Decimal("60000000000000000000")


def test_release_without_record_is_a_noop(ledger) -> None:
    assert ledger.release(5, "TRY", Decimal("10")) is None
    assert ledger.get_balance(5, "TRY") is None


def test_release_beyond_total_is_refused(funded) -> None:
    with pytest.raises(LedgerInvariantError):
        funded.release(1, "TRY", Decimal("1"))
    assert funded.get_balance(1, "TRY").usable == Decimal("10000")


def test_has_usable_is_advisory(funded) -> None:
    assert funded.has_usable(1, "TRY", Decimal("10000")) is True
    assert funded.has_usable(1, "TRY", Decimal("10000.01")) is False
    assert funded.has_usable(1, "MSFT", Decimal("1")) is False


def test_settle_buy_moves_total_and_opens_target(ledger) -> None:
    ledger.deposit(1, "TRY", Decimal("10000.00"))
    ledger.reserve(1, "TRY", Decimal("300.00"))
    ledger.settle(_order(OrderSide.BUY, "2.00", "150.00", asset="MSFT"))
    base = ledger.get_balance(1, "TRY")
    target = ledger.get_balance(1, "MSFT")
    assert base.total == Decimal("9700.00")
    assert base.usable == Decimal("9700.00")
    assert target.total == Decimal("2.00")
    assert target.usable == Decimal("2.00")


def test_settle_sell_credits_base(funded) -> None:
    funded.reserve(1, "AAPL", Decimal("4"))
    funded.settle(_order(OrderSide.SELL, "4", "100.50"))
    aapl = funded.get_balance(1, "AAPL")
    base = funded.get_balance(1, "TRY")
    assert aapl.total == Decimal("6")
    assert aapl.usable == Decimal("6")
    assert base.total == Decimal("10402")
    assert base.usable == Decimal("10402")


def test_settle_without_reservation_is_rolled_back(funded) -> None:
    # No reservation was taken, so debiting total would push it below usable.
    with pytest.raises(LedgerInvariantError):
        funded.settle(_order(OrderSide.BUY, "2", "150"))
    assert funded.get_balance(1, "TRY").total == Decimal("10000")
    assert funded.get_balance(1, "AAPL").total == Decimal("10")


def test_settle_missing_source_raises(ledger) -> None:
    with pytest.raises(AssetNotFound):
        ledger.settle(_order(OrderSide.SELL, "1", "10"))
    assert ledger.get_balance(1, "TRY") is None


def test_list_balances_and_known_assets(funded) -> None:
    funded.deposit(2, "GOOGL", Decimal("5"))
    assets = [b.asset for b in funded.list_balances(1)]
    assert assets == ["AAPL", "TRY"]
    assert funded.known_assets() == {"AAPL", "TRY", "GOOGL"}


def test_large_amounts_are_stored_exactly(ledger) -> None:
    amount = Decimal("123456789012.12345678")
    ledger.deposit(9, "TRY", amount)
    balance = ledger.get_balance(9, "TRY")
    assert balance.total == amount
    assert balance.usable == amount

    ledger.reserve(9, "TRY", Decimal("0.00000001"))
    ledger.release(9, "TRY", Decimal("0.00000001"))
    assert ledger.get_balance(9, "TRY") == balance
