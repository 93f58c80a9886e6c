"""
Order engine.

Owns the order lifecycle and drives the ledger through it:

* ``create_order`` reserves the funding asset, then inserts a PENDING
  order.
* ``cancel_order`` releases the reservation, then marks the order
  CANCELLED.
* ``match_order`` settles the trade, then marks the order MATCHED.

The ledger call and the order write share one transaction, so a failed
ledger call leaves neither a reservation nor an order behind.  Status
changes are compare-and-swap updates guarded by ``status = PENDING``
on a row locked at the start of the transaction, which makes a racing
cancel and match resolve to exactly one winner.
"""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Callable, List, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from ..config import Settings
from ..exceptions import (
    BrokerageError,
    InvalidAsset,
    InvalidOrder,
    InvalidTransition,
    LedgerInvariantError,
    OrderNotFound,
    UnauthorizedAccess,
)
from ..models import Order, OrderRequest, OrderStatus, funding_for, utcnow
from . import metrics
from .db import Database, orders_table as orders
from .event_store import EventStore
from .ledger import AssetLedger
from .retry import run_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderEngine:
    """Create, cancel and match orders against the asset ledger."""

    def __init__(
        self,
        database: Database,
        ledger: AssetLedger,
        *,
        tradeable_assets: frozenset = frozenset(),
        min_order_size: Decimal = Decimal("0.01"),
        min_order_price: Decimal = Decimal("0.01"),
        retry_attempts: int = 3,
        event_store: Optional[EventStore] = None,
    ) -> None:
        self.database = database
        self.ledger = ledger
        self.tradeable_assets = frozenset(tradeable_assets)
        self.min_order_size = min_order_size
        self.min_order_price = min_order_price
        self.retry_attempts = retry_attempts
        self.event_store = event_store

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrderEngine":
        database = Database.from_uri(
            settings.state_store_uri, lock_timeout_seconds=settings.lock_timeout_seconds
        )
        ledger = AssetLedger(
            database,
            base_currency=settings.base_currency,
            retry_attempts=settings.lock_retry_attempts,
        )
        event_store = EventStore(settings.event_store_path) if settings.event_store_path else None
        return cls(
            database,
            ledger,
            tradeable_assets=settings.tradeable_assets,
            min_order_size=settings.min_order_size,
            min_order_price=settings.min_order_price,
            retry_attempts=settings.lock_retry_attempts,
            event_store=event_store,
        )

    @property
    def base_currency(self) -> str:
        return self.ledger.base_currency

    # ------------------------------------------------------------------
    # Lifecycle

    def create_order(
        self,
        account_id: int,
        asset: str,
        side: Any,
        size: Any,
        price: Any,
    ) -> Order:
        """Reserve funds and open a PENDING order.

        Raises
        ------
        InvalidOrder
            Malformed or oversized input, or size/price under the
            configured minimum.
        InvalidAsset
            Unknown symbol or the base currency itself.  Checked before
            the size and price minimums.
        InsufficientBalance, AssetNotFound
            The funding reservation failed; no order is created.
        """

        def attempt() -> Order:
            request = self._validate_request(account_id, asset, side, size, price)
            with self.database.transaction() as conn:
                self._validate_asset(conn, request.asset)
                self._check_minimums(request)
                funding_asset, amount = funding_for(
                    request.side, request.asset, request.size, request.price, self.base_currency
                )
                self.ledger.reserve(request.account_id, funding_asset, amount, conn=conn)
                created_at = utcnow()
                result = conn.execute(
                    insert(orders).values(
                        account_id=request.account_id,
                        asset=request.asset,
                        side=request.side.value,
                        size=request.size,
                        price=request.price,
                        status=OrderStatus.PENDING.value,
                        created_at=created_at,
                    )
                )
                return Order(
                    id=result.inserted_primary_key[0],
                    account_id=request.account_id,
                    asset=request.asset,
                    side=request.side,
                    size=request.size,
                    price=request.price,
                    status=OrderStatus.PENDING,
                    created_at=created_at,
                )

        order = self._observe("create", attempt)
        logger.info(
            "Created order %s: account=%s %s %s %s@%s",
            order.id,
            order.account_id,
            order.side.value,
            order.asset,
            order.size,
            order.price,
        )
        self._record("order_created", order)
        return order

    def cancel_order(
        self,
        order_id: int,
        requester_id: Optional[int] = None,
        is_privileged: bool = False,
    ) -> Order:
        """Release the reservation of a PENDING order and cancel it.

        Non-privileged requesters may only cancel their own orders.
        """

        def attempt() -> Order:
            with self.database.transaction() as conn:
                order = self._lock_order(conn, order_id)
                if not is_privileged and order.account_id != requester_id:
                    logger.warning(
                        "Account %s tried to cancel order %s of account %s",
                        requester_id,
                        order_id,
                        order.account_id,
                    )
                    raise UnauthorizedAccess("orders can only be cancelled by their owner")
                self._require_pending(order, "cancelled")
                funding_asset, amount = order.funding(self.base_currency)
                try:
                    self.ledger.release(order.account_id, funding_asset, amount, conn=conn)
                except LedgerInvariantError:
                    logger.error(
                        "Pending order %s has no live reservation of %s %s",
                        order_id,
                        amount,
                        funding_asset,
                    )
                    raise
                return self._transition(conn, order, OrderStatus.CANCELLED)

        order = self._observe("cancel", attempt)
        logger.info("Cancelled order %s", order.id)
        self._record("order_cancelled", order)
        return order

    def match_order(self, order_id: int) -> Order:
        """Settle a PENDING order against the ledger and mark it MATCHED."""

        def attempt() -> Order:
            with self.database.transaction(serializable=True) as conn:
                order = self._lock_order(conn, order_id)
                self._require_pending(order, "matched")
                self.ledger.settle(order, conn=conn)
                return self._transition(conn, order, OrderStatus.MATCHED)

        order = self._observe("match", attempt)
        logger.info("Matched order %s", order.id)
        self._record("order_matched", order)
        return order

    # ------------------------------------------------------------------
    # Queries

    def get_order(self, order_id: int) -> Order:
        def attempt() -> Any:
            with self.database.transaction(read_only=True) as conn:
                return conn.execute(
                    select(orders).where(orders.c.id == order_id)
                ).mappings().first()

        row = run_with_retry(attempt, attempts=self.retry_attempts)
        if row is None:
            raise OrderNotFound(f"order {order_id} not found")
        return Order.from_row(row)

    def list_orders(
        self,
        account_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        start: Optional[dt.datetime] = None,
        end: Optional[dt.datetime] = None,
    ) -> List[Order]:
        """List orders, optionally by account, status and creation interval.

        ``start`` and ``end`` are inclusive.
        """
        query = select(orders).order_by(orders.c.created_at, orders.c.id)
        if account_id is not None:
            query = query.where(orders.c.account_id == account_id)
        if status is not None:
            query = query.where(orders.c.status == OrderStatus(status).value)
        if start is not None:
            query = query.where(orders.c.created_at >= _as_utc(start))
        if end is not None:
            query = query.where(orders.c.created_at <= _as_utc(end))
        def attempt() -> Any:
            with self.database.transaction(read_only=True) as conn:
                return conn.execute(query).mappings().all()

        rows = run_with_retry(attempt, attempts=self.retry_attempts)
        return [Order.from_row(row) for row in rows]

    def pending_orders(self) -> List[Order]:
        return self.list_orders(status=OrderStatus.PENDING)

    # ------------------------------------------------------------------
    # Internals

    def _validate_request(
        self, account_id: int, asset: str, side: Any, size: Any, price: Any
    ) -> OrderRequest:
        try:
            request = OrderRequest(
                account_id=account_id, asset=asset, side=side, size=size, price=price
            )
        except ValidationError as exc:
            raise InvalidOrder(_first_error(exc)) from exc
        return request

    def _check_minimums(self, request: OrderRequest) -> None:
        if request.size < self.min_order_size:
            raise InvalidOrder(f"size {request.size} is below minimum {self.min_order_size}")
        if request.price < self.min_order_price:
            raise InvalidOrder(f"price {request.price} is below minimum {self.min_order_price}")

    def _validate_asset(self, conn: Connection, asset: str) -> None:
        if asset == self.base_currency:
            raise InvalidAsset(f"{asset} is the base currency and cannot be traded")
        if self.tradeable_assets:
            known = asset in self.tradeable_assets
        else:
            known = asset in self.ledger.known_assets(conn)
        if not known:
            raise InvalidAsset(f"{asset} is not a tradeable asset")

    @staticmethod
    def _lock_order(conn: Connection, order_id: int) -> Order:
        row = conn.execute(
            select(orders).where(orders.c.id == order_id).with_for_update()
        ).mappings().first()
        if row is None:
            raise OrderNotFound(f"order {order_id} not found")
        return Order.from_row(row)

    @staticmethod
    def _require_pending(order: Order, action: str) -> None:
        if order.status is not OrderStatus.PENDING:
            raise InvalidTransition(
                f"only pending orders can be {action}; order {order.id} is {order.status.value}"
            )

    @staticmethod
    def _transition(conn: Connection, order: Order, status: OrderStatus) -> Order:
        result = conn.execute(
            update(orders)
            .where(orders.c.id == order.id, orders.c.status == OrderStatus.PENDING.value)
            .values(status=status.value)
        )
        if result.rowcount != 1:
            raise InvalidTransition(f"order {order.id} is no longer pending")
        return order.model_copy(update={"status": status})

    def _observe(self, operation: str, attempt: Callable[[], T]) -> T:
        try:
            return run_with_retry(attempt, attempts=self.retry_attempts)
        except BrokerageError as exc:
            metrics.ORDER_REJECTIONS.labels(operation=operation, code=exc.code).inc()
            logger.warning("%s rejected (%s): %s", operation, exc.code, exc.message)
            raise

    def _record(self, event_type: str, order: Order) -> None:
        metrics.ORDER_EVENTS.labels(event=event_type).inc()
        if self.event_store is None:
            return
        try:
            self.event_store.log(event_type, order.model_dump(mode="json"))
        except OSError as exc:
            # The transition is already committed; the audit line is lost.
            logger.warning("Failed to write %s for order %s: %s", event_type, order.id, exc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ())) or "request"
    return f"{field}: {err.get('msg', 'invalid value')}"
