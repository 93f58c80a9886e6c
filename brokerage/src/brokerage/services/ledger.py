"""
Asset ledger.

The ledger is the only code that mutates ``asset_balances``.  Each
balance row holds ``total`` and ``usable``; the difference is the
amount reserved against pending orders.  Every mutation locks the rows
it touches, re-reads them, checks ``0 <= usable <= total`` on the
result and only then writes, so a failed call never leaves a partial
write behind.

Mutations accept an optional open ``Connection``.  The order engine
passes its own so that a reservation and the order row it backs commit
or roll back together.  Without one, the ledger runs its own
transaction with bounded retry on lock contention.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List, Optional, Set, TypeVar

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, RowMapping

from ..exceptions import (
    AssetNotFound,
    InsufficientBalance,
    InvalidOrder,
    LedgerInvariantError,
)
from ..models import AssetBalance, Order, OrderSide, fits_store
from .db import Database, asset_balances_table as balances
from .retry import run_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AssetLedger:
    """Reserve, release and settle balances with row-level locking."""

    def __init__(
        self,
        database: Database,
        *,
        base_currency: str = "TRY",
        retry_attempts: int = 3,
    ) -> None:
        self.database = database
        self.base_currency = base_currency
        self.retry_attempts = retry_attempts

    # ------------------------------------------------------------------
    # Reads

    def has_usable(self, account_id: int, asset: str, amount: Decimal) -> bool:
        """Advisory check that ``usable >= amount``.

        The answer can be stale by the time the caller acts on it.  Only
        :meth:`reserve` decides whether funds are actually available.
        """
        balance = self.get_balance(account_id, asset)
        if balance is None:
            logger.info("No %s balance for account %s", asset, account_id)
            return False
        return balance.usable >= amount

    def get_balance(self, account_id: int, asset: str) -> Optional[AssetBalance]:
        def apply(c: Connection) -> Optional[RowMapping]:
            return c.execute(
                select(balances).where(
                    balances.c.account_id == account_id, balances.c.asset == asset
                )
            ).mappings().first()

        row = self._run(apply, None, read_only=True)
        return AssetBalance.from_row(row) if row is not None else None

    def list_balances(self, account_id: int) -> List[AssetBalance]:
        def apply(c: Connection) -> List[RowMapping]:
            return list(
                c.execute(
                    select(balances)
                    .where(balances.c.account_id == account_id)
                    .order_by(balances.c.asset)
                ).mappings()
            )

        rows = self._run(apply, None, read_only=True)
        logger.info("Found %d balances for account %s", len(rows), account_id)
        return [AssetBalance.from_row(row) for row in rows]

    def known_assets(self, conn: Optional[Connection] = None) -> Set[str]:
        """Distinct symbols that have at least one balance record."""
        query = select(balances.c.asset).distinct()
        return self._run(lambda c: set(c.execute(query).scalars()), conn, read_only=True)

    # ------------------------------------------------------------------
    # Mutations

    def reserve(
        self,
        account_id: int,
        asset: str,
        amount: Decimal,
        conn: Optional[Connection] = None,
    ) -> AssetBalance:
        """Move ``amount`` from usable to reserved.

        Raises
        ------
        AssetNotFound
            No balance record exists for ``(account_id, asset)``.
        InsufficientBalance
            ``usable < amount`` at the moment the row is locked.
        """
        _require_positive(amount)

        def apply(c: Connection) -> AssetBalance:
            row = self._lock(c, account_id, asset)
            if row is None:
                logger.error("No %s balance to reserve for account %s", asset, account_id)
                raise AssetNotFound(f"no {asset} balance for account {account_id}")
            if row["usable"] < amount:
                logger.warning(
                    "Insufficient %s for account %s: usable=%s requested=%s",
                    asset,
                    account_id,
                    row["usable"],
                    amount,
                )
                raise InsufficientBalance(
                    f"usable {asset} balance {row['usable']} is below {amount}"
                )
            balance = self._write(c, row, usable=row["usable"] - amount)
            logger.info(
                "Reserved %s %s for account %s, usable now %s",
                amount,
                asset,
                account_id,
                balance.usable,
            )
            return balance

        return self._run(apply, conn)

    def release(
        self,
        account_id: int,
        asset: str,
        amount: Decimal,
        conn: Optional[Connection] = None,
    ) -> Optional[AssetBalance]:
        """Return ``amount`` from reserved to usable.

        A missing balance record is logged and ignored: release amounts
        always come from an earlier successful reservation.
        """
        _require_positive(amount)

        def apply(c: Connection) -> Optional[AssetBalance]:
            row = self._lock(c, account_id, asset)
            if row is None:
                logger.warning(
                    "Release of %s %s for account %s skipped: no balance record",
                    amount,
                    asset,
                    account_id,
                )
                return None
            balance = self._write(c, row, usable=row["usable"] + amount)
            logger.info(
                "Released %s %s for account %s, usable now %s",
                amount,
                asset,
                account_id,
                balance.usable,
            )
            return balance

        return self._run(apply, conn)

    def settle(self, order: Order, conn: Optional[Connection] = None) -> None:
        """Realize a pending order against its reservation.

        BUY: ``total(base) -= notional``; ``asset`` is credited ``size``.
        SELL: ``total(asset) -= size``; ``base`` is credited ``notional``.
        Both rows are written in one transaction or not at all.
        """
        if order.side is OrderSide.BUY:
            debit_asset, debit = self.base_currency, order.notional
            credit_asset, credit = order.asset, order.size
        else:
            debit_asset, credit_asset = order.asset, self.base_currency
            debit, credit = order.size, order.notional

        def apply(c: Connection) -> None:
            # Lock in a fixed order so two settlements never deadlock.
            locked = {
                symbol: self._lock(c, order.account_id, symbol)
                for symbol in sorted({debit_asset, credit_asset})
            }
            source = locked[debit_asset]
            if source is None:
                logger.error(
                    "Order %s settles against missing %s balance of account %s",
                    order.id,
                    debit_asset,
                    order.account_id,
                )
                raise AssetNotFound(f"no {debit_asset} balance for account {order.account_id}")
            self._write(c, source, total=source["total"] - debit)
            self._credit(c, order.account_id, credit_asset, credit, locked[credit_asset])
            logger.info(
                "Settled order %s for account %s: -%s %s, +%s %s",
                order.id,
                order.account_id,
                debit,
                debit_asset,
                credit,
                credit_asset,
            )

        self._run(apply, conn, serializable=True)

    def deposit(
        self,
        account_id: int,
        asset: str,
        amount: Decimal,
        conn: Optional[Connection] = None,
    ) -> AssetBalance:
        """Credit ``total`` and ``usable``, creating the record when absent."""
        _require_positive(amount)

        def apply(c: Connection) -> AssetBalance:
            row = self._lock(c, account_id, asset)
            balance = self._credit(c, account_id, asset, amount, row)
            logger.info("Deposited %s %s for account %s", amount, asset, account_id)
            return balance

        return self._run(apply, conn)

    # ------------------------------------------------------------------
    # Internals

    def _run(
        self,
        apply: Callable[[Connection], T],
        conn: Optional[Connection],
        *,
        serializable: bool = False,
        read_only: bool = False,
    ) -> T:
        if conn is not None:
            return apply(conn)

        def attempt() -> T:
            with self.database.transaction(
                serializable=serializable, read_only=read_only
            ) as own:
                return apply(own)

        return run_with_retry(attempt, attempts=self.retry_attempts)

    @staticmethod
    def _lock(c: Connection, account_id: int, asset: str) -> Optional[RowMapping]:
        return c.execute(
            select(balances)
            .where(balances.c.account_id == account_id, balances.c.asset == asset)
            .with_for_update()
        ).mappings().first()

    def _credit(
        self,
        c: Connection,
        account_id: int,
        asset: str,
        amount: Decimal,
        row: Optional[RowMapping],
    ) -> AssetBalance:
        if row is not None:
            return self._write(c, row, total=row["total"] + amount, usable=row["usable"] + amount)
        c.execute(
            insert(balances).values(
                account_id=account_id, asset=asset, total=amount, usable=amount
            )
        )
        logger.info("Opened %s balance for account %s with %s", asset, account_id, amount)
        return AssetBalance(account_id=account_id, asset=asset, total=amount, usable=amount)

    @staticmethod
    def _write(
        c: Connection,
        row: RowMapping,
        *,
        total: Optional[Decimal] = None,
        usable: Optional[Decimal] = None,
    ) -> AssetBalance:
        new_total = row["total"] if total is None else total
        new_usable = row["usable"] if usable is None else usable
        if not (Decimal(0) <= new_usable <= new_total and fits_store(new_total)):
            logger.error(
                "Refusing %s balance of account %s: total=%s usable=%s",
                row["asset"],
                row["account_id"],
                new_total,
                new_usable,
            )
            raise LedgerInvariantError(
                f"{row['asset']} balance of account {row['account_id']} would become "
                f"total={new_total} usable={new_usable}"
            )
        c.execute(
            update(balances)
            .where(balances.c.id == row["id"])
            .values(total=new_total, usable=new_usable)
        )
        return AssetBalance(
            account_id=row["account_id"], asset=row["asset"], total=new_total, usable=new_usable
        )


def _require_positive(amount: Decimal) -> None:
    if amount <= 0:
        raise InvalidOrder(f"amount must be positive, got {amount}")
    if not fits_store(amount):
        raise InvalidOrder(f"amount {amount} is too large")
