"""
db
==

Relational store for asset balances and orders, built on SQLAlchemy
Core.  The store is the only shared state of the engine: nothing is
cached between calls, and every mutation re-reads the rows it touches
inside the transaction that writes them.

Tables:
  - asset_balances(id, account_id, asset, total AMOUNT, usable AMOUNT)
    unique on (account_id, asset)
  - orders(id, account_id, asset, side, size, price, status, created_at)

Amounts are NUMERIC(28, 8) on PostgreSQL.  SQLite has no decimal type and
would round them through a float, so there they are kept as zero-padded
fixed-width text, which compares in the same order as the numbers it holds.

Locking:
  - PostgreSQL: rows are locked with ``SELECT ... FOR UPDATE`` and each
    transaction sets ``lock_timeout``.  Settlement transactions run at
    ``SERIALIZABLE`` isolation.
  - SQLite: every transaction starts with ``BEGIN IMMEDIATE``, which
    takes the database write lock up front.  Writers are therefore fully
    serialized and the busy timeout plays the role of the lock timeout.
    Read-only transactions use a deferred ``BEGIN``.

Schema migrations live in ``alembic/``; ``init_db`` is kept for tests
and for quick local setups.
"""

from __future__ import annotations

import contextlib
import logging
from decimal import Decimal
from typing import Any, Iterator, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from ..exceptions import StoreContention, StoreError
from ..models import quantize

logger = logging.getLogger(__name__)


class Amount(TypeDecorator):
    """Exact decimal amount with eight places on every backend."""

    impl = Numeric
    cache_ok = True

    # 20 integer digits, the point and 8 decimals.
    TEXT_WIDTH = 29

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.TEXT_WIDTH))
        return dialect.type_descriptor(Numeric(precision=28, scale=8))

    def process_bind_param(self, value: Any, dialect: Dialect) -> Any:
        if value is None or dialect.name != "sqlite":
            return value
        return format(quantize(Decimal(value)), f"0{self.TEXT_WIDTH}.8f")

    def process_result_value(self, value: Any, dialect: Dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(value)


AMOUNT = Amount(precision=28, scale=8)

metadata = MetaData()

asset_balances_table = Table(
    "asset_balances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("asset", String(16), nullable=False),
    Column("total", AMOUNT, nullable=False, default=0),
    Column("usable", AMOUNT, nullable=False, default=0),
    UniqueConstraint("account_id", "asset", name="uq_asset_balances_account_asset"),
    CheckConstraint("usable >= 0", name="ck_asset_balances_usable_non_negative"),
    CheckConstraint("usable <= total", name="ck_asset_balances_usable_le_total"),
)

orders_table = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("asset", String(16), nullable=False),
    Column("side", String(4), nullable=False),
    Column("size", AMOUNT, nullable=False),
    Column("price", AMOUNT, nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    CheckConstraint("size > 0", name="ck_orders_size_positive"),
    CheckConstraint("price > 0", name="ck_orders_price_positive"),
)

# SQLSTATEs that mean "try the whole transaction again".
_RETRYABLE_PGCODES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available (lock_timeout)
}


def is_contention(exc: DBAPIError) -> bool:
    """Return True if ``exc`` is a lock wait, serialization or deadlock failure."""
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    if isinstance(exc, OperationalError):
        message = str(orig).lower()
        return "database is locked" in message or "database table is locked" in message
    return False


class Database:
    """Engine wrapper that hands out locked, translated transactions."""

    def __init__(self, engine: Engine, *, lock_timeout_seconds: float = 10.0) -> None:
        self.engine = engine
        self.lock_timeout_seconds = lock_timeout_seconds

    @classmethod
    def from_uri(cls, uri: str, *, lock_timeout_seconds: float = 10.0) -> "Database":
        """Create a database from a SQLAlchemy URI."""
        connect_args = {}
        if uri.startswith("sqlite"):
            connect_args = {"timeout": lock_timeout_seconds, "check_same_thread": False}
        engine = create_engine(uri, echo=False, future=True, connect_args=connect_args)
        if engine.dialect.name == "sqlite":
            _use_immediate_transactions(engine)
        return cls(engine, lock_timeout_seconds=lock_timeout_seconds)

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self.engine.begin() as conn:
            metadata.create_all(conn)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextlib.contextmanager
    def transaction(
        self, *, serializable: bool = False, read_only: bool = False
    ) -> Iterator[Connection]:
        """Yield a connection inside a transaction that commits on success.

        ``read_only`` transactions skip the up-front write lock on SQLite.

        Any DBAPI failure is rolled back and re-raised as
        :class:`StoreContention` (retryable) or :class:`StoreError`.
        Engine exceptions raised by the caller's block roll the
        transaction back and propagate unchanged.
        """
        try:
            with self.engine.connect() as conn:
                if read_only:
                    conn = conn.execution_options(brokerage_read_only=True)
                if serializable and not self.is_sqlite:
                    conn = conn.execution_options(isolation_level="SERIALIZABLE")
                with conn.begin():
                    self._apply_lock_timeout(conn)
                    yield conn
        except IntegrityError as exc:
            # Two transactions creating the same (account, asset) row.
            if "uq_asset_balances_account_asset" in str(exc.orig) or "UNIQUE" in str(exc.orig):
                logger.warning("Concurrent balance insert, transaction rolled back: %s", exc.orig)
                raise StoreContention(str(exc.orig)) from exc
            logger.error("Integrity error, transaction rolled back: %s", exc.orig)
            raise StoreError(str(exc.orig)) from exc
        except DBAPIError as exc:
            if is_contention(exc):
                logger.warning("Store contention, transaction rolled back: %s", exc.orig)
                raise StoreContention(str(exc.orig)) from exc
            logger.error("Store failure, transaction rolled back: %s", exc.orig)
            raise StoreError(str(exc.orig)) from exc

    def _apply_lock_timeout(self, conn: Connection) -> None:
        if self.engine.dialect.name == "postgresql":
            millis = int(self.lock_timeout_seconds * 1000)
            conn.execute(text(f"SET LOCAL lock_timeout = {millis}"))


def _use_immediate_transactions(engine: Engine) -> None:
    """Make pysqlite start write transactions with ``BEGIN IMMEDIATE``."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        # Stop pysqlite from emitting its own deferred BEGIN.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        if conn.get_execution_options().get("brokerage_read_only"):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
