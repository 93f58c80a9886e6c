"""
Command line front end for the ledger and order engine.

Usage
-----

.. code-block:: bash

    export STATE_STORE_URI=sqlite:///brokerage.db
    brokerage init-db
    brokerage fund --account 1 --asset TRY --amount 10000
    brokerage create-order --account 1 --asset AAPL --side BUY --size 2 --price 150
    brokerage match-order 1
    brokerage balances --account 1

Every command prints JSON on stdout.  A rejected operation prints
``<code>: <message>`` on stderr and exits with status 1.
"""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from .config import load_settings
from .exceptions import BrokerageError
from .models import OrderStatus
from .services import metrics
from .services.order_engine import OrderEngine

logger = logging.getLogger(__name__)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"not a decimal number: {value!r}") from exc


def _timestamp(value: str) -> dt.datetime:
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 timestamp: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="brokerage", description="Asset ledger and order engine.")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables if they do not exist.")

    fund = sub.add_parser("fund", help="Credit an account balance.")
    fund.add_argument("--account", type=int, required=True)
    fund.add_argument("--asset", required=True)
    fund.add_argument("--amount", type=_decimal, required=True)

    bal = sub.add_parser("balances", help="List balances of an account.")
    bal.add_argument("--account", type=int, required=True)

    create = sub.add_parser("create-order", help="Reserve funds and open an order.")
    create.add_argument("--account", type=int, required=True)
    create.add_argument("--asset", required=True)
    create.add_argument("--side", required=True, choices=["BUY", "SELL", "buy", "sell"])
    create.add_argument("--size", type=_decimal, required=True)
    create.add_argument("--price", type=_decimal, required=True)

    cancel = sub.add_parser("cancel-order", help="Cancel a pending order.")
    cancel.add_argument("order_id", type=int)
    cancel.add_argument("--requester", type=int, help="Account asking for the cancellation")
    cancel.add_argument("--admin", action="store_true", help="Cancel on behalf of any account")

    match = sub.add_parser("match-order", help="Settle a pending order.")
    match.add_argument("order_id", type=int)

    ls = sub.add_parser("list-orders", help="List orders.")
    ls.add_argument("--account", type=int)
    ls.add_argument("--status", choices=[s.value for s in OrderStatus])
    ls.add_argument("--start", type=_timestamp, help="Inclusive ISO-8601 lower bound")
    ls.add_argument("--end", type=_timestamp, help="Inclusive ISO-8601 upper bound")
    return ap


def _dump(result: Any) -> str:
    if isinstance(result, BaseModel):
        payload: Any = result.model_dump(mode="json")
    elif isinstance(result, list):
        payload = [item.model_dump(mode="json") for item in result]
    else:
        payload = result
    return json.dumps(payload, indent=2)


def run(engine: OrderEngine, args: argparse.Namespace) -> Any:
    if args.command == "init-db":
        engine.database.init_db()
        return {"status": "ok"}
    if args.command == "fund":
        return engine.ledger.deposit(args.account, args.asset.strip().upper(), args.amount)
    if args.command == "balances":
        return engine.ledger.list_balances(args.account)
    if args.command == "create-order":
        return engine.create_order(args.account, args.asset, args.side, args.size, args.price)
    if args.command == "cancel-order":
        return engine.cancel_order(args.order_id, args.requester, is_privileged=args.admin)
    if args.command == "match-order":
        return engine.match_order(args.order_id)
    if args.command == "list-orders":
        status = OrderStatus(args.status) if args.status else None
        return engine.list_orders(args.account, status, args.start, args.end)
    raise ValueError(f"unknown command {args.command}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except BrokerageError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    logging.basicConfig(level=settings.log_level)
    if settings.prometheus_port:
        metrics.serve(settings.prometheus_port)
    engine = OrderEngine.from_settings(settings)
    try:
        result = run(engine, args)
    except BrokerageError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        engine.database.dispose()
    print(_dump(result))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
