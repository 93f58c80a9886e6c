"""
Prometheus metrics for the order lifecycle.

* ``brokerage_order_events_total{event=...}`` – orders created,
  cancelled and matched.
* ``brokerage_order_rejections_total{operation=..., code=...}`` –
  operations refused with a typed error.
* ``brokerage_transaction_retries_total`` – store transactions re-run
  after lock contention.

The CLI exposes them over HTTP when ``PROMETHEUS_PORT`` is set.
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

ORDER_EVENTS = Counter(
    "brokerage_order_events",
    "Order lifecycle transitions",
    labelnames=["event"],
)
ORDER_REJECTIONS = Counter(
    "brokerage_order_rejections",
    "Order operations rejected with a typed error",
    labelnames=["operation", "code"],
)
TRANSACTION_RETRIES = Counter(
    "brokerage_transaction_retries",
    "Store transactions retried after lock contention",
)


def serve(port: int) -> None:
    """Start the Prometheus HTTP endpoint on ``port``."""
    try:
        start_http_server(port)
    except OSError as exc:
        # Likely already started in this process
        logger.debug("Prometheus server not started on port %d: %s", port, exc)
        return
    logger.info("Metrics exposed on port %d", port)
