"""Append-only audit log of order lifecycle events.

Each call to ``log`` appends one JSON line containing the event type
and payload.  Writes from concurrent request threads are serialized by
a lock so lines never interleave.

To enable the audit log, set ``EVENT_STORE_PATH`` to a writable file
path.  Events are written after the store transaction commits, so the
log never contains a transition that was rolled back.
"""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Dict


class EventStore:
    """Append-only JSON Lines event logger."""

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        self._lock = threading.Lock()

    def log(self, event_type: str, data: Dict[str, Any]) -> None:
        """Append an event to the log file.

        Args:
            event_type: A string identifying the type of event.
            data: A dictionary of event data.  Decimals and datetimes
                are written as strings.
        """
        line = json.dumps({"type": event_type, "data": data}, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
