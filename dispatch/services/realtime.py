# dispatch/services/realtime.py
"""In-process broadcast channel for manager dashboards, keyed by organization."""
from __future__ import annotations

import queue
import threading
from typing import Any
from uuid import UUID

ASSIGNMENT_UPDATED = "assignment.updated"
BID_WINDOW_OPENED = "bid_window.opened"
BID_WINDOW_CLOSED = "bid_window.closed"
DRIVER_FLAGGED = "driver.flagged"


class ManagerBroadcaster:
    def __init__(self, max_queue: int = 100):
        self._lock = threading.Lock()
        self._subscribers: dict[UUID, list[queue.Queue]] = {}
        self._max_queue = max_queue

    def subscribe(self, org_id: UUID) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._max_queue)
        with self._lock:
            self._subscribers.setdefault(org_id, []).append(q)
        return q

    def unsubscribe(self, org_id: UUID, q: queue.Queue) -> None:
        with self._lock:
            subs = self._subscribers.get(org_id, [])
            if q in subs:
                subs.remove(q)

    def publish(self, org_id: UUID, event: str, payload: dict[str, Any]) -> int:
        """Deliver to every subscriber of ``org_id``; slow subscribers drop events."""
        message = {"event": event, "org_id": str(org_id), "payload": payload}
        with self._lock:
            subs = list(self._subscribers.get(org_id, []))
        delivered = 0
        for q in subs:
            try:
                q.put_nowait(message)
                delivered += 1
            except queue.Full:
                pass
        return delivered


broadcaster = ManagerBroadcaster()
