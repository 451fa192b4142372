"""Session-status broadcasts.

Statuses: online, offline, active (a user is logged in), none (no user),
refresh_required (the auth token must be refreshed).

- on(event, handler): subscribe.
- emit(event, payload): record and deliver to subscribers.
- broadcast_session_status(status, payload): emit a sessionStatus event.

One bus per client; subscribers that raise are logged and skipped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List


logger = logging.getLogger(__name__)

SESSION_STATUS = "sessionStatus"
STATUSES = ("online", "offline", "active", "none", "refresh_required")


class EventBus:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []
        self.handlers: Dict[str, List[Callable[[Any], None]]] = {}

    def emit(self, event: str, payload: Any = None) -> None:
        self.events.append({"event": event, "payload": payload})
        for h in list(self.handlers.get(event, [])):
            try:
                h(payload)
            except Exception as exc:  # noqa: BLE001
                logger.warning("handler for %s failed: %s", event, exc)

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable[[Any], None]) -> None:
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def broadcast_session_status(self, status: str, payload: Any = None) -> None:
        if status not in STATUSES:
            raise ValueError(f"unknown session status: {status}")
        logger.debug("session status %s", status)
        self.emit(SESSION_STATUS, {"status": status, "payload": payload})

    def statuses(self) -> List[str]:
        return [e["payload"]["status"] for e in self.events if e["event"] == SESSION_STATUS]


__all__ = ["EventBus", "SESSION_STATUS", "STATUSES"]
