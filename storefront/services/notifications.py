"""Fire-and-forget customer notifications.

The core only ever calls :func:`dispatch_safely`; a dispatcher that raises is
logged and otherwise ignored, so a failed email can never undo an order.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Dict, Optional, Protocol

import requests

from .logging import log_event


ORDER_PLACED = "order_placed"
ORDER_STATUS_CHANGED = "order_status_changed"


class Notifier(Protocol):
    def notify(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        ...


class LogNotifier:
    """Records the notification as a log event; used when no email endpoint is configured."""

    def notify(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        log_event("info", "notify.sent", kind=kind, recipient=recipient, order_number=payload.get("order_number"))


class HttpNotifier:
    """POSTs the notification to an email service on a background thread."""

    def __init__(self, endpoint: str, *, timeout: float = 10.0, background: bool = True) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.background = background

    def notify(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        if self.background:
            threading.Thread(target=self._post, args=(kind, recipient, payload), daemon=True).start()
        else:
            self._post(kind, recipient, payload)

    def _post(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        body = json.dumps({"type": kind, "to": recipient, "data": payload}, ensure_ascii=False, default=str)
        try:
            response = requests.post(
                self.endpoint,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            log_event("warning", "notify.failed", kind=kind, recipient=recipient, error=str(exc))
            return
        log_event("info", "notify.sent", kind=kind, recipient=recipient, status_code=response.status_code)


def dispatch_safely(notifier: Optional[Notifier], kind: str, recipient: Optional[str], payload: Dict[str, Any]) -> bool:
    """Hand a notification to ``notifier``; never raises."""
    if notifier is None or not recipient:
        return False
    try:
        notifier.notify(kind, recipient, payload)
    except Exception as exc:
        log_event("warning", "notify.failed", kind=kind, recipient=recipient, error=f"{type(exc).__name__}: {exc}")
        return False
    return True
