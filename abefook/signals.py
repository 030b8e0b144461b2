"""Network activity signals.

Every network attempt emits ``REQUEST_ACTIVITY_STARTED`` before the exchange
and ``REQUEST_ACTIVITY_ENDED`` after it, whatever the outcome. Observers
(spinners, status bars) subscribe with ``on``.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List

REQUEST_ACTIVITY_STARTED = "abefook.request_activity_started"
REQUEST_ACTIVITY_ENDED = "abefook.request_activity_ended"

logger = logging.getLogger("abefook.signals")


class ActivitySignals:
    def __init__(self) -> None:
        self.handlers: Dict[str, List[Callable[[str], None]]] = {}

    def on(self, event: str, handler: Callable[[str], None]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable[[str], None]) -> None:
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str) -> None:
        for h in list(self.handlers.get(event, [])):
            try:
                h(event)
            except Exception:
                # an observer must not break the request that emitted
                logger.exception("Activity observer failed for %s", event)


signals = ActivitySignals()


__all__ = ["ActivitySignals", "signals", "REQUEST_ACTIVITY_STARTED", "REQUEST_ACTIVITY_ENDED"]
