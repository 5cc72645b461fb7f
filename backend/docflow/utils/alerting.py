import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_THRESHOLDS = {
    "DOCUMENT_PROCESSING_FAILED": 5,
    "EXTRACTION_PERSIST_FAILED": 3,
    "ORCHESTRATOR_OUTPUT_FALLBACK": 10,
}


class AuditAlertTracker:
    """Sliding-window counter that logs an alert each time an action hits its threshold."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._events: dict[str, deque[float]] = {}
        self._lock = Lock()

    def record(self, action: str, metadata: Optional[dict] = None) -> bool:
        limit = self._thresholds.get(action)
        if limit is None:
            return False
        now = time.monotonic()
        with self._lock:
            events = self._events.setdefault(action, deque())
            cutoff = now - self._window_seconds
            while events and events[0] <= cutoff:
                events.popleft()
            events.append(now)
            count = len(events)

        if count % limit != 0:
            return False
        logger.warning(
            "ALERT audit_action=%s count=%s window_seconds=%s metadata=%s",
            action,
            count,
            self._window_seconds,
            metadata or {},
        )
        return True

    def count(self, action: str) -> int:
        with self._lock:
            return len(self._events.get(action, ()))

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


alert_tracker = AuditAlertTracker(DEFAULT_WINDOW_SECONDS, DEFAULT_THRESHOLDS)
