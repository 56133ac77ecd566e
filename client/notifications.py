"""Toast notifications raised by the client data hooks."""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List

logger = logging.getLogger(__name__)

TOAST_KINDS = ("success", "error", "info", "warning")

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class Toast:
    kind: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Bounded history of toasts plus synchronous subscribers.

    Each toast is logged at a level matching its kind.  A subscriber that
    raises is logged and does not stop delivery to the others.
    """

    def __init__(self, max_items: int = 50) -> None:
        self._items: deque = deque(maxlen=max_items)
        self._subscribers: List[Callable[[Toast], None]] = []
        self._lock = threading.Lock()

    def notify(self, kind: str, message: str) -> Toast:
        if kind not in TOAST_KINDS:
            raise ValueError(f"Unknown toast kind {kind!r}; use one of {TOAST_KINDS}")
        toast = Toast(kind, message)
        with self._lock:
            self._items.append(toast)
            subscribers = list(self._subscribers)
        logger.log(_LOG_LEVELS[kind], "[%s] %s", kind, message)
        for callback in subscribers:
            try:
                callback(toast)
            except Exception:
                logger.exception("Toast subscriber %r failed", callback)
        return toast

    def success(self, message: str) -> Toast:
        return self.notify("success", message)

    def error(self, message: str) -> Toast:
        return self.notify("error", message)

    def info(self, message: str) -> Toast:
        return self.notify("info", message)

    def subscribe(self, callback: Callable[[Toast], None]) -> Callable[[], None]:
        """Register *callback*; the returned function unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def items(self) -> List[Toast]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
