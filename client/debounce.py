"""Trailing-edge debouncer backed by ``threading.Timer``."""

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Run *fn* once, *delay* seconds after the last ``call()``.

    Only the latest arguments survive.  ``cancel()`` drops a waiting call;
    a call that has already started is left to finish.

    Usage::

        search = Debouncer(run_search, delay=0.3)
        search.call("dela")
        search.call("dela cruz")   # only this one runs
    """

    def __init__(self, fn: Callable[..., Any], delay: float = 0.3) -> None:
        self.fn = fn
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._args: tuple = ()
        self._kwargs: dict = {}
        self._lock = threading.Lock()

    def call(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._args, self._kwargs = args, kwargs
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    __call__ = call

    def _take(self) -> Optional[tuple]:
        with self._lock:
            if self._timer is None:
                return None
            self._timer.cancel()
            self._timer = None
            pending = (self._args, self._kwargs)
            self._args, self._kwargs = (), {}
            return pending

    def _fire(self) -> None:
        pending = self._take()
        if pending is None:
            return
        args, kwargs = pending
        try:
            self.fn(*args, **kwargs)
        except Exception:
            # Timer threads have no caller to propagate to
            logger.exception("Debounced call to %r failed", self.fn)

    def flush(self) -> Any:
        """Run the waiting call now in this thread and return its result."""
        pending = self._take()
        if pending is None:
            return None
        args, kwargs = pending
        return self.fn(*args, **kwargs)

    def cancel(self) -> None:
        self._take()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None
