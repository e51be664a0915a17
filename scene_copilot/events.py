"""Observer lists used by the managers to broadcast state changes.

Handles are returned on subscribe and must be passed back to
``unsubscribe`` when the consumer (a panel, the bridge server) goes away.
Callbacks run in subscription order.
"""

import itertools
import logging
import threading

logger = logging.getLogger(__name__)


class Observers:
    """An ordered list of callbacks with explicit unregistration."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._callbacks: dict[int, object] = {}
        self._ids = itertools.count(1)

    def subscribe(self, callback) -> int:
        with self._lock:
            handle = next(self._ids)
            self._callbacks[handle] = callback
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            return self._callbacks.pop(handle, None) is not None

    def clear(self):
        with self._lock:
            self._callbacks.clear()

    def __len__(self):
        with self._lock:
            return len(self._callbacks)

    def emit(self, *args):
        """Call every subscriber with *args*.

        A subscriber that raises is logged and skipped; the remaining
        subscribers still run.
        """
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Observer on '{self.name}' raised")
