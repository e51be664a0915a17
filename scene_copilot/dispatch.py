"""Main-thread dispatch.

Host applications only allow scene access from their main thread, while
HTTP completions arrive on worker threads.  A ``MainThreadQueue`` lets
workers post work that the host drains from its timer or tick::

    queue = MainThreadQueue()
    orchestrator = LLMOrchestrator(..., dispatch=queue.post)
    # in the host's timer callback:
    queue.drain()
"""

import logging
import queue as _queue
import threading

logger = logging.getLogger(__name__)


def call_inline(fn):
    """Default dispatcher: run *fn* on whatever thread delivered it."""
    fn()


class MainThreadQueue:
    """FIFO of callables drained on the owning (main) thread."""

    def __init__(self, owner: threading.Thread | None = None):
        self._owner = owner or threading.main_thread()
        self._queue = _queue.Queue()

    def post(self, fn):
        """Queue *fn*; run it immediately when already on the owner thread."""
        if threading.current_thread() is self._owner:
            fn()
            return
        self._queue.put(fn)

    def drain(self) -> int:
        """Run every queued callable.  **Must** be called on the owner thread."""
        ran = 0
        while True:
            try:
                fn = self._queue.get_nowait()
            except _queue.Empty:
                break
            try:
                fn()
            except Exception:
                logger.exception("Dispatched call failed")
            ran += 1
        return ran

    def pending(self) -> int:
        return self._queue.qsize()
