"""API usage tracking and per-minute rate limiting."""

import time
from dataclasses import dataclass, field

MINUTE_WINDOW_SECONDS = 60.0


@dataclass
class UsageTracker:
    """Counts requests overall and inside a lazily-reset one-minute window.

    The window is never reset on a timer.  It restarts when a request
    arrives at least ``MINUTE_WINDOW_SECONDS`` after the window began.
    """

    clock: object = field(default=time.monotonic, repr=False, compare=False)
    total_requests: int = 0
    requests_this_minute: int = 0
    last_request_time: float = 0.0
    minute_window_start: float | None = None

    def _window_expired(self, now: float) -> bool:
        if self.minute_window_start is None:
            return True
        return now - self.minute_window_start >= MINUTE_WINDOW_SECONDS

    def can_make_request(self, max_per_minute: int) -> bool:
        if self._window_expired(self.clock()):
            return max_per_minute > 0
        return self.requests_this_minute < max_per_minute

    def update_usage(self):
        now = self.clock()
        if self._window_expired(now):
            self.requests_this_minute = 0
            self.minute_window_start = now
        self.total_requests += 1
        self.requests_this_minute += 1
        self.last_request_time = now

    def statistics(self) -> tuple[int, int]:
        return self.total_requests, self.requests_this_minute

    def reset(self):
        self.total_requests = 0
        self.requests_this_minute = 0
        self.last_request_time = 0.0
        self.minute_window_start = None
