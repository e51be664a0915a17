"""HTTP transport for model requests.

``HttpTransport.post`` never blocks the caller: the request runs on a
daemon worker thread and the outcome is handed to ``on_complete`` on
that thread.  A ``RequestHandle`` lets the caller abandon a request;
once cancelled, its completion is never delivered.
"""

import logging
import threading
from dataclasses import dataclass

import requests

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Outcome of one POST.

    ``ok`` is False only when no HTTP response arrived at all (connection
    failure or timeout); a 4xx/5xx reply is ``ok`` with its status set.
    """
    ok: bool
    status: int = 0
    body: str = ""
    error: str = ""


class RequestHandle:
    """Tracks one in-flight POST.

    ``cancel`` only stops delivery of the completion.  The worker keeps
    its connection until the server answers or the transport times out.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._done = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def _finish(self):
        self._done.set()


class HttpTransport:
    """Base class; subclasses implement ``_perform``."""

    def post(self, url: str, headers: dict, body: str, timeout: float,
             on_complete) -> RequestHandle:
        handle = RequestHandle()

        def worker():
            try:
                response = self._perform(url, headers, body, timeout)
            except Exception as exc:
                logger.exception("Transport worker failed")
                response = TransportResponse(ok=False, error=str(exc))
            try:
                if handle.cancelled:
                    logger.debug(f"Dropping response for cancelled request to {url}")
                else:
                    on_complete(response)
            finally:
                handle._finish()

        threading.Thread(target=worker, daemon=True, name="copilot-http").start()
        return handle

    def _perform(self, url: str, headers: dict, body: str,
                 timeout: float) -> TransportResponse:
        raise NotImplementedError


class RequestsTransport(HttpTransport):
    """Transport backed by a shared ``requests.Session``.

    ``timeout`` is passed to ``requests`` as is, so it bounds the connect
    and each socket read separately rather than the whole request.  A
    server that keeps trickling bytes can hold a worker past it.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()

    def _perform(self, url, headers, body, timeout):
        try:
            resp = self.session.post(url, data=body.encode("utf-8"), headers=headers,
                                     timeout=timeout)
        except requests.RequestException as exc:
            logger.warning(f"HTTP request to {url} failed: {exc}")
            return TransportResponse(ok=False, error=str(exc))
        return TransportResponse(ok=True, status=resp.status_code, body=resp.text)

    def close(self):
        self.session.close()
