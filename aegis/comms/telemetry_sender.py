# aegis/comms/telemetry_sender.py
"""
Asynchronous delivery of telemetry payloads to the collector backend.

The agent loop only ever calls ``enqueue``, which never blocks: when the
queue is full the oldest payload is dropped. A single background thread
posts payloads one at a time and backs off exponentially while the backend
is failing. Delivery is at-most-once and best effort; whatever is still
queued at shutdown is abandoned.
"""

import logging
import threading
from collections import deque
from typing import Optional

import requests

from aegis.config.thresholds import SystemThresholds
from aegis.utils.log_throttle import RateLimitedLogger

TELEMETRY_PATH = "/api/telemetry"
TOKEN_HEADER = "X-Aegis-Token"


def normalize_backend_url(backend_url: Optional[str]) -> str:
    if backend_url is None:
        raise ValueError("backend URL is not set")
    url = backend_url.strip()
    if not url:
        raise ValueError("backend URL is empty")
    return url.rstrip('/')


class TelemetrySender:
    def __init__(
        self,
        backend_url: str,
        token: str = "",
        timeout_ms: int = SystemThresholds.POST_TIMEOUT_MS,
        queue_max: int = SystemThresholds.POST_QUEUE_MAX,
        session: Optional[requests.Session] = None,
        poll_sec: float = SystemThresholds.SENDER_POLL_SEC,
        initial_backoff_ms: int = SystemThresholds.INITIAL_BACKOFF_MS,
        max_backoff_ms: int = SystemThresholds.MAX_BACKOFF_MS
    ):
        """
        Start a sender thread posting to ``<backend_url>/api/telemetry``

        Raises:
            ValueError: backend_url is missing or blank
        """
        self.endpoint = normalize_backend_url(backend_url) + TELEMETRY_PATH
        self.token = token or ""
        self.timeout_sec = max(1, timeout_ms) / 1000.0
        self.queue_max = max(1, queue_max)
        self.poll_sec = poll_sec
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms

        self.logger = logging.getLogger(__name__)
        self.warn = RateLimitedLogger(self.logger, SystemThresholds.LOG_RATE_LIMIT_SEC)
        self.session = session or requests.Session()
        self.headers = {
            'Content-Type': 'application/json',
            TOKEN_HEADER: self.token,
        }

        self.sent = 0
        self.failed = 0
        self.dropped = 0
        self.backoff_ms = initial_backoff_ms

        self._queue = deque()
        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name='aegis-telemetry-sender', daemon=True)
        self._thread.start()
        self.logger.info(f"Telemetry delivery enabled: {self.endpoint}")

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def enqueue(self, payload: str) -> bool:
        """Queue a payload without blocking; drops the oldest one when full"""
        if payload is None:
            return False
        with self._cond:
            if self._closed:
                return False
            if len(self._queue) >= self.queue_max:
                self._queue.popleft()
                self.dropped += 1
                self.warn.warning("Telemetry queue full; dropping oldest event")
            self._queue.append(payload)
            self._cond.notify()
        return True

    def close(self, timeout: float = SystemThresholds.SENDER_JOIN_SEC) -> None:
        """Stop accepting payloads and wait briefly for the sender thread"""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            abandoned = len(self._queue)
            self._stop.set()
            self._cond.notify_all()

        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.logger.warning(f"Telemetry sender did not stop within {timeout:.2f}s, abandoning it")
        if abandoned:
            self.logger.info(f"Abandoned {abandoned} undelivered telemetry events at shutdown")

        try:
            self.session.close()
        except Exception as e:
            self.logger.debug(f"Error closing HTTP session: {e}")

    def _next_payload(self) -> Optional[str]:
        with self._cond:
            if not self._queue and not self._stop.is_set():
                self._cond.wait(self.poll_sec)
            if self._stop.is_set() or not self._queue:
                return None
            return self._queue.popleft()

    def _run(self) -> None:
        while not self._stop.is_set():
            payload = self._next_payload()
            if payload is None:
                continue

            try:
                delivered = self.post(payload)
            except Exception as e:
                self.warn.warning(f"Telemetry sender failed: {e}")
                delivered = False

            if delivered:
                self.sent += 1
                self.backoff_ms = self.initial_backoff_ms
            else:
                self.failed += 1
                # interruptible by close()
                self._stop.wait(self.backoff_ms / 1000.0)
                self.backoff_ms = min(self.max_backoff_ms, self.backoff_ms * 2)

    def post(self, payload: str) -> bool:
        """One delivery attempt; True only for HTTP 200"""
        try:
            response = self.session.post(
                self.endpoint,
                data=payload.encode('utf-8'),
                headers=self.headers,
                timeout=self.timeout_sec
            )
        except requests.RequestException as e:
            self.warn.warning(f"Telemetry POST failed: {e}")
            return False

        try:
            if response.status_code != 200:
                self.warn.warning(f"Telemetry POST failed: HTTP {response.status_code}")
                return False
            return True
        finally:
            response.close()
