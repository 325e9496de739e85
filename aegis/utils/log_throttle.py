# aegis/utils/log_throttle.py
import logging
import threading
import time

DEFAULT_INTERVAL_SEC = 5.0


class RateLimitedLogger:
    """Emit at most one warning per interval, however many are requested"""

    def __init__(self, logger: logging.Logger, interval_sec: float = DEFAULT_INTERVAL_SEC, clock=time.monotonic):
        self.logger = logger
        self.interval_sec = interval_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._last_emit = None
        self.suppressed = 0

    def warning(self, msg: str, *args) -> bool:
        now = self._clock()
        with self._lock:
            if self._last_emit is not None and now - self._last_emit < self.interval_sec:
                self.suppressed += 1
                return False
            self._last_emit = now
            suppressed, self.suppressed = self.suppressed, 0

        if suppressed:
            msg = f"{msg} ({suppressed} similar messages suppressed)"
        self.logger.warning(msg, *args)
        return True
