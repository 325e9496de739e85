import psutil
import logging
import threading
import time
from typing import Dict

from aegis.core.interfaces.collector import IMetricsCollector
from aegis.core.models.data_models import TopWriterProcess


class TopWriterCollector(IMetricsCollector):
    """Finds the process that wrote the most bytes since the previous scan"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self.previous_write_bytes: Dict[int, int] = {}
        self.previous_scan = None
        self.logger = logging.getLogger(__name__)

    def collect(self) -> TopWriterProcess:
        with self._lock:
            now = self._clock()
            elapsed = now - self.previous_scan if self.previous_scan is not None else 0.0

            current: Dict[int, int] = {}
            top_pid, top_name, top_delta = -1, "", 0

            try:
                for proc in psutil.process_iter(['pid', 'name']):
                    try:
                        write_bytes = proc.io_counters().write_bytes
                    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, AttributeError):
                        continue

                    pid = proc.info['pid']
                    current[pid] = write_bytes
                    if elapsed <= 0.0:
                        continue

                    previous = self.previous_write_bytes.get(pid)
                    if previous is None or write_bytes < previous:
                        continue

                    delta = write_bytes - previous
                    if delta > top_delta:
                        top_pid, top_name, top_delta = pid, proc.info.get('name') or "", delta
            except Exception as e:
                self.logger.warning(f"Process scan failed: {e}")

            self.previous_write_bytes = current
            self.previous_scan = now

            if top_pid < 0 or elapsed <= 0.0:
                return TopWriterProcess.none()
            return TopWriterProcess(pid=top_pid, comm=top_name, write_bytes_per_sec=top_delta / elapsed)
