import psutil
import logging
import time

from aegis.core.interfaces.collector import IMetricsCollector
from aegis.utils.numeric import sanitize_rate


class DiskWriteCollector(IMetricsCollector):
    """Host-wide disk write bytes per second, from psutil's disk counters"""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self.last_write_bytes = None
        self.last_time = None
        self.logger = logging.getLogger(__name__)

    def collect(self) -> float:
        """Write rate since the previous call; 0.0 on the first call or on any error"""
        current_time = self._clock()
        try:
            disk_io = psutil.disk_io_counters()
        except Exception as e:
            self.logger.debug(f"Error reading disk counters: {e}")
            return 0.0
        if disk_io is None:
            return 0.0

        write_bytes = disk_io.write_bytes
        rate = 0.0
        if self.last_write_bytes is not None and write_bytes >= self.last_write_bytes:
            time_delta = current_time - self.last_time
            if time_delta > 0:
                rate = (write_bytes - self.last_write_bytes) / time_delta

        self.last_write_bytes = write_bytes
        self.last_time = current_time
        return sanitize_rate(rate)
