# aegis/analyzers/rate_aggregator.py
import math
from collections import deque

import numpy as np

from aegis.config.thresholds import SystemThresholds
from aegis.core.models.data_models import FsCountsSnapshot, FsRates, FsWindowBucket


class WindowedRateAggregator:
    """Turns per-tick event counts into per-second rates over the storm window"""

    def __init__(self, storm_window_seconds: float = SystemThresholds.STORM_WINDOW_SECONDS):
        self.storm_window_seconds = max(1, storm_window_seconds or 1)
        self.buckets = deque()
        # modified, created, deleted, approx_renamed
        self.totals = np.zeros(4, dtype=np.int64)
        self.window_elapsed = 0.0

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)

    def update(self, snapshot: FsCountsSnapshot, elapsed_sec: float) -> FsRates:
        bucket = FsWindowBucket.from_snapshot(snapshot, elapsed_sec)
        self.buckets.append(bucket)
        self.totals += self._counts(bucket)
        self.window_elapsed += bucket.elapsed_sec

        # the newest bucket always stays, so the window is never empty
        while self.window_elapsed > self.storm_window_seconds and len(self.buckets) > 1:
            oldest = self.buckets.popleft()
            self.totals -= self._counts(oldest)
            self.window_elapsed -= oldest.elapsed_sec

        divisor = self.window_elapsed if self.window_elapsed > 0.0 else elapsed_sec
        try:
            divisor = float(divisor)
        except (TypeError, ValueError):
            divisor = 1.0
        if not math.isfinite(divisor) or divisor <= 0.0:
            divisor = 1.0

        rates = self.totals / divisor
        return FsRates(
            modified_per_sec=rates[0],
            created_per_sec=rates[1],
            deleted_per_sec=rates[2],
            approx_renames_per_sec=rates[3]
        )

    @staticmethod
    def _counts(bucket: FsWindowBucket) -> np.ndarray:
        return np.array(
            [bucket.modified, bucket.created, bucket.deleted, bucket.approx_renamed],
            dtype=np.int64
        )
