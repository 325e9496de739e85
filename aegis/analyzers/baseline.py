# aegis/analyzers/baseline.py
import math
import logging
import threading
from typing import Any, Dict, Optional

from aegis.config.thresholds import SystemThresholds
from aegis.core.interfaces.storage import IStorage
from aegis.core.models.data_models import TelemetrySample
from aegis.storage.file_storage import StorageError

FILES_MODIFIED = 'filesModifiedPerSec'
FILES_DELETED = 'filesDeletedPerSec'
APPROX_RENAMES = 'approxRenamesPerSec'
DISK_WRITE = 'diskWriteBytesPerSec'
TOP_WRITE = 'topWriteBytesPerSec'

# Metric order is shared with the anomaly engine's z-score vector
METRICS = (FILES_MODIFIED, FILES_DELETED, APPROX_RENAMES, DISK_WRITE, TOP_WRITE)


def sample_values(sample: TelemetrySample) -> Dict[str, float]:
    """Map a telemetry sample onto the baseline metric names"""
    return {
        FILES_MODIFIED: sample.files_modified_per_sec,
        FILES_DELETED: sample.files_deleted_per_sec,
        APPROX_RENAMES: sample.approx_renames_per_sec,
        DISK_WRITE: sample.disk_write_bytes_per_sec,
        TOP_WRITE: sample.top_write_bytes_per_sec,
    }


class RunningStat:
    """Online mean/variance using Welford's algorithm"""

    def __init__(self):
        self.count = 0
        self._mean = 0.0
        self.m2 = 0.0

    def add(self, value: float) -> None:
        if value is None or not math.isfinite(value):
            return
        self.count += 1
        delta = value - self._mean
        self._mean += delta / self.count
        self.m2 += delta * (value - self._mean)

    @property
    def mean(self) -> float:
        return self._mean if self.count > 0 else 0.0

    @property
    def std_dev(self) -> float:
        # sample standard deviation
        if self.count < 2:
            return 0.0
        return math.sqrt(max(0.0, self.m2) / (self.count - 1))

    def to_state(self) -> Dict[str, Any]:
        return {'count': self.count, 'mean': self._mean, 'm2': self.m2}

    def from_state(self, state: Optional[Dict[str, Any]]) -> bool:
        """Restore from a persisted state; invalid state leaves the stat untouched"""
        if not isinstance(state, dict):
            return False
        try:
            count = state['count']
            mean = float(state['mean'])
            m2 = float(state['m2'])
        except (KeyError, TypeError, ValueError):
            return False
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            return False
        if count < 0 or count != int(count):
            return False
        if not math.isfinite(mean) or not math.isfinite(m2) or m2 < 0.0:
            return False

        self.count = int(count)
        self._mean = mean
        self.m2 = m2
        return True


class BaselineModel:
    def __init__(
        self,
        min_samples: int = SystemThresholds.BASELINE_MIN_SAMPLES,
        storage: Optional[IStorage] = None,
        save_every: int = SystemThresholds.BASELINE_SAVE_EVERY
    ):
        """
        Per-metric baseline of normal host behaviour

        Args:
            min_samples: Samples every metric needs before the baseline is ready
            storage: Where the model is persisted; None keeps it in memory only
            save_every: Persist after this many updates
        """
        self.logger = logging.getLogger(__name__)
        self.min_samples = min_samples if min_samples and min_samples > 0 else SystemThresholds.BASELINE_MIN_SAMPLES
        self.save_every = max(1, save_every)
        self.storage = storage
        self.stats = {name: RunningStat() for name in METRICS}
        self.updates = 0
        self._lock = threading.RLock()
        self._load()

    def update(self, sample: TelemetrySample) -> None:
        if sample is None:
            return
        with self._lock:
            for name, value in sample_values(sample).items():
                self.stats[name].add(value)
            self.updates += 1
            if self.updates % self.save_every == 0:
                self.save_now()

    def ready(self) -> bool:
        with self._lock:
            return all(stat.count >= self.min_samples for stat in self.stats.values())

    def mean(self, metric: str) -> float:
        with self._lock:
            return self.stats[metric].mean

    def std_dev(self, metric: str) -> float:
        with self._lock:
            return self.stats[metric].std_dev

    def sample_count(self) -> int:
        """Smallest sample count across all metrics"""
        with self._lock:
            return min(stat.count for stat in self.stats.values())

    def snapshot(self):
        """Consistent (means, std_devs) lists in METRICS order"""
        with self._lock:
            return (
                [self.stats[name].mean for name in METRICS],
                [self.stats[name].std_dev for name in METRICS]
            )

    def to_record(self) -> Dict[str, Any]:
        with self._lock:
            record = {'baselineMinSamples': self.min_samples}
            for name in METRICS:
                record[name] = self.stats[name].to_state()
            return record

    def save_now(self) -> bool:
        """Persist the model; failures are logged and reported as False"""
        if self.storage is None:
            return False
        with self._lock:
            record = self.to_record()
            try:
                self.storage.save_baseline(record)
                return True
            except StorageError as e:
                self.logger.error(f"Failed to save baseline model: {e}")
            except Exception:
                self.logger.exception("Unexpected error while saving baseline model")
            return False

    def close(self) -> None:
        self.save_now()

    def _load(self) -> None:
        if self.storage is None:
            return
        try:
            record = self.storage.load_baseline()
        except StorageError as e:
            self.logger.warning(f"Failed to load baseline model, starting fresh: {e}")
            return
        except Exception:
            self.logger.exception("Unexpected error while loading baseline model, starting fresh")
            return

        if not record:
            return

        for name in METRICS:
            if not self.stats[name].from_state(record.get(name)):
                self.logger.warning(f"Ignoring invalid persisted state for {name}")

        self.updates = self.sample_count()
        self.logger.info(
            f"Baseline restored: {self.updates} samples, ready={self.ready()}"
        )
