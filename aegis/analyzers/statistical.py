# aegis/analyzers/statistical.py
import math
import logging
from typing import List

import numpy as np

from aegis.analyzers.baseline import (
    APPROX_RENAMES, FILES_DELETED, FILES_MODIFIED, METRICS, TOP_WRITE, BaselineModel, sample_values
)
from aegis.config.settings import Thresholds
from aegis.config.thresholds import SystemThresholds
from aegis.core.interfaces.analyzer import IAnalyzer
from aegis.core.models.data_models import AnomalyResult, TelemetrySample
from aegis.utils.numeric import clamp01

WRITE_STORM = 'WRITE_STORM'
DELETE_STORM = 'DELETE_STORM'
RENAME_STORM = 'RENAME_STORM'
TOP_WRITER_SPIKE = 'TOP_WRITER_SPIKE'

_IDX = {name: i for i, name in enumerate(METRICS)}


def z_score(value: float, mean: float, std_dev: float) -> float:
    """(value - mean) / std_dev, or 0.0 whenever the result would not be a finite number"""
    try:
        value, mean, std_dev = float(value), float(mean), float(std_dev)
    except (TypeError, ValueError):
        return 0.0
    if not (math.isfinite(value) and math.isfinite(mean) and math.isfinite(std_dev)) or std_dev <= 0.0:
        return 0.0
    z = (value - mean) / std_dev
    return z if math.isfinite(z) else 0.0


def z_scores(values, means, std_devs) -> np.ndarray:
    """Vectorised z_score over the metric vector"""
    values = np.asarray(values, dtype=np.float64)
    means = np.asarray(means, dtype=np.float64)
    std_devs = np.asarray(std_devs, dtype=np.float64)

    valid = np.isfinite(values) & np.isfinite(means) & np.isfinite(std_devs) & (std_devs > 0.0)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        z = np.where(valid, (values - means) / np.where(valid, std_devs, 1.0), 0.0)
    return np.where(np.isfinite(z), z, 0.0)


class AnomalyEngine(IAnalyzer):
    """Scores how far a sample sits from the baseline"""

    def __init__(self, z_score_threshold: float = SystemThresholds.ZSCORE_THRESHOLD, thresholds: Thresholds = None):
        self.z_score_threshold = z_score_threshold
        self.thresholds = thresholds or Thresholds()
        self.logger = logging.getLogger(__name__)

    def analyze(self, sample: TelemetrySample, baseline: BaselineModel) -> AnomalyResult:
        if sample is None or baseline is None:
            return AnomalyResult.empty()

        values = sample_values(sample)
        means, std_devs = baseline.snapshot()
        z = z_scores([values[name] for name in METRICS], means, std_devs)

        max_abs_z = float(np.max(np.abs(z))) if z.size else 0.0
        anomaly_score = clamp01(1.0 - math.exp(-max_abs_z))

        flags = self._flags(sample, z)
        if flags:
            self.logger.debug(f"Anomaly flags {flags} (maxAbsZ={max_abs_z:.2f})")

        return AnomalyResult(anomaly_score=anomaly_score, max_abs_z=max_abs_z, flags=tuple(flags))

    def _flags(self, sample: TelemetrySample, z: np.ndarray) -> List[str]:
        t = self.thresholds
        threshold = self.z_score_threshold
        flags = []

        # disk-write volume alone can raise WRITE_STORM
        if (z[_IDX[FILES_MODIFIED]] >= threshold
                or sample.files_modified_per_sec >= t.files_modified_per_sec
                or sample.disk_write_bytes_per_sec > t.disk_write_bytes_per_sec):
            flags.append(WRITE_STORM)

        if (z[_IDX[FILES_DELETED]] >= threshold
                or sample.files_deleted_per_sec >= t.files_deleted_per_sec):
            flags.append(DELETE_STORM)

        if (z[_IDX[APPROX_RENAMES]] >= threshold
                or sample.approx_renames_per_sec >= t.approx_renames_per_sec):
            flags.append(RENAME_STORM)

        if z[_IDX[TOP_WRITE]] >= threshold:
            flags.append(TOP_WRITER_SPIKE)

        return flags
