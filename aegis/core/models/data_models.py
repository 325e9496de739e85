# aegis/core/models/data_models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from aegis.utils.numeric import clamp01, sanitize_rate

MIN_BUCKET_ELAPSED_SEC = 0.001


class Verdict(Enum):
    SAFE = "SAFE"
    SUSPICIOUS = "SUSPICIOUS"
    RANSOMWARE = "RANSOMWARE"


class AgentState(Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class TopWriterProcess:
    """Process that wrote the most bytes since the previous scan"""
    pid: int
    comm: str
    write_bytes_per_sec: float

    def __post_init__(self):
        object.__setattr__(self, 'comm', self.comm or "")
        object.__setattr__(self, 'write_bytes_per_sec', sanitize_rate(self.write_bytes_per_sec))

    @classmethod
    def none(cls) -> 'TopWriterProcess':
        return cls(pid=-1, comm="", write_bytes_per_sec=0.0)


@dataclass(frozen=True)
class TelemetrySample:
    """Snapshot of one agent tick; all rates are finite and >= 0"""
    timestamp: str
    files_modified_per_sec: float
    files_created_per_sec: float
    files_deleted_per_sec: float
    approx_renames_per_sec: float
    disk_write_bytes_per_sec: float
    top_pid: int = -1
    top_comm: str = ""
    top_write_bytes_per_sec: float = 0.0

    def __post_init__(self):
        for name in (
            'files_modified_per_sec',
            'files_created_per_sec',
            'files_deleted_per_sec',
            'approx_renames_per_sec',
            'disk_write_bytes_per_sec',
            'top_write_bytes_per_sec',
        ):
            object.__setattr__(self, name, sanitize_rate(getattr(self, name)))
        object.__setattr__(self, 'top_comm', self.top_comm or "")
        if self.top_pid is None:
            object.__setattr__(self, 'top_pid', -1)


@dataclass(frozen=True)
class FsCountsSnapshot:
    """Raw filesystem event counts drained from the watcher counters"""
    modified: int = 0
    created: int = 0
    deleted: int = 0
    approx_renamed: int = 0

    def __post_init__(self):
        for name in ('modified', 'created', 'deleted', 'approx_renamed'):
            object.__setattr__(self, name, max(0, int(getattr(self, name))))


@dataclass(frozen=True)
class FsWindowBucket:
    """One tick's worth of event counts inside the storm window"""
    modified: int
    created: int
    deleted: int
    approx_renamed: int
    elapsed_sec: float

    def __post_init__(self):
        for name in ('modified', 'created', 'deleted', 'approx_renamed'):
            object.__setattr__(self, name, max(0, int(getattr(self, name))))
        elapsed = sanitize_rate(self.elapsed_sec)
        object.__setattr__(self, 'elapsed_sec', max(MIN_BUCKET_ELAPSED_SEC, elapsed))

    @classmethod
    def from_snapshot(cls, snapshot: FsCountsSnapshot, elapsed_sec: float) -> 'FsWindowBucket':
        return cls(
            modified=snapshot.modified,
            created=snapshot.created,
            deleted=snapshot.deleted,
            approx_renamed=snapshot.approx_renamed,
            elapsed_sec=elapsed_sec
        )


@dataclass(frozen=True)
class FsRates:
    """Per-second filesystem rates over the storm window"""
    modified_per_sec: float = 0.0
    created_per_sec: float = 0.0
    deleted_per_sec: float = 0.0
    approx_renames_per_sec: float = 0.0

    def __post_init__(self):
        for name in ('modified_per_sec', 'created_per_sec', 'deleted_per_sec', 'approx_renames_per_sec'):
            object.__setattr__(self, name, sanitize_rate(getattr(self, name)))


@dataclass(frozen=True)
class AnomalyResult:
    """Deviation of one sample from the baseline"""
    anomaly_score: float
    max_abs_z: float
    flags: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'anomaly_score', clamp01(self.anomaly_score))
        object.__setattr__(self, 'max_abs_z', sanitize_rate(self.max_abs_z))
        # dict keeps insertion order and drops repeats
        object.__setattr__(self, 'flags', tuple(dict.fromkeys(self.flags or ())))

    @classmethod
    def empty(cls) -> 'AnomalyResult':
        return cls(anomaly_score=0.0, max_abs_z=0.0, flags=())

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags


@dataclass(frozen=True)
class ClassifierResult:
    """Verdict produced by the ransomware classifier"""
    ransomware_score: float
    verdict: Verdict
    confidence: float

    def __post_init__(self):
        object.__setattr__(self, 'ransomware_score', clamp01(self.ransomware_score))
        object.__setattr__(self, 'confidence', clamp01(self.confidence))


@dataclass(frozen=True)
class TickResult:
    """Everything one agent tick produced"""
    sample: TelemetrySample
    baseline_ready: bool
    anomaly: Optional[AnomalyResult] = None
    classifier: Optional[ClassifierResult] = None

