# aegis/config/settings.py
"""
Agent configuration.

Loaded from a YAML file using the same camelCase keys as the agent's
``config.yml``. Every field falls back to its default when it is missing
or out of range, so a partial file is always usable.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import yaml

from aegis.config.thresholds import SystemThresholds

logger = logging.getLogger(__name__)

DEFAULT_WATCH_ROOT = "/tmp/aegis-watch"
DEFAULT_BASELINE_PATH = "baseline.json"
DEFAULT_AGENT_ID = "local-vm-01"
TOKEN_ENV_VAR = "AEGIS_TOKEN"


class ConfigError(Exception):
    """Raised when the configuration file exists but cannot be used"""


class Mode(Enum):
    BASELINE = "BASELINE"
    DETECT = "DETECT"


def _positive_float(value: Any, default: float, allow_zero: bool = True) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value) or value < 0.0 or (value == 0.0 and not allow_zero):
        return default
    return value


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    value = str(value).strip()
    return value or default


@dataclass
class Thresholds:
    files_modified_per_sec: float = SystemThresholds.FILES_MODIFIED_PER_SEC
    files_deleted_per_sec: float = SystemThresholds.FILES_DELETED_PER_SEC
    approx_renames_per_sec: float = SystemThresholds.APPROX_RENAMES_PER_SEC
    disk_write_bytes_per_sec: float = SystemThresholds.DISK_WRITE_BYTES_PER_SEC

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Thresholds':
        data = data if isinstance(data, dict) else {}
        return cls(
            files_modified_per_sec=_positive_float(
                data.get('filesModifiedPerSec'), SystemThresholds.FILES_MODIFIED_PER_SEC),
            files_deleted_per_sec=_positive_float(
                data.get('filesDeletedPerSec'), SystemThresholds.FILES_DELETED_PER_SEC),
            approx_renames_per_sec=_positive_float(
                data.get('approxRenamesPerSec'), SystemThresholds.APPROX_RENAMES_PER_SEC),
            disk_write_bytes_per_sec=_positive_float(
                data.get('diskWriteBytesPerSec'), SystemThresholds.DISK_WRITE_BYTES_PER_SEC),
        )


@dataclass
class ScoreThresholds:
    suspicious: float = SystemThresholds.SUSPICIOUS_SCORE
    ransomware: float = SystemThresholds.RANSOMWARE_SCORE

    def __post_init__(self):
        self.suspicious, self.ransomware = repair_score_thresholds(self.suspicious, self.ransomware)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ScoreThresholds':
        data = data if isinstance(data, dict) else {}
        return cls(
            suspicious=data.get('suspicious', SystemThresholds.SUSPICIOUS_SCORE),
            ransomware=data.get('ransomware', SystemThresholds.RANSOMWARE_SCORE),
        )


def repair_score_thresholds(suspicious: Any, ransomware: Any):
    """Return (suspicious, ransomware) with ransomware strictly above suspicious"""
    try:
        suspicious = float(suspicious)
    except (TypeError, ValueError):
        suspicious = SystemThresholds.SUSPICIOUS_SCORE
    if not math.isfinite(suspicious) or suspicious <= 0.0 or suspicious >= 1.0:
        suspicious = SystemThresholds.SUSPICIOUS_SCORE

    try:
        ransomware = float(ransomware)
    except (TypeError, ValueError):
        ransomware = SystemThresholds.RANSOMWARE_SCORE
    if not math.isfinite(ransomware) or ransomware <= 0.0 or ransomware > 1.0:
        ransomware = SystemThresholds.RANSOMWARE_SCORE

    if ransomware <= suspicious:
        ransomware = min(
            SystemThresholds.RANSOMWARE_REPAIR_CAP,
            suspicious + SystemThresholds.RANSOMWARE_REPAIR_MARGIN
        )
    return suspicious, ransomware


@dataclass
class AgentConfig:
    sampling_interval_ms: int = SystemThresholds.SAMPLING_INTERVAL_MS
    mode: Mode = Mode.DETECT
    baseline_min_samples: int = SystemThresholds.BASELINE_MIN_SAMPLES
    watch_root: str = DEFAULT_WATCH_ROOT
    baseline_path: str = DEFAULT_BASELINE_PATH
    storm_window_seconds: int = SystemThresholds.STORM_WINDOW_SECONDS
    z_score_threshold: float = SystemThresholds.ZSCORE_THRESHOLD
    thresholds: Thresholds = field(default_factory=Thresholds)
    score_thresholds: ScoreThresholds = field(default_factory=ScoreThresholds)
    backend_url: str = ""
    aegis_token: str = ""
    post_telemetry: bool = True
    post_timeout_ms: int = SystemThresholds.POST_TIMEOUT_MS
    post_queue_max: int = SystemThresholds.POST_QUEUE_MAX
    agent_id: str = DEFAULT_AGENT_ID
    log_file: Optional[str] = None

    @property
    def sampling_interval_sec(self) -> float:
        return self.sampling_interval_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], environ=None) -> 'AgentConfig':
        """
        Build a config from a parsed YAML mapping, repairing bad values

        Args:
            data: Mapping using the camelCase keys of config.yml
            environ: Environment used for the token override (defaults to os.environ)
        """
        data = data if isinstance(data, dict) else {}
        environ = os.environ if environ is None else environ

        mode_raw = str(data.get('mode') or Mode.DETECT.value).strip().upper()
        try:
            mode = Mode(mode_raw)
        except ValueError:
            logger.warning(f"Unknown mode '{mode_raw}', using {Mode.DETECT.value}")
            mode = Mode.DETECT

        z_threshold = _positive_float(
            data.get('zScoreThreshold'), SystemThresholds.ZSCORE_THRESHOLD, allow_zero=False)

        token = environ.get(TOKEN_ENV_VAR)
        if token is None:
            token = data.get('aegisToken')
        token = "" if token is None else str(token).strip()

        post_telemetry = data.get('postTelemetry', True)
        if not isinstance(post_telemetry, bool):
            post_telemetry = str(post_telemetry).strip().lower() not in ('false', '0', 'no', 'off')

        backend_url = data.get('backendUrl')
        log_file = data.get('logFile')

        return cls(
            sampling_interval_ms=_positive_int(
                data.get('samplingIntervalMs'), SystemThresholds.SAMPLING_INTERVAL_MS),
            mode=mode,
            baseline_min_samples=_positive_int(
                data.get('baselineMinSamples'), SystemThresholds.BASELINE_MIN_SAMPLES),
            watch_root=_text(data.get('watchRoot'), DEFAULT_WATCH_ROOT),
            baseline_path=_text(data.get('baselinePath'), DEFAULT_BASELINE_PATH),
            storm_window_seconds=_positive_int(
                data.get('stormWindowSeconds'), SystemThresholds.STORM_WINDOW_SECONDS),
            z_score_threshold=z_threshold,
            thresholds=Thresholds.from_dict(data.get('thresholds')),
            score_thresholds=ScoreThresholds.from_dict(data.get('scoreThresholds')),
            backend_url="" if backend_url is None else str(backend_url).strip(),
            aegis_token=token,
            post_telemetry=post_telemetry,
            post_timeout_ms=_positive_int(data.get('postTimeoutMs'), SystemThresholds.POST_TIMEOUT_MS),
            post_queue_max=_positive_int(data.get('postQueueMax'), SystemThresholds.POST_QUEUE_MAX),
            agent_id=_text(data.get('agentId'), DEFAULT_AGENT_ID),
            log_file=_text(log_file, "") or None,
        )


def load_config(path: Optional[str], environ=None) -> AgentConfig:
    """
    Load the agent configuration from a YAML file

    A missing file yields the defaults. A file that exists but cannot be
    read or parsed raises ConfigError.
    """
    if not path or not os.path.exists(path):
        logger.warning(f"Config file not found, using defaults: {path}")
        return AgentConfig.from_dict({}, environ=environ)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")

    logger.info(f"Configuration loaded from {path}")
    return AgentConfig.from_dict(data, environ=environ)
