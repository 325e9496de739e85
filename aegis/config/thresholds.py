# aegis/config/thresholds.py


class SystemThresholds:
    """Default detection thresholds and agent tuning constants"""

    # Sampling
    SAMPLING_INTERVAL_MS = 1000
    STORM_WINDOW_SECONDS = 3

    # Baseline
    BASELINE_MIN_SAMPLES = 300
    BASELINE_SAVE_EVERY = 30

    # Z-score threshold for anomaly flags
    ZSCORE_THRESHOLD = 3.0  # 3 standard deviations

    # Absolute per-second thresholds
    FILES_MODIFIED_PER_SEC = 200.0
    FILES_DELETED_PER_SEC = 100.0
    APPROX_RENAMES_PER_SEC = 80.0
    DISK_WRITE_BYTES_PER_SEC = 50.0 * 1024.0 * 1024.0  # 50 MiB/s

    # Classifier score thresholds (0-1)
    SUSPICIOUS_SCORE = 0.55
    RANSOMWARE_SCORE = 0.85
    RANSOMWARE_REPAIR_MARGIN = 0.30
    RANSOMWARE_REPAIR_CAP = 0.99

    # Classifier flag weights
    FLAG_WEIGHTS = (
        ('WRITE_STORM', 0.25),
        ('RENAME_STORM', 0.15),
        ('DELETE_STORM', 0.10),
        ('TOP_WRITER_SPIKE', 0.20),
    )

    # Filesystem watcher
    RENAME_WINDOW_SEC = 0.5
    DELETE_HISTORY_LIMIT = 64
    WATCH_POLL_SEC = 0.25
    WATCH_QUEUE_MAX = 65536
    WATCHER_JOIN_SEC = 0.5

    # Telemetry delivery
    POST_TIMEOUT_MS = 1500
    POST_QUEUE_MAX = 500
    SENDER_POLL_SEC = 0.25
    SENDER_JOIN_SEC = 0.75
    INITIAL_BACKOFF_MS = 250
    MAX_BACKOFF_MS = 2000
    LOG_RATE_LIMIT_SEC = 5.0
