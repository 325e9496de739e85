import math
import logging

import pytest

from aegis.core.models.data_models import (
    AnomalyResult,
    FsCountsSnapshot,
    FsWindowBucket,
    TelemetrySample,
    TopWriterProcess,
)
from aegis.utils.log_throttle import RateLimitedLogger
from aegis.utils.numeric import clamp01, sanitize_rate


def test_sanitize_rate_collapses_bad_values_to_zero() -> None:
    assert sanitize_rate(12.5) == 12.5
    assert sanitize_rate(-1.0) == 0.0
    assert sanitize_rate(math.nan) == 0.0
    assert sanitize_rate(math.inf) == 0.0
    assert sanitize_rate(None) == 0.0


def test_clamp01_bounds_values() -> None:
    assert clamp01(1.7) == 1.0
    assert clamp01(-0.2) == 0.0
    assert clamp01(0.42) == 0.42
    assert clamp01(math.nan) == 0.0


def test_sample_sanitizes_every_rate() -> None:
    sample = TelemetrySample(
        timestamp="2026-01-01T00:00:00.000Z",
        files_modified_per_sec=math.nan,
        files_created_per_sec=-3.0,
        files_deleted_per_sec=math.inf,
        approx_renames_per_sec=2.0,
        disk_write_bytes_per_sec=-1.0,
        top_pid=42,
        top_comm=None,
        top_write_bytes_per_sec=math.nan,
    )
    assert sample.files_modified_per_sec == 0.0
    assert sample.files_created_per_sec == 0.0
    assert sample.files_deleted_per_sec == 0.0
    assert sample.approx_renames_per_sec == 2.0
    assert sample.disk_write_bytes_per_sec == 0.0
    assert sample.top_write_bytes_per_sec == 0.0
    assert sample.top_comm == ""


def test_top_writer_none_defaults() -> None:
    none = TopWriterProcess.none()
    assert (none.pid, none.comm, none.write_bytes_per_sec) == (-1, "", 0.0)


def test_bucket_clamps_counts_and_elapsed_floor() -> None:
    bucket = FsWindowBucket.from_snapshot(FsCountsSnapshot(modified=-5, created=2), elapsed_sec=0.0)
    assert bucket.modified == 0
    assert bucket.created == 2
    assert bucket.elapsed_sec == pytest.approx(0.001)


def test_anomaly_result_keeps_flag_order_without_duplicates() -> None:
    result = AnomalyResult(0.5, 1.0, ("RENAME_STORM", "WRITE_STORM", "RENAME_STORM"))
    assert result.flags == ("RENAME_STORM", "WRITE_STORM")
    assert result.has_flag("WRITE_STORM")
    assert not result.has_flag("DELETE_STORM")


def test_rate_limited_logger_emits_once_per_interval(caplog) -> None:
    now = [100.0]
    limited = RateLimitedLogger(logging.getLogger("aegis.test"), interval_sec=5.0, clock=lambda: now[0])

    with caplog.at_level(logging.WARNING, logger="aegis.test"):
        assert limited.warning("backend down")
        for _ in range(50):
            assert not limited.warning("backend down")
        now[0] += 5.0
        assert limited.warning("backend down")

    messages = [r.getMessage() for r in caplog.records if r.name == "aegis.test"]
    assert len(messages) == 2
    assert "50 similar messages suppressed" in messages[1]
