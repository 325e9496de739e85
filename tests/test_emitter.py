import io
import json

from aegis.comms.emitter import TelemetryEmitter, build_event, build_sender, resolve_hostname
from aegis.config.settings import AgentConfig
from aegis.core.models.data_models import (
    AnomalyResult,
    ClassifierResult,
    TelemetrySample,
    TickResult,
    Verdict,
)


def make_result(with_detection: bool = False) -> TickResult:
    sample = TelemetrySample(
        timestamp="2026-03-01T12:00:00.123Z",
        files_modified_per_sec=12.5,
        files_created_per_sec=3.0,
        files_deleted_per_sec=1.0,
        approx_renames_per_sec=0.5,
        disk_write_bytes_per_sec=2048.0,
        top_pid=4242,
        top_comm="python3",
        top_write_bytes_per_sec=1024.0,
    )
    if not with_detection:
        return TickResult(sample=sample, baseline_ready=False)
    return TickResult(
        sample=sample,
        baseline_ready=True,
        anomaly=AnomalyResult(0.95, 4.2, ('WRITE_STORM', 'RENAME_STORM')),
        classifier=ClassifierResult(0.97, Verdict.RANSOMWARE, 0.8),
    )


class RecordingSender:
    def __init__(self):
        self.payloads = []
        self.closed = False

    def enqueue(self, payload):
        self.payloads.append(payload)
        return True

    def close(self):
        self.closed = True


def test_event_without_detection_has_telemetry_fields_only() -> None:
    event = build_event(make_result(), "vm-7", "host-a")

    assert event['type'] == "telemetry"
    assert event['timestamp'] == "2026-03-01T12:00:00.123Z"
    assert event['agentId'] == "vm-7"
    assert event['host'] == "host-a"
    assert event['baselineReady'] is False
    assert event['fs'] == {
        'modifiedPerSec': 12.5,
        'createdPerSec': 3.0,
        'deletedPerSec': 1.0,
        'approxRenamesPerSec': 0.5,
    }
    assert event['disk'] == {'writeBytesPerSec': 2048.0}
    assert event['topWriter'] == {'pid': 4242, 'comm': "python3", 'writeBytesPerSec': 1024.0}
    assert 'anomaly' not in event
    assert 'classifier' not in event


def test_event_with_detection_includes_anomaly_and_classifier() -> None:
    event = build_event(make_result(with_detection=True), "vm-7", "host-a")

    assert event['baselineReady'] is True
    assert event['anomaly'] == {'score': 0.95, 'maxAbsZ': 4.2, 'flags': ['WRITE_STORM', 'RENAME_STORM']}
    assert event['classifier'] == {'ransomwareScore': 0.97, 'verdict': "RANSOMWARE", 'confidence': 0.8}


def test_emit_writes_one_json_line_and_enqueues_it() -> None:
    stream = io.StringIO()
    sender = RecordingSender()
    emitter = TelemetryEmitter("vm-7", sender=sender, stream=stream, host="host-a")

    payload = emitter.emit(make_result(with_detection=True))

    lines = stream.getvalue().splitlines()
    assert lines == [payload]
    assert sender.payloads == [payload]
    assert json.loads(payload)['classifier']['verdict'] == "RANSOMWARE"

    emitter.close()
    assert sender.closed


def test_emit_never_raises_on_broken_stream() -> None:
    class BrokenStream:
        def write(self, _):
            raise OSError("stdout closed")

        def flush(self):
            pass

    emitter = TelemetryEmitter("vm-7", stream=BrokenStream(), host="host-a")
    assert emitter.emit(make_result()) is None
    assert emitter.emit(None) is None


def test_build_sender_returns_none_when_disabled_or_unset() -> None:
    assert build_sender(AgentConfig(backend_url="http://collector", post_telemetry=False)) is None
    assert build_sender(AgentConfig(backend_url="   ")) is None


def test_resolve_hostname_falls_back(monkeypatch) -> None:
    monkeypatch.setattr("socket.gethostname", lambda: "")
    assert resolve_hostname({'HOSTNAME': "from-env"}) == "from-env"
    assert resolve_hostname({}) == "unknown-host"
