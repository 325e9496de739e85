import io
import json
import re
import threading

from aegis.agent_loop import AgentLoop, utc_timestamp
from aegis.collectors.file_collector import FsEventCounters, WatcherSetupError
from aegis.comms.emitter import TelemetryEmitter
from aegis.config.settings import AgentConfig, Mode
from aegis.core.interfaces.storage import IStorage
from aegis.core.models.data_models import AgentState, TopWriterProcess, Verdict


class FakeWatcher:
    def __init__(self, fail_start: bool = False, fail_stop: bool = False):
        self.fail_start = fail_start
        self.fail_stop = fail_stop
        self.started = False
        self.stop_calls = 0

    def start(self):
        if self.fail_start:
            raise WatcherSetupError("watch root is not a directory")
        self.started = True

    def stop(self):
        self.stop_calls += 1
        if self.fail_stop:
            raise RuntimeError("observer exploded")


class FixedCollector:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def collect(self):
        self.calls += 1
        return self.value


class FailingCollector:
    def collect(self):
        raise RuntimeError("psutil went away")


class MemoryStorage(IStorage):
    def __init__(self):
        self.records = []

    def save_baseline(self, record):
        self.records.append(record)

    def load_baseline(self):
        return self.records[-1] if self.records else None


class RecordingSender:
    def __init__(self):
        self.payloads = []
        self.closed = 0

    def enqueue(self, payload):
        self.payloads.append(payload)
        return True

    def close(self):
        self.closed += 1


def make_loop(config=None, watcher=None, disk=None, top=None, storage=None, counters=None):
    config = config or AgentConfig(baseline_min_samples=3, sampling_interval_ms=10)
    stream = io.StringIO()
    sender = RecordingSender()
    loop = AgentLoop(
        config,
        watcher=watcher or FakeWatcher(),
        counters=counters or FsEventCounters(),
        disk_collector=disk or FixedCollector(0.0),
        top_writer_collector=top or FixedCollector(TopWriterProcess.none()),
        emitter=TelemetryEmitter(config.agent_id, sender=sender, stream=stream, host="test-host"),
        storage=storage if storage is not None else MemoryStorage(),
    )
    return loop, stream, sender


def emitted(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_utc_timestamp_has_milliseconds_and_z() -> None:
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_timestamp())


def test_detection_waits_for_baseline() -> None:
    loop, stream, _ = make_loop()

    results = [loop.run_once(1.0) for _ in range(4)]

    assert [r.baseline_ready for r in results] == [False, False, True, True]
    assert results[1].anomaly is None and results[1].classifier is None
    assert results[2].anomaly is not None
    assert results[2].classifier.verdict is Verdict.SAFE

    events = emitted(stream)
    assert len(events) == 4
    assert 'classifier' not in events[0]
    assert events[3]['classifier']['verdict'] == "SAFE"


def test_baseline_mode_never_detects() -> None:
    config = AgentConfig(mode=Mode.BASELINE, baseline_min_samples=1)
    loop, stream, _ = make_loop(config=config)

    for _ in range(3):
        result = loop.run_once(1.0)
        assert result.baseline_ready
        assert result.anomaly is None

    assert all('anomaly' not in event for event in emitted(stream))


def test_counters_become_window_rates() -> None:
    counters = FsEventCounters()
    loop, _, _ = make_loop(counters=counters)
    for _ in range(6):
        counters.increment_modified()
    counters.increment_deleted()

    result = loop.run_once(2.0)

    assert result.sample.files_modified_per_sec == 3.0
    assert result.sample.files_deleted_per_sec == 0.5
    assert loop.run_once(1.0).sample.files_modified_per_sec == 2.0


def test_collector_values_reach_the_sample() -> None:
    top = FixedCollector(TopWriterProcess(pid=77, comm="dd", write_bytes_per_sec=4096.0))
    loop, stream, _ = make_loop(disk=FixedCollector(8192.0), top=top)

    sample = loop.run_once(1.0).sample

    assert sample.disk_write_bytes_per_sec == 8192.0
    assert (sample.top_pid, sample.top_comm, sample.top_write_bytes_per_sec) == (77, "dd", 4096.0)
    assert emitted(stream)[0]['topWriter'] == {'pid': 77, 'comm': "dd", 'writeBytesPerSec': 4096.0}


def test_failing_collectors_fall_back_to_defaults() -> None:
    loop, _, _ = make_loop(disk=FailingCollector(), top=FailingCollector())

    sample = loop.run_once(1.0).sample

    assert sample.disk_write_bytes_per_sec == 0.0
    assert sample.top_pid == -1
    assert sample.top_comm == ""


def test_write_storm_is_classified_after_quiet_baseline() -> None:
    counters = FsEventCounters()
    disk = FixedCollector(0.0)
    loop, _, _ = make_loop(counters=counters, disk=disk)
    for _ in range(3):
        loop.run_once(1.0)

    for _ in range(3000):
        counters.increment_modified()
    disk.value = 500.0 * 1024 * 1024
    result = loop.run_once(1.0)

    assert result.anomaly.has_flag('WRITE_STORM')
    assert result.classifier.verdict is not Verdict.SAFE


def test_shutdown_runs_every_step_once() -> None:
    watcher = FakeWatcher(fail_stop=True)
    storage = MemoryStorage()
    loop, _, sender = make_loop(watcher=watcher, storage=storage)
    loop.start()
    loop.run_once(1.0)

    loop.shutdown()
    loop.shutdown()

    assert loop.state is AgentState.STOPPED
    assert loop.stop_requested
    assert watcher.stop_calls == 1
    assert len(storage.records) == 1
    assert storage.records[0]['baselineMinSamples'] == 3
    assert sender.closed == 1


def test_watcher_setup_failure_runs_degraded() -> None:
    watcher = FakeWatcher(fail_start=True)
    loop, stream, _ = make_loop(watcher=watcher)

    loop.start()

    assert loop.state is AgentState.RUNNING
    assert loop.run_once(1.0).sample.files_modified_per_sec == 0.0
    assert len(emitted(stream)) == 1


def test_run_stops_on_request_and_survives_tick_errors() -> None:
    ticks = {'count': 0}
    loop = None

    class StoppingCollector:
        def collect(self):
            ticks['count'] += 1
            if ticks['count'] == 5:
                loop.request_stop()
            return 0.0

    loop, stream, sender = make_loop(disk=StoppingCollector())
    original = loop.baseline.update
    calls = {'n': 0}

    def flaky_update(sample):
        calls['n'] += 1
        if calls['n'] == 2:
            raise RuntimeError("tick blew up")
        original(sample)

    loop.baseline.update = flaky_update

    runner = threading.Thread(target=loop.run)
    runner.start()
    runner.join(5.0)

    assert not runner.is_alive()
    assert ticks['count'] == 5
    assert len(emitted(stream)) == 4
    assert loop.state is AgentState.STOPPED
    assert sender.closed == 1
