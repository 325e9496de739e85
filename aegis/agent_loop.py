# aegis/agent_loop.py
"""
Tick-driven detection loop.

One tick per sampling interval: drain the watcher counters, turn them into
storm-window rates, poll disk and top-writer rates, update the baseline,
run detection once the baseline is ready, then emit. A failing tick is
logged and the loop carries on. Shutdown stops the watcher, saves the
baseline and closes the telemetry sender, each step independently.
"""

import math
import time
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from aegis.analyzers.baseline import BaselineModel
from aegis.analyzers.rate_aggregator import WindowedRateAggregator
from aegis.analyzers.statistical import AnomalyEngine
from aegis.collectors.file_collector import FsEventCounters, FsWatcher, WatcherSetupError
from aegis.collectors.process_collector import TopWriterCollector
from aegis.collectors.system_collector import DiskWriteCollector
from aegis.comms.emitter import TelemetryEmitter, build_sender
from aegis.config.settings import AgentConfig, Mode
from aegis.core.interfaces.storage import IStorage
from aegis.core.models.data_models import AgentState, TelemetrySample, TickResult, TopWriterProcess
from aegis.detectors.ransomware_detector import RansomwareClassifier
from aegis.storage.file_storage import FileStorage

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class AgentLoop:
    def __init__(
        self,
        config: AgentConfig,
        watcher=None,
        counters: Optional[FsEventCounters] = None,
        disk_collector=None,
        top_writer_collector=None,
        emitter: Optional[TelemetryEmitter] = None,
        storage: Optional[IStorage] = None,
        clock=time.monotonic
    ):
        self.config = config
        self.clock = clock
        self.state = AgentState.INIT

        self.counters = counters or FsEventCounters()
        self.watcher = watcher if watcher is not None else FsWatcher(config.watch_root, self.counters)
        self.aggregator = WindowedRateAggregator(config.storm_window_seconds)
        self.disk_collector = disk_collector or DiskWriteCollector()
        self.top_writer_collector = top_writer_collector or TopWriterCollector()
        self.baseline = BaselineModel(
            config.baseline_min_samples,
            storage if storage is not None else FileStorage(config.baseline_path)
        )
        self.anomaly_engine = AnomalyEngine(config.z_score_threshold, config.thresholds)
        self.classifier = RansomwareClassifier.from_config(config.score_thresholds)
        self.emitter = emitter or TelemetryEmitter(config.agent_id, build_sender(config))

        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Ask the loop to finish; safe from signal handlers and other threads"""
        self._stop_event.set()

    def start(self) -> None:
        try:
            self.watcher.start()
        except WatcherSetupError as e:
            logger.error(f"Filesystem detection disabled, continuing without it: {e}")
        with self._state_lock:
            if self.state is AgentState.INIT:
                self.state = AgentState.RUNNING
        logger.info(f"Agent running in {self.config.mode.value} mode, "
                    f"interval {self.config.sampling_interval_ms} ms")

    def run(self) -> None:
        """Run ticks until request_stop() is called, then shut down"""
        self.start()
        interval = self.config.sampling_interval_sec
        previous_tick = self.clock()
        try:
            while not self._stop_event.is_set():
                tick_start = self.clock()
                elapsed = tick_start - previous_tick
                previous_tick = tick_start
                if not math.isfinite(elapsed) or elapsed <= 0.0:
                    elapsed = interval

                try:
                    self.run_once(elapsed)
                except Exception:
                    logger.exception("Agent tick failed")

                remaining = interval - (self.clock() - tick_start)
                if remaining > 0:
                    self._stop_event.wait(remaining)
        finally:
            self.shutdown()

    def run_once(self, elapsed_sec: float) -> TickResult:
        """Execute a single tick and return what it produced"""
        snapshot = self.counters.snapshot_and_reset()
        rates = self.aggregator.update(snapshot, elapsed_sec)

        disk_write_rate = self._collect(self.disk_collector, 0.0)
        top_writer = self._collect(self.top_writer_collector, TopWriterProcess.none())

        sample = TelemetrySample(
            timestamp=utc_timestamp(),
            files_modified_per_sec=rates.modified_per_sec,
            files_created_per_sec=rates.created_per_sec,
            files_deleted_per_sec=rates.deleted_per_sec,
            approx_renames_per_sec=rates.approx_renames_per_sec,
            disk_write_bytes_per_sec=disk_write_rate,
            top_pid=top_writer.pid,
            top_comm=top_writer.comm,
            top_write_bytes_per_sec=top_writer.write_bytes_per_sec
        )

        # detection must see this tick's update
        self.baseline.update(sample)
        baseline_ready = self.baseline.ready()

        anomaly = classification = None
        if self.config.mode is Mode.DETECT and baseline_ready:
            anomaly = self.anomaly_engine.analyze(sample, self.baseline)
            classification = self.classifier.classify(anomaly)

        result = TickResult(
            sample=sample,
            baseline_ready=baseline_ready,
            anomaly=anomaly,
            classifier=classification
        )
        self.emitter.emit(result)
        return result

    def shutdown(self) -> None:
        """Stop workers and persist the baseline; later calls do nothing"""
        with self._state_lock:
            if self.state in (AgentState.SHUTTING_DOWN, AgentState.STOPPED):
                return
            self.state = AgentState.SHUTTING_DOWN
        self._stop_event.set()
        logger.info("Shutting down agent")

        for name, step in (
            ('filesystem watcher', self.watcher.stop),
            ('baseline model', self.baseline.close),
            ('telemetry emitter', self.emitter.close),
        ):
            try:
                step()
            except Exception:
                logger.exception(f"Error while closing {name}")

        with self._state_lock:
            self.state = AgentState.STOPPED
        logger.info("Agent stopped")

    @staticmethod
    def _collect(collector, default):
        try:
            value = collector.collect()
        except Exception as e:
            logger.warning(f"{type(collector).__name__} failed, using defaults: {e}")
            return default
        return default if value is None else value
