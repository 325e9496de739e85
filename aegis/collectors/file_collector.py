# aegis/collectors/file_collector.py
import os
import time
import queue
import logging
import threading
from collections import deque
from typing import Deque, Dict, Optional

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from aegis.config.thresholds import SystemThresholds
from aegis.core.interfaces.collector import IMetricsCollector
from aegis.core.models.data_models import FsCountsSnapshot
from aegis.utils.log_throttle import RateLimitedLogger


class WatcherSetupError(Exception):
    """The watch root is missing and cannot be created, or is not a directory"""


def normalize_dir(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.fsdecode(path)))


class FsEventCounters(IMetricsCollector):
    """Event counters shared between the watcher worker and the agent loop"""

    def __init__(self):
        self._lock = threading.Lock()
        self._modified = 0
        self._created = 0
        self._deleted = 0
        self._approx_renamed = 0

    def increment_modified(self) -> None:
        with self._lock:
            self._modified += 1

    def increment_created(self) -> None:
        with self._lock:
            self._created += 1

    def increment_deleted(self) -> None:
        with self._lock:
            self._deleted += 1

    def increment_approx_renamed(self) -> None:
        with self._lock:
            self._approx_renamed += 1

    def snapshot_and_reset(self) -> FsCountsSnapshot:
        """Read and clear all counters in one step"""
        with self._lock:
            snapshot = FsCountsSnapshot(
                modified=self._modified,
                created=self._created,
                deleted=self._deleted,
                approx_renamed=self._approx_renamed
            )
            self._modified = self._created = self._deleted = self._approx_renamed = 0
        return snapshot

    def collect(self) -> FsCountsSnapshot:
        return self.snapshot_and_reset()


class _QueueingHandler(FileSystemEventHandler):
    """Hands raw watchdog events to the watcher worker, stamped with arrival time"""

    def __init__(self, events: queue.Queue, clock):
        super().__init__()
        self.events = events
        self.clock = clock
        self.dropped = 0
        self.warn = RateLimitedLogger(logging.getLogger(__name__), SystemThresholds.LOG_RATE_LIMIT_SEC)

    def on_any_event(self, event):
        try:
            self.events.put_nowait((event, self.clock()))
        except queue.Full:
            self.dropped += 1
            self.warn.warning(f"Filesystem event queue full; dropped {self.dropped} events so far")


class FsWatcher:
    def __init__(
        self,
        watch_root: str,
        counters: FsEventCounters,
        clock=time.monotonic,
        rename_window_sec: float = SystemThresholds.RENAME_WINDOW_SEC,
        history_limit: int = SystemThresholds.DELETE_HISTORY_LIMIT,
        poll_sec: float = SystemThresholds.WATCH_POLL_SEC,
        queue_max: int = SystemThresholds.WATCH_QUEUE_MAX
    ):
        """
        Recursive filesystem watcher with delete+create rename correlation

        Args:
            watch_root: Directory tree to observe
            counters: Counters incremented for every classified event
            clock: Monotonic clock in seconds, injectable for tests
            rename_window_sec: Max gap between a delete and a create in the
                same directory for the pair to count as a rename
            history_limit: Max remembered deletes per directory
            poll_sec: How long the worker blocks waiting for events
            queue_max: Raw events buffered for the worker; newer events
                are dropped and counted once it is full
        """
        self.watch_root = normalize_dir(watch_root or ".")
        self.counters = counters
        self.clock = clock
        self.rename_window_sec = rename_window_sec
        self.history_limit = history_limit
        self.poll_sec = poll_sec
        self.logger = logging.getLogger(__name__)

        self.recent_deletes: Dict[str, Deque[float]] = {}
        self.events: queue.Queue = queue.Queue(maxsize=max(1, queue_max))
        self.handler = _QueueingHandler(self.events, self.clock)
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._observer: Optional[Observer] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def is_alive(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def tracked_directories(self) -> int:
        return len(self.recent_deletes)

    @property
    def dropped_events(self) -> int:
        return self.handler.dropped

    def start(self) -> None:
        """Prepare the watch root, start the observer and the worker thread"""
        with self._lifecycle_lock:
            if self._worker is not None:
                return
            self._prepare_root()

            observer = Observer()
            try:
                observer.schedule(self.handler, self.watch_root, recursive=True)
                observer.start()
            except Exception as e:
                raise WatcherSetupError(f"Cannot watch {self.watch_root}: {e}") from e

            self._observer = observer
            self._worker = threading.Thread(target=self._run, name='aegis-fs-watcher', daemon=True)
            self._worker.start()
        self.logger.info(f"Watching {self.watch_root} recursively")

    def stop(self, timeout: float = SystemThresholds.WATCHER_JOIN_SEC) -> None:
        """Stop observing; safe to call repeatedly and from any thread"""
        with self._lifecycle_lock:
            self._stop_event.set()
            observer, self._observer = self._observer, None
            worker = self._worker

        if observer is not None:
            try:
                observer.stop()
                observer.join(timeout)
            except Exception as e:
                self.logger.warning(f"Error stopping filesystem observer: {e}")

        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
            if worker.is_alive():
                self.logger.warning(f"Filesystem watcher did not stop within {timeout:.2f}s, abandoning it")

    def _prepare_root(self) -> None:
        if not os.path.exists(self.watch_root):
            try:
                os.makedirs(self.watch_root, exist_ok=True)
                self.logger.info(f"Created watch root {self.watch_root}")
            except OSError as e:
                raise WatcherSetupError(f"Cannot create watch root {self.watch_root}: {e}") from e
        if not os.path.isdir(self.watch_root):
            raise WatcherSetupError(f"Watch root is not a directory: {self.watch_root}")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                event, stamp = self.events.get(timeout=self.poll_sec)
            except queue.Empty:
                self.evict_expired_deletes(self.clock())
                continue

            try:
                self.dispatch(event, stamp)
            except Exception:
                self.logger.warning("Skipping filesystem event that could not be handled", exc_info=True)
            self.evict_expired_deletes(self.clock())

    def dispatch(self, event, now: float) -> None:
        """Route a watchdog event into handle_event; moves become delete + create"""
        # children of a moved directory, replayed by watchdog
        if getattr(event, 'is_synthetic', False):
            return
        event_type = event.event_type
        if event_type == EVENT_TYPE_MOVED:
            self.handle_event(EVENT_TYPE_DELETED, event.src_path, event.is_directory, now)
            self.handle_event(EVENT_TYPE_CREATED, event.dest_path, event.is_directory, now)
        else:
            self.handle_event(event_type, event.src_path, event.is_directory, now)

    def handle_event(self, event_type: str, path, is_directory: bool, now: float) -> None:
        """Classify one event and update counters and rename correlation"""
        if event_type == EVENT_TYPE_MODIFIED:
            # directory modifications echo changes to their entries
            if not is_directory:
                self.counters.increment_modified()
            return

        if event_type == EVENT_TYPE_DELETED:
            self.counters.increment_deleted()
            self._remember_delete(self._parent_of(path), now)
            return

        if event_type == EVENT_TYPE_CREATED:
            self.counters.increment_created()
            if self._consume_recent_delete(self._parent_of(path), now):
                self.counters.increment_approx_renamed()

    def evict_expired_deletes(self, now: float) -> None:
        for directory in list(self.recent_deletes):
            history = self.recent_deletes[directory]
            self._trim(history, now)
            if not history:
                del self.recent_deletes[directory]

    def _remember_delete(self, directory: str, now: float) -> None:
        history = self.recent_deletes.setdefault(directory, deque(maxlen=self.history_limit))
        history.append(now)
        self._trim(history, now)

    def _consume_recent_delete(self, directory: str, now: float) -> bool:
        history = self.recent_deletes.get(directory)
        if history is None:
            return False

        self._trim(history, now)
        matched = bool(history)
        if matched:
            history.popleft()
        if not history:
            del self.recent_deletes[directory]
        return matched

    def _trim(self, history: Deque[float], now: float) -> None:
        while history and now - history[0] > self.rename_window_sec:
            history.popleft()

    @staticmethod
    def _parent_of(path) -> str:
        return normalize_dir(os.path.dirname(os.fsdecode(path)))
