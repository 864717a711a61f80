"""GlobWatcher: discovers files matching a glob and starts one FileTailer per path."""

import glob
import logging
import os
import queue
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from pgaudit_tailer.dispatch import Channels
from pgaudit_tailer.tailer import FileTailer

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """The glob or its directory cannot be watched; the process should stop."""


class _CreateEventHandler(FileSystemEventHandler):
    """Runs on the observer thread; only notifies the watcher thread."""

    def __init__(self, notify: queue.Queue):
        super().__init__()
        self._notify = notify

    def on_created(self, event):
        if not event.is_directory:
            logger.debug("Filesystem event: created %s", event.src_path)
            self._notify.put(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            logger.debug("Filesystem event: moved %s -> %s", event.src_path, event.dest_path)
            self._notify.put(event.dest_path)


class GlobWatcher(threading.Thread):
    """Owns the path -> FileTailer map. Entries are added, never removed.

    New files are noticed through watchdog create events on the pattern's
    parent directory. If the observer cannot be started the glob is polled
    every rescan_interval instead. Fatal errors go to the errors queue.
    """

    def __init__(
        self,
        pattern: str,
        channels: Channels,
        shutdown_event: threading.Event,
        errors: queue.Queue,
        from_beginning: bool = False,
        read_interval: float = 0.1,
        rotation_check_interval: float = 5.0,
        retry_interval: float = 5.0,
        rescan_interval: float = 60.0,
        observer_factory=Observer,
    ):
        super().__init__(daemon=True, name="glob-watcher")
        self._pattern = pattern
        self._channels = channels
        self._shutdown = shutdown_event
        self._errors = errors
        self._from_beginning = from_beginning
        self._read_interval = read_interval
        self._rotation_check_interval = rotation_check_interval
        self._retry_interval = retry_interval
        self._rescan_interval = rescan_interval
        self._observer_factory = observer_factory
        self._notify: queue.Queue = queue.Queue()
        self._tailers: dict[str, FileTailer] = {}
        self._tailers_lock = threading.Lock()
        self._observer = None
        self._polling = False

    @property
    def directory(self) -> str:
        return os.path.dirname(self._pattern) or "."

    @property
    def polling(self) -> bool:
        return self._polling

    @property
    def tailers(self) -> dict[str, FileTailer]:
        """Snapshot for other threads; only the watcher thread mutates the map."""
        with self._tailers_lock:
            return dict(self._tailers)

    def run(self):
        try:
            self.scan()
            self._start_observer()
            if self._polling:
                self._poll_loop()
            else:
                self._event_loop()
        except WatchError as e:
            logger.error("Watcher failed: %s", e)
            self._errors.put(e)
        finally:
            self._stop_observer()
            if self._shutdown.is_set():
                for tailer in self._tailers.values():
                    tailer.join(timeout=self._read_interval + 1.0)
            logger.info("Watcher stopped (%d file(s) tracked)", len(self._tailers))

    def scan(self) -> list[str]:
        """Resolve the pattern and start tailers for untracked paths."""
        logger.info("Looking for files matching pattern %s", self._pattern)
        try:
            matches = sorted(glob.glob(self._pattern))
        except (OSError, ValueError) as e:
            raise WatchError(f"error listing files for {self._pattern}: {e}") from e

        started = []
        for path in matches:
            if path in self._tailers or os.path.isdir(path):
                continue
            logger.info("New file found, starting tail: %s", path)
            tailer = FileTailer(
                path,
                self._channels,
                self._shutdown,
                from_beginning=self._from_beginning,
                read_interval=self._read_interval,
                rotation_check_interval=self._rotation_check_interval,
                retry_interval=self._retry_interval,
            )
            with self._tailers_lock:
                self._tailers[path] = tailer
            tailer.start()
            started.append(path)
        return started

    def _start_observer(self):
        directory = self.directory
        if not os.path.isdir(directory):
            raise WatchError(f"directory {directory} does not exist")

        handler = _CreateEventHandler(self._notify)
        observer = None
        try:
            observer = self._observer_factory()
            observer.schedule(handler, directory, recursive=False)
            observer.start()
        except OSError as e:
            if observer is not None:
                observer.stop()
            logger.error("Unable to watch %s for file changes (%s), falling back to polling every %.0fs",
                         directory, e, self._rescan_interval)
            self._polling = True
            return

        self._observer = observer
        logger.info("Watching directory: %s", directory)

    def _stop_observer(self):
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def _event_loop(self):
        while not self._shutdown.is_set():
            try:
                self._notify.get(timeout=0.5)
            except queue.Empty:
                if not self._observer.is_alive() and not self._shutdown.is_set():
                    raise WatchError(f"observer for {self.directory} stopped unexpectedly")
                continue

            # Coalesce bursts of events into a single rescan.
            while True:
                try:
                    self._notify.get_nowait()
                except queue.Empty:
                    break
            self.scan()

    def _poll_loop(self):
        while not self._shutdown.wait(self._rescan_interval):
            self.scan()
