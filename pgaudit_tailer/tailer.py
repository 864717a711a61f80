"""FileTailer: follows one log file across truncation, deletion and recreation."""

import enum
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO

from pgaudit_tailer.classifier import classify
from pgaudit_tailer.dispatch import Channels, put_until_shutdown
from pgaudit_tailer.models import AuditLine, PassthroughLine

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
PROGRESS_EVERY = 100


class TailerState(enum.Enum):
    OPENING = "opening"
    TAILING = "tailing"
    REOPENING = "reopening"
    CLOSED = "closed"


@dataclass(frozen=True)
class FileIdentity:
    device: int
    inode: int

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileIdentity":
        return cls(device=st.st_dev, inode=st.st_ino)


@dataclass
class FileState:
    path: str
    identity: FileIdentity | None = None
    last_size: int = 0
    position: int = 0
    handle: BinaryIO | None = None


def detect_rotation(state: FileState) -> str | None:
    """Compare the path on disk with what the open handle was tracking.

    Returns a short reason when the file was rotated, truncated or removed,
    otherwise None and records the new size as the last observation.
    """
    try:
        st = os.stat(state.path)
    except FileNotFoundError:
        return "file missing"
    except OSError as e:
        return f"stat failed: {e}"

    if FileIdentity.from_stat(st) != state.identity:
        return "identity changed"
    if st.st_size < state.last_size or st.st_size < state.position:
        return "file truncated"

    state.last_size = st.st_size
    return None


class FileTailer(threading.Thread):
    """Reads complete lines from one path, classifies them and feeds the channels.

    Rotation checks run between reads in the same thread, so the handle is
    never touched concurrently. After a rotation the new file is read from
    its start.
    """

    def __init__(
        self,
        path: str,
        channels: Channels,
        shutdown_event: threading.Event,
        from_beginning: bool = False,
        read_interval: float = 0.1,
        rotation_check_interval: float = 5.0,
        retry_interval: float = 5.0,
    ):
        super().__init__(daemon=True, name=f"tailer:{os.path.basename(path)}")
        self._file = FileState(path=path)
        self._channels = channels
        self._shutdown = shutdown_event
        self._from_beginning = from_beginning
        self._read_interval = read_interval
        self._rotation_check_interval = rotation_check_interval
        self._retry_interval = retry_interval
        self._partial = b""
        self._state = TailerState.OPENING
        self._entries_processed = 0
        self._rotations = 0

    @property
    def path(self) -> str:
        return self._file.path

    @property
    def state(self) -> TailerState:
        return self._state

    @property
    def entries_processed(self) -> int:
        return self._entries_processed

    @property
    def rotations(self) -> int:
        return self._rotations

    def run(self):
        try:
            if not self._open_with_retry():
                return
            self._skip_existing()
            self._state = TailerState.TAILING
            self._tail()
        finally:
            self._close()
            self._state = TailerState.CLOSED
            logger.info("Stopped tailing %s", self.path)

    def _open_with_retry(self) -> bool:
        """Open the path, waiting retry_interval between attempts until shutdown."""
        while not self._shutdown.is_set():
            try:
                handle = open(self.path, "rb")
            except OSError as e:
                logger.error("Unable to open %s, retrying in %.1fs: %s",
                             self.path, self._retry_interval, e)
                self._shutdown.wait(self._retry_interval)
                continue

            st = os.fstat(handle.fileno())
            self._file.handle = handle
            self._file.identity = FileIdentity.from_stat(st)
            self._file.last_size = st.st_size
            self._file.position = 0
            self._partial = b""
            return True
        return False

    def _skip_existing(self):
        size = self._file.last_size
        if self._from_beginning:
            logger.info("Reading %s from the beginning (%d bytes)", self.path, size)
        elif size > 0:
            self._file.position = self._file.handle.seek(0, os.SEEK_END)
            logger.info("Skipping existing content of %s - only new logs will be processed "
                        "(file_size_bytes=%d, position=%d)", self.path, size, self._file.position)
        else:
            logger.info("Log file %s is empty - waiting for new log entries", self.path)

    def _close(self):
        if self._file.handle is not None:
            try:
                self._file.handle.close()
            except OSError as e:
                logger.warning("Failed to close %s: %s", self.path, e)
            self._file.handle = None

    def _tail(self):
        next_check = time.monotonic() + self._rotation_check_interval
        while not self._shutdown.is_set():
            if time.monotonic() >= next_check:
                if not self._check_rotation():
                    return
                next_check = time.monotonic() + self._rotation_check_interval

            chunk = self._file.handle.read(READ_CHUNK_SIZE)
            if not chunk:
                self._shutdown.wait(self._read_interval)
                continue

            self._file.position += len(chunk)
            if not self._handle_chunk(chunk):
                return

    def _check_rotation(self) -> bool:
        """Reopen the path if it rotated. Returns False if shutdown interrupted the reopen."""
        reason = detect_rotation(self._file)
        if reason is None:
            return True

        logger.info("Log rotation detected for %s (%s), reopening file...", self.path, reason)
        self._state = TailerState.REOPENING
        self._rotations += 1
        if self._partial:
            logger.warning("Discarding %d bytes of incomplete line from rotated %s",
                           len(self._partial), self.path)
        self._close()
        if not self._open_with_retry():
            return False

        self._state = TailerState.TAILING
        logger.info("Successfully reopened %s (new_file_size_bytes=%d)",
                    self.path, self._file.last_size)
        return True

    def _handle_chunk(self, chunk: bytes) -> bool:
        """Split buffered data into complete lines; keep the trailing fragment."""
        data = self._partial + chunk
        *lines, self._partial = data.split(b"\n")
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if not line.strip():
                continue
            if not self._dispatch(line):
                return False
        return True

    def _dispatch(self, line: str) -> bool:
        record = classify(line)
        if isinstance(record, AuditLine):
            target, item = self._channels.audit, record.entry
        elif isinstance(record, PassthroughLine):
            target, item = self._channels.lines, record.line
        else:
            return True

        self._entries_processed += 1
        if self._entries_processed == 1:
            logger.debug("Successfully read first log entry from %s", self.path)
        elif self._entries_processed % PROGRESS_EVERY == 0:
            logger.debug("Processed %d log entries from %s", self._entries_processed, self.path)

        return put_until_shutdown(target, item, self._shutdown)
