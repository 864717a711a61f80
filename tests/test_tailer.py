"""Tests for tailer module."""

import os
import threading
import time

from helpers import Collector, append, audit_line, plain_line, wait_for
from pgaudit_tailer.dispatch import make_channels
from pgaudit_tailer.tailer import FileIdentity, FileState, FileTailer, TailerState, detect_rotation


def _tailer(path, channels, shutdown, **kwargs) -> FileTailer:
    kwargs.setdefault("read_interval", 0.02)
    kwargs.setdefault("rotation_check_interval", 0.1)
    kwargs.setdefault("retry_interval", 0.05)
    return FileTailer(str(path), channels, shutdown, **kwargs)


def _start(tailer: FileTailer) -> FileTailer:
    tailer.start()
    assert wait_for(lambda: tailer.state is TailerState.TAILING)
    return tailer


def _messages(items) -> list:
    return [item["message"] if isinstance(item, dict) else item for item in items]


class TestDetectRotation:
    def _state(self, path) -> FileState:
        st = os.stat(path)
        return FileState(path=str(path), identity=FileIdentity.from_stat(st), last_size=st.st_size)

    def test_unchanged_file(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("one\n")
        assert detect_rotation(self._state(f)) is None

    def test_growth_updates_last_size(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("one\n")
        state = self._state(f)
        append(f, "two")
        assert detect_rotation(state) is None
        assert state.last_size == 8

    def test_truncation(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("a long first line\n")
        state = self._state(f)
        f.write_text("short\n")
        assert detect_rotation(state) == "file truncated"

    def test_size_below_position(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("0123456789\n")
        state = self._state(f)
        state.last_size = 0
        state.position = 11
        f.write_text("abc\n")
        assert detect_rotation(state) == "file truncated"

    def test_missing_file(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("one\n")
        state = self._state(f)
        f.unlink()
        assert detect_rotation(state) == "file missing"

    def test_identity_change(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("one\n")
        state = self._state(f)
        os.rename(f, tmp_path / "pg.json.1")
        f.write_text("one\n")
        assert detect_rotation(state) == "identity changed"


class TestFileTailer:
    def test_skips_existing_and_reads_appended(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        append(f, plain_line("existing"))
        tailer = _start(_tailer(f, channels, shutdown))

        append(f, plain_line("new 1"), plain_line("new 2"))

        assert wait_for(lambda: len(line_collector.poll()) == 2)
        assert line_collector.items == [plain_line("new 1"), plain_line("new 2")]
        assert tailer.entries_processed == 2

    def test_from_beginning_reads_existing(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        append(f, plain_line("existing"))
        _start(_tailer(f, channels, shutdown, from_beginning=True))

        assert wait_for(lambda: line_collector.poll() == [plain_line("existing")])

    def test_routes_audit_and_passthrough(self, tmp_path, channels, shutdown,
                                         audit_collector, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        _start(_tailer(f, channels, shutdown))

        append(f, audit_line("SESSION,1,1,READ,SELECT,,,SELECT 1"), plain_line("checkpoint starting"),
               audit_line("OBJECT"))

        assert wait_for(lambda: len(audit_collector.poll()) == 2 and len(line_collector.poll()) == 1)
        assert _messages(audit_collector.items) == [
            "AUDIT: SESSION,1,1,READ,SELECT,,,SELECT 1",
            "AUDIT: OBJECT",
        ]
        assert line_collector.items == [plain_line("checkpoint starting")]

    def test_partial_line_waits_for_newline(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        _start(_tailer(f, channels, shutdown))

        line = plain_line("split write")
        with open(str(f), "a") as fh:
            fh.write(line[:10])
            fh.flush()
        time.sleep(0.2)
        assert line_collector.poll() == []

        with open(str(f), "a") as fh:
            fh.write(line[10:] + "\n")
            fh.flush()
        assert wait_for(lambda: line_collector.poll() == [line])

    def test_malformed_line_dropped(self, tmp_path, channels, shutdown,
                                    audit_collector, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        tailer = _start(_tailer(f, channels, shutdown))

        append(f, '{"message": "AUDIT: SESSION', "not json at all", plain_line("after"))

        assert wait_for(lambda: line_collector.poll() == [plain_line("after")])
        assert audit_collector.poll() == []
        assert tailer.is_alive()

    def test_crlf_and_blank_lines(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        _start(_tailer(f, channels, shutdown))

        with open(str(f), "a", newline="") as fh:
            fh.write(plain_line("windows") + "\r\n\n   \n")
            fh.flush()

        assert wait_for(lambda: line_collector.poll() == [plain_line("windows")])

    def test_truncation_resumes_with_new_content(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        append(f, plain_line("original"))
        tailer = _start(_tailer(f, channels, shutdown))

        append(f, plain_line("before truncation"))
        assert wait_for(lambda: plain_line("before truncation") in line_collector.poll())

        with open(str(f), "w") as fh:
            fh.write(plain_line("after") + "\n")
            fh.flush()

        assert wait_for(lambda: plain_line("after") in line_collector.poll())
        time.sleep(0.3)
        line_collector.poll()
        assert line_collector.items == [plain_line("before truncation"), plain_line("after")]
        assert tailer.rotations >= 1

    def test_delete_and_recreate(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        tailer = _start(_tailer(f, channels, shutdown))

        append(f, plain_line("old file"))
        assert wait_for(lambda: line_collector.poll() == [plain_line("old file")])

        f.unlink()
        append(f, plain_line("new file"))

        assert wait_for(lambda: plain_line("new file") in line_collector.poll())
        assert line_collector.items == [plain_line("old file"), plain_line("new file")]
        assert tailer.rotations >= 1

    def test_rename_rotation(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "pg.json"
        f.write_text("")
        _start(_tailer(f, channels, shutdown))

        os.rename(f, tmp_path / "pg.json.1")
        append(f, plain_line("rotated 1"), plain_line("rotated 2"))

        assert wait_for(lambda: len(line_collector.poll()) == 2)
        assert line_collector.items == [plain_line("rotated 1"), plain_line("rotated 2")]

    def test_file_not_exists_initially(self, tmp_path, channels, shutdown, line_collector):
        f = tmp_path / "delayed.json"
        tailer = _tailer(f, channels, shutdown)
        tailer.start()

        time.sleep(0.2)
        assert tailer.state is TailerState.OPENING

        f.write_text("")
        assert wait_for(lambda: tailer.state is TailerState.TAILING)
        append(f, plain_line("appeared"))

        assert wait_for(lambda: line_collector.poll() == [plain_line("appeared")])

    def test_shutdown_responsiveness(self, tmp_path, channels):
        f = tmp_path / "pg.json"
        f.write_text("")
        shutdown = threading.Event()
        tailer = _start(_tailer(f, channels, shutdown))

        shutdown.set()
        tailer.join(timeout=1)

        assert not tailer.is_alive()
        assert tailer.state is TailerState.CLOSED

    def test_shutdown_while_waiting_for_file(self, tmp_path, channels):
        shutdown = threading.Event()
        tailer = _tailer(tmp_path / "never.json", channels, shutdown, retry_interval=10.0)
        tailer.start()
        time.sleep(0.1)

        shutdown.set()
        tailer.join(timeout=1)
        assert not tailer.is_alive()

    def test_backpressure_blocks_then_releases_on_shutdown(self, tmp_path):
        f = tmp_path / "pg.json"
        f.write_text("")
        small = make_channels(1)
        shutdown = threading.Event()
        tailer = _start(_tailer(f, small, shutdown))

        append(f, *(plain_line(f"line {i}") for i in range(5)))
        assert wait_for(lambda: small.lines.full())
        time.sleep(0.2)
        assert tailer.entries_processed == 2
        assert tailer.is_alive()

        shutdown.set()
        tailer.join(timeout=1)
        assert not tailer.is_alive()

    def test_slow_consumer_loses_nothing(self, tmp_path, shutdown):
        f = tmp_path / "pg.json"
        f.write_text("")
        small = make_channels(2)
        collector = Collector(small.lines)
        _start(_tailer(f, small, shutdown))

        lines = [plain_line(f"line {i}") for i in range(20)]
        append(f, *lines)

        assert wait_for(lambda: len(collector.poll()) == 20)
        assert collector.items == lines
