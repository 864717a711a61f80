"""Shared helpers for the threaded tests."""

import json
import queue
import time


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll predicate until it is truthy or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class Collector:
    """Drains a channel into a list so tests can inspect what arrived."""

    def __init__(self, q: queue.Queue):
        self._queue = q
        self.items = []

    def poll(self) -> list:
        while True:
            try:
                self.items.append(self._queue.get_nowait())
            except queue.Empty:
                return self.items


def audit_line(statement: str = "SESSION,1,1,READ,SELECT,,,SELECT 1", **fields) -> str:
    entry = {"timestamp": "2024-01-15T08:23:45Z", "message": f"AUDIT: {statement}"}
    entry.update(fields)
    return json.dumps(entry)


def plain_line(message: str, **fields) -> str:
    entry = {"timestamp": "2024-01-15T08:23:45Z", "message": message}
    entry.update(fields)
    return json.dumps(entry)


def append(path, *lines: str):
    with open(str(path), "a", encoding="utf-8") as fh:
        for line in lines:
            fh.write(line + "\n")
        fh.flush()
