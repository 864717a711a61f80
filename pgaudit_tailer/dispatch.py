"""Bounded channels between the file tailers and the two sinks."""

import queue
import threading
from dataclasses import dataclass

# How long a blocked put/get waits before re-checking the shutdown event.
POLL_TIMEOUT = 0.1


@dataclass
class Channels:
    """Audit entries go to ``audit``; raw passthrough lines go to ``lines``."""
    audit: queue.Queue
    lines: queue.Queue


def make_channels(size: int = 100) -> Channels:
    return Channels(audit=queue.Queue(maxsize=size), lines=queue.Queue(maxsize=size))


def put_until_shutdown(q: queue.Queue, item, shutdown: threading.Event) -> bool:
    """Block until item is enqueued or shutdown is requested.

    This is the only backpressure in the pipeline: a slow sink stalls the
    tailers feeding it instead of losing entries. Returns False if shutdown
    won the race.
    """
    while not shutdown.is_set():
        try:
            q.put(item, timeout=POLL_TIMEOUT)
            return True
        except queue.Full:
            continue
    return False


def get_until_shutdown(q: queue.Queue, shutdown: threading.Event):
    """Return the next item, or None once shutdown is requested."""
    while not shutdown.is_set():
        try:
            return q.get(timeout=POLL_TIMEOUT)
        except queue.Empty:
            continue
    return None
