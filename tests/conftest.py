import threading

import pytest

from helpers import Collector
from pgaudit_tailer.dispatch import make_channels


@pytest.fixture
def shutdown():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def channels():
    return make_channels(100)


@pytest.fixture
def audit_collector(channels):
    return Collector(channels.audit)


@pytest.fixture
def line_collector(channels):
    return Collector(channels.lines)
