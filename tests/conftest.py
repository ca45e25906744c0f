import pytest

from core.alerting import AlertDispatcher
from sinks.memory_sink import MemorySink
from tests.fakes import FakeClock, FakeCollector, FakeScheduler, RecordingAlertSink


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def alert_sink():
    return RecordingAlertSink()


@pytest.fixture
def alerts(alert_sink):
    return AlertDispatcher([alert_sink])


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def make_collector(memory_sink, scheduler, alerts, clock):
    def _make(**kwargs):
        kwargs.setdefault("sink", memory_sink)
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("alerts", alerts)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("fetch_timeout", 1.0)
        return FakeCollector(**kwargs)
    return _make
