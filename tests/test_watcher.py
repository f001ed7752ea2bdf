import threading

from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import ResourceReading
from odoosupervisor.watcher import ResourceWatcher


class SequenceDetector:
    def __init__(self, readings):
        self.readings = list(readings)

    def detect(self):
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


SMALL = ResourceReading(cpu_count=1, ram_bytes=1024)
LARGE = ResourceReading(cpu_count=4, ram_bytes=4096)


def test_poll_once_calls_on_change_only_on_difference():
    changes = []
    watcher = ResourceWatcher(
        SequenceDetector([SMALL, SMALL, LARGE, LARGE]), on_change=changes.append, initial=SMALL
    )

    results = [watcher.poll_once() for _ in range(4)]

    assert results == [False, False, True, False]
    assert changes == [LARGE]
    assert watcher.changes == 1


def test_poll_once_without_baseline_records_first_reading():
    changes = []
    watcher = ResourceWatcher(SequenceDetector([LARGE]), on_change=changes.append)

    assert watcher.poll_once() is False
    assert watcher.previous == LARGE
    assert changes == []


def test_poll_once_survives_failing_callback():
    def on_change(_reading):
        raise SupervisorError("cannot write config")

    watcher = ResourceWatcher(SequenceDetector([LARGE]), on_change=on_change, initial=SMALL)

    assert watcher.poll_once() is True
    assert watcher.previous == SMALL


def test_failed_change_is_retried_on_next_poll():
    calls = []

    def on_change(reading):
        calls.append(reading)
        if len(calls) == 1:
            raise SupervisorError("cannot write config")

    watcher = ResourceWatcher(SequenceDetector([LARGE]), on_change=on_change, initial=SMALL)

    assert watcher.poll_once() is True
    assert watcher.poll_once() is True
    assert watcher.poll_once() is False
    assert calls == [LARGE, LARGE]
    assert watcher.previous == LARGE


def test_watcher_thread_reacts_and_stops():
    changed = threading.Event()
    watcher = ResourceWatcher(
        SequenceDetector([LARGE]),
        on_change=lambda _reading: changed.set(),
        interval=0.01,
        initial=SMALL,
    )

    watcher.start()
    try:
        assert changed.wait(5)
    finally:
        watcher.stop()
        watcher.join(5)

    assert watcher.stopped is True
    assert watcher.changes == 1
