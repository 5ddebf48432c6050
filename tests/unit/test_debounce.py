import pytest

from learnflow.sync import DebouncedTask

pytestmark = pytest.mark.unit


class FakeTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, fn):
        t = FakeTimer(delay, fn)
        self.timers.append(t)
        return t


def test_burst_of_schedules_runs_once():
    runs = []
    timers = TimerFactory()
    task = DebouncedTask(lambda: runs.append(1), delay=5, timer_factory=timers)

    for _ in range(4):
        task.schedule()
    assert task.pending
    assert [t.cancelled for t in timers.timers] == [True, True, True, False]
    assert all(t.delay == 5 and t.daemon for t in timers.timers)

    for t in timers.timers:
        t.fire()
    assert runs == [1]
    assert not task.pending


def test_cancel_drops_pending_run():
    runs = []
    timers = TimerFactory()
    task = DebouncedTask(lambda: runs.append(1), timer_factory=timers)
    task.schedule()
    task.cancel()
    timers.timers[0].fire()
    assert runs == []
    assert not task.pending


def test_failures_in_task_are_contained():
    timers = TimerFactory()

    def boom():
        raise RuntimeError('upload failed')

    task = DebouncedTask(boom, timer_factory=timers)
    task.schedule()
    timers.timers[0].fire()
    assert not task.pending


def test_superseded_timer_firing_late_keeps_newer_run_pending():
    runs = []
    timers = TimerFactory()
    task = DebouncedTask(lambda: runs.append(1), timer_factory=timers)
    task.schedule()
    task.schedule()
    first, second = timers.timers

    # the first timer's thread was already past its wait when schedule() cancelled it
    first.fn()
    assert runs == []
    assert task.pending

    task.cancel()
    assert second.cancelled
    second.fire()
    assert runs == []
