"""Unit tests for gc_listener/debounce.py"""

import threading
import time

from gc_listener.debounce import DebounceCoalescer


class _Recorder:
    def __init__(self):
        self.calls = []
        self.fired = threading.Event()

    def __call__(self):
        self.calls.append(time.monotonic())
        self.fired.set()


def _wait_until_idle(debouncer, timeout=5.0):
    deadline = time.monotonic() + timeout
    while debouncer.pending and time.monotonic() < deadline:
        time.sleep(0.01)


class TestDebounceCoalescer:
    """Tests for coalescing delete notifications"""

    def test_burst_produces_single_action(self):
        action = _Recorder()
        debouncer = DebounceCoalescer(action, window=0.2)

        results = [debouncer.notify() for _ in range(25)]

        assert results[0] is True
        assert not any(results[1:])
        assert action.fired.wait(timeout=5)
        _wait_until_idle(debouncer)
        assert len(action.calls) == 1

    def test_window_runs_from_first_notification(self):
        action = _Recorder()
        debouncer = DebounceCoalescer(action, window=0.3)

        first = time.monotonic()
        debouncer.notify()
        time.sleep(0.2)
        debouncer.notify()

        assert action.fired.wait(timeout=5)
        elapsed = action.calls[0] - first
        assert elapsed >= 0.29
        # a window reset by the second notification would fire at >= 0.5s
        assert elapsed < 0.48

    def test_new_burst_after_firing_schedules_again(self):
        action = _Recorder()
        debouncer = DebounceCoalescer(action, window=0.05)

        debouncer.notify()
        assert action.fired.wait(timeout=5)
        _wait_until_idle(debouncer)
        action.fired.clear()

        assert debouncer.notify() is True
        assert action.fired.wait(timeout=5)
        _wait_until_idle(debouncer)
        assert len(action.calls) == 2

    def test_shutdown_cancels_pending_action(self):
        action = _Recorder()
        shutdown = threading.Event()
        debouncer = DebounceCoalescer(action, window=10, shutdown=shutdown)

        debouncer.notify()
        assert debouncer.pending is True
        shutdown.set()
        _wait_until_idle(debouncer)

        assert debouncer.pending is False
        assert action.calls == []

    def test_failing_action_clears_pending_flag(self):
        calls = []

        def action():
            calls.append(1)
            raise RuntimeError("gc exploded")

        debouncer = DebounceCoalescer(action, window=0.01)

        debouncer.notify()
        deadline = time.monotonic() + 5
        while not calls and time.monotonic() < deadline:
            time.sleep(0.01)
        _wait_until_idle(debouncer)

        assert calls == [1]
        assert debouncer.pending is False
        assert debouncer.notify() is True

    def test_concurrent_notifications_schedule_once(self):
        action = _Recorder()
        debouncer = DebounceCoalescer(action, window=0.2)
        scheduled = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def notify():
            start.wait()
            result = debouncer.notify()
            with lock:
                scheduled.append(result)

        threads = [threading.Thread(target=notify) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert scheduled.count(True) == 1
        assert action.fired.wait(timeout=5)
        _wait_until_idle(debouncer)
        assert len(action.calls) == 1
