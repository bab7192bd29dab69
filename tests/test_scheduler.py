"""Tests for the shared timer service."""

import threading
import time

import pytest

from service_guard.scheduler import TimerService


@pytest.fixture
def timer_service():
    service = TimerService(max_workers=4)
    yield service
    service.shutdown()


class TestTimerService:
    """Test periodic timer dispatch."""

    def test_fires_repeatedly(self, timer_service):
        fired = threading.Semaphore(0)
        timer = timer_service.schedule(0.05, fired.release, name="fast")
        timer.start()

        for _ in range(3):
            assert fired.acquire(timeout=2)

    def test_first_fire_after_interval(self, timer_service):
        fired = threading.Event()
        timer_service.schedule(0.3, fired.set).start()

        assert not fired.wait(0.1)
        assert fired.wait(2)

    def test_stopped_timer_does_not_fire(self, timer_service):
        calls = []
        timer = timer_service.schedule(0.05, lambda: calls.append(1))
        timer.start()
        timer.stop()

        time.sleep(0.3)
        assert calls == []
        assert timer.active is False

    def test_timers_run_concurrently(self, timer_service):
        """A slow callback does not hold up another timer."""
        release = threading.Event()
        slow_entered = threading.Event()
        fast_fired = threading.Event()

        def slow():
            slow_entered.set()
            release.wait(5)

        timer_service.schedule(0.5, slow, name="slow").start()
        assert slow_entered.wait(2)

        timer_service.schedule(0.05, fast_fired.set, name="fast").start()
        assert fast_fired.wait(2)
        release.set()

    def test_callback_errors_do_not_stop_timer(self, timer_service):
        fired = threading.Semaphore(0)

        def flaky():
            fired.release()
            raise RuntimeError("boom")

        timer_service.schedule(0.05, flaky).start()

        assert fired.acquire(timeout=2)
        assert fired.acquire(timeout=2)

    def test_invalid_interval(self, timer_service):
        with pytest.raises(ValueError):
            timer_service.schedule(0, lambda: None)

    def test_shutdown_waits_for_running_callbacks(self):
        service = TimerService()
        entered = threading.Event()
        started = []
        finished = []

        def slow():
            started.append(True)
            entered.set()
            time.sleep(0.3)
            finished.append(True)

        service.schedule(0.05, slow).start()
        assert entered.wait(2)
        service.shutdown(wait=True)

        assert finished
        assert len(finished) == len(started)

    def test_shutdown_idempotent(self):
        service = TimerService()
        service.shutdown()
        service.shutdown()

    def test_start_after_shutdown(self):
        service = TimerService()
        timer = service.schedule(1, lambda: None)
        service.shutdown()

        with pytest.raises(RuntimeError):
            timer.start()
