"""Tests for RecurringTimer lifecycle."""

from __future__ import annotations

import threading

import pytest

from smarttime.pipeline.timers import RecurringTimer


@pytest.fixture
def ticks():
    return threading.Semaphore(0)


class TestRecurringTimer:
    def test_start_and_stop(self, ticks):
        timer = RecurringTimer("test", 0.01, ticks.release)
        timer.start()
        try:
            assert timer.is_running is True
            assert ticks.acquire(timeout=2)
            assert ticks.acquire(timeout=2)
        finally:
            timer.stop()
        assert timer.is_running is False
        assert timer._timer is None

    def test_start_is_idempotent(self, ticks):
        timer = RecurringTimer("test", 10, ticks.release)
        timer.start()
        first = timer._timer
        timer.start()
        assert timer._timer is first
        timer.stop()

    def test_stop_is_idempotent(self):
        timer = RecurringTimer("test", 10, lambda: None)
        timer.stop()
        timer.start()
        timer.stop()
        timer.stop()
        assert timer.is_running is False

    def test_callback_errors_do_not_stop_ticking(self, ticks):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            ticks.release()
            if calls["n"] == 1:
                raise RuntimeError("first tick fails")

        timer = RecurringTimer("test", 0.01, flaky)
        timer.start()
        try:
            assert ticks.acquire(timeout=2)
            assert ticks.acquire(timeout=2)
        finally:
            timer.stop()
        assert calls["n"] >= 2

    def test_timer_thread_is_daemon(self):
        timer = RecurringTimer("test", 10, lambda: None)
        timer.start()
        try:
            assert timer._timer.daemon is True
        finally:
            timer.stop()
