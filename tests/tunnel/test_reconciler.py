"""Tests for the reconciliation loop."""

import threading
import time

import pytest

from cloudflared_manager.tunnel.reconciler import Reconciler


class TestReconciler:
    """Periodic tick scheduling."""

    @pytest.mark.parametrize("interval", [0, -5])
    def test_rejects_non_positive_interval(self, interval):
        with pytest.raises(ValueError, match="greater than 0"):
            Reconciler(lambda: None, interval)

    def test_ticks_periodically(self):
        ticks = []
        done = threading.Event()

        def tick():
            ticks.append(time.monotonic())
            if len(ticks) >= 3:
                done.set()

        reconciler = Reconciler(tick, 0.02)
        reconciler.start()
        try:
            assert done.wait(5)
        finally:
            reconciler.stop()
        assert not reconciler.running

    def test_tick_exception_does_not_kill_loop(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("tick failed")

        reconciler = Reconciler(tick, 0.02)
        reconciler.start()
        try:
            assert done.wait(5)
        finally:
            reconciler.stop()

    def test_interval_change_takes_effect(self):
        """A long interval shortened while running still ticks promptly."""
        ticked = threading.Event()
        reconciler = Reconciler(ticked.set, 3600)
        reconciler.start()
        try:
            reconciler.interval = 0.02
            assert reconciler.interval == 0.02
            assert ticked.wait(5)
        finally:
            reconciler.stop()

    def test_invalid_interval_assignment(self):
        reconciler = Reconciler(lambda: None, 1)
        with pytest.raises(ValueError):
            reconciler.interval = 0
        assert reconciler.interval == 1

    def test_stop_is_prompt_and_idempotent(self):
        reconciler = Reconciler(lambda: None, 3600)
        reconciler.start()
        reconciler.start()
        assert reconciler.running

        start = time.monotonic()
        reconciler.stop()
        reconciler.stop()

        assert time.monotonic() - start < 2
        assert not reconciler.running

    def test_run_once(self):
        calls = []
        Reconciler(lambda: calls.append(1), 10).run_once()
        assert calls == [1]
