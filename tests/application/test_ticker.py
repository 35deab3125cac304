"""Tests for the safety-net ticker."""

import threading

from sdlcflow.application.ticker import SafetyNetTicker


class CountingSupervisor:
    def __init__(self, fail_first: bool = False) -> None:
        self.ticks = 0
        self.fail_first = fail_first
        self.ticked = threading.Event()

    def tick(self) -> None:
        self.ticks += 1
        if self.fail_first and self.ticks == 1:
            raise RuntimeError("store unavailable")
        self.ticked.set()


class TestSafetyNetTicker:
    def test_ticks_until_stopped(self):
        supervisor = CountingSupervisor()

        with SafetyNetTicker(supervisor, 0.01) as ticker:  # type: ignore[arg-type]
            assert supervisor.ticked.wait(2)
            assert ticker.running

        assert not ticker.running
        count = supervisor.ticks
        assert count >= 1
        assert supervisor.ticks == count

    def test_failed_tick_does_not_stop_the_loop(self, caplog):
        """A failing tick is logged and the next interval ticks again."""
        supervisor = CountingSupervisor(fail_first=True)
        ticker = SafetyNetTicker(supervisor, 0.01)  # type: ignore[arg-type]

        ticker.start()
        try:
            assert supervisor.ticked.wait(2)
        finally:
            ticker.stop(timeout=2)

        assert supervisor.ticks >= 2
        assert "Scheduled tick failed" in caplog.text

    def test_start_is_idempotent(self):
        supervisor = CountingSupervisor()
        ticker = SafetyNetTicker(supervisor, 60)  # type: ignore[arg-type]

        ticker.start()
        ticker.start()
        ticker.stop(timeout=2)

        assert not ticker.running
        assert supervisor.ticks == 0
