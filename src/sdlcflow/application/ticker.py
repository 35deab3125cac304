"""Safety-net ticker: steps every run at a fixed interval."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sdlcflow.application.supervisor import WorkflowSupervisor

logger = logging.getLogger(__name__)


class SafetyNetTicker:
    """
    Background thread calling ``supervisor.tick()`` every ``interval``
    seconds, so time-based transitions (retry backoff, sprint time boxes,
    escalation budgets) happen without an external trigger.
    """

    def __init__(self, supervisor: WorkflowSupervisor, interval_seconds: float):
        self._supervisor = supervisor
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="sdlcflow-ticker", daemon=True
        )
        self._thread.start()
        logger.debug("Ticker started (every %.1fs)", self._interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._supervisor.tick()
            except Exception:
                logger.exception("Scheduled tick failed")

    def __enter__(self) -> SafetyNetTicker:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
