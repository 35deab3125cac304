"""Run event emission service."""

import uuid

from sdlcflow.application.clock import Clock, system_clock, to_iso
from sdlcflow.domain.interfaces import RunEventStoreInterface
from sdlcflow.domain.run_event import RunEvent, RunEventType


class RunEventEmitter:
    """Emits run events to a store.

    Provides convenience methods for the audited transitions of a run,
    handling ID generation and timestamps.
    """

    def __init__(
        self,
        event_store: RunEventStoreInterface,
        run_id: str,
        clock: Clock = system_clock,
    ) -> None:
        self._store = event_store
        self._run_id = run_id
        self._clock = clock

    def emit(
        self,
        event_type: RunEventType,
        subject_id: str,
        summary: str = "",
        actor: str = "system",
    ) -> str:
        """Emit an arbitrary event and return its id."""
        return self._store.store_event(
            RunEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                run_id=self._run_id,
                subject_id=subject_id,
                actor=actor,
                summary=summary[:500],
                created_at=to_iso(self._clock()),
            )
        )

    def task_started(self, task_id: str, worker_id: str, attempt: int) -> None:
        """Emit TASK_STARTED when a task is handed to a worker."""
        self.emit(
            RunEventType.TASK_STARTED,
            task_id,
            f"worker={worker_id} attempt={attempt}",
        )

    def task_done(self, task_id: str, outputs: dict[str, int]) -> None:
        """Emit TASK_DONE with the pinned output versions."""
        pinned = ", ".join(f"{k}@v{v}" for k, v in sorted(outputs.items()))
        self.emit(RunEventType.TASK_DONE, task_id, pinned)

    def task_retry(self, task_id: str, attempt: int, cause: str, delay: float) -> None:
        self.emit(
            RunEventType.TASK_RETRY,
            task_id,
            f"attempt {attempt} failed ({cause}); retry in {delay:.2f}s",
        )

    def task_failed(self, task_id: str, cause: str) -> None:
        self.emit(RunEventType.TASK_FAILED, task_id, cause)

    def task_blocked(self, task_id: str, cause: str) -> None:
        self.emit(RunEventType.TASK_BLOCKED, task_id, cause)

    def operator_action(
        self, event_type: RunEventType, subject_id: str, actor: str, summary: str
    ) -> None:
        """Emit an actor-attributed operator action (override, cancel, decision)."""
        self.emit(event_type, subject_id, summary, actor=actor)
