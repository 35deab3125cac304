"""
Capability Router: matches tasks to registered workers.

The registry is shared by every run hosted by a supervisor, so all
mutations (registration, assignment counters, availability) happen under a
single lock.
"""

import logging
import threading
from dataclasses import dataclass

from sdlcflow.domain.exceptions import CapacityUnavailable, NoCapableWorker
from sdlcflow.domain.interfaces import WorkerInterface
from sdlcflow.domain.models import TaskDefinition, WorkerRegistration

logger = logging.getLogger(__name__)


@dataclass
class _WorkerSlot:
    registration: WorkerRegistration
    handler: WorkerInterface | None = None  # None: external worker
    assigned: int = 0
    available: bool = True

    @property
    def has_room(self) -> bool:
        return self.available and self.assigned < self.registration.concurrency


class CapabilityRouter:
    """
    Registry of ``capability tag -> worker ids`` with load-aware assignment.

    Selection order: capability match, availability and free concurrency,
    highest priority, then round-robin over worker ids per capability.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workers: dict[str, _WorkerSlot] = {}
        self._by_capability: dict[str, set[str]] = {}
        self._last_assigned: dict[str, str] = {}

    def register(
        self,
        registration: WorkerRegistration,
        handler: WorkerInterface | None = None,
    ) -> None:
        """Register a worker, or refresh an existing registration.

        Re-registering an id keeps its current assignment count, so several
        runs may declare the same worker.

        Args:
            registration: Worker id, capabilities, concurrency and priority
            handler: In-process executor; None for external workers that
                report results through the control API
        """
        with self._lock:
            slot = self._workers.get(registration.worker_id)
            if slot is None:
                slot = _WorkerSlot(registration=registration, handler=handler)
                self._workers[registration.worker_id] = slot
            else:
                self._unindex(slot.registration)
                slot.registration = registration
                if handler is not None:
                    slot.handler = handler
            for capability in registration.capabilities:
                self._by_capability.setdefault(capability, set()).add(
                    registration.worker_id
                )
        logger.info(
            "Registered worker %s for %s (concurrency=%d)",
            registration.worker_id,
            ", ".join(registration.capabilities),
            registration.concurrency,
        )

    def unregister(self, worker_id: str) -> None:
        with self._lock:
            slot = self._workers.pop(worker_id, None)
            if slot is not None:
                self._unindex(slot.registration)

    def _unindex(self, registration: WorkerRegistration) -> None:
        for capability in registration.capabilities:
            ids = self._by_capability.get(capability)
            if ids is not None:
                ids.discard(registration.worker_id)
                if not ids:
                    del self._by_capability[capability]

    def set_available(self, worker_id: str, available: bool) -> None:
        with self._lock:
            self._slot(worker_id).available = available

    def _slot(self, worker_id: str) -> _WorkerSlot:
        if worker_id not in self._workers:
            raise KeyError(f"Worker not registered: {worker_id}")
        return self._workers[worker_id]

    def is_registered(self, worker_id: str) -> bool:
        with self._lock:
            return worker_id in self._workers

    def has_capability(self, capability: str) -> bool:
        with self._lock:
            return bool(self._by_capability.get(capability))

    def handler(self, worker_id: str) -> WorkerInterface | None:
        with self._lock:
            return self._slot(worker_id).handler

    def load(self, worker_id: str) -> int:
        with self._lock:
            return self._slot(worker_id).assigned

    def registrations(self) -> list[WorkerRegistration]:
        with self._lock:
            return [self._workers[w].registration for w in sorted(self._workers)]

    def assign(self, task: TaskDefinition) -> str:
        """Pick a worker for a task and count the assignment.

        Returns:
            The chosen worker id.

        Raises:
            NoCapableWorker: No registered worker carries the capability.
            CapacityUnavailable: Capable workers exist but none has room.
        """
        capability = task.capability
        with self._lock:
            capable = sorted(self._by_capability.get(capability, ()))
            if not capable:
                raise NoCapableWorker(capability)

            free = [w for w in capable if self._workers[w].has_room]
            if not free:
                raise CapacityUnavailable(capability)

            top = max(self._workers[w].registration.priority for w in free)
            candidates = [w for w in free if self._workers[w].registration.priority == top]

            last = self._last_assigned.get(capability)
            chosen = next((w for w in candidates if last is None or w > last), candidates[0])

            self._workers[chosen].assigned += 1
            self._last_assigned[capability] = chosen
        logger.debug("Assigned %s to worker %s", task.task_id, chosen)
        return chosen

    def release(self, worker_id: str) -> None:
        """Return one assignment slot of a worker."""
        with self._lock:
            slot = self._workers.get(worker_id)
            if slot is not None and slot.assigned > 0:
                slot.assigned -= 1
