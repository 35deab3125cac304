"""Run event store storing one JSONL file per run."""

import json
import threading
from pathlib import Path
from typing import Any

from sdlcflow.domain.interfaces import RunEventStoreInterface
from sdlcflow.domain.run_event import RunEvent, RunEventType


class FilesystemRunEventStore(RunEventStoreInterface):
    """Filesystem implementation storing events as JSONL."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self.events_dir = self.base_path / "events"
        self.events_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_run_file(self, run_id: str) -> Path:
        return self.events_dir / f"{run_id}.jsonl"

    def store_event(self, event: RunEvent) -> str:
        line = json.dumps(self._event_to_dict(event)) + "\n"
        with self._lock, open(self._get_run_file(event.run_id), "a") as f:
            f.write(line)
        return event.event_id

    def get_events(
        self,
        run_id: str,
        event_type: RunEventType | None = None,
        subject_id: str | None = None,
    ) -> list[RunEvent]:
        path = self._get_run_file(run_id)
        if not path.exists():
            return []
        events: list[RunEvent] = []
        with self._lock, open(path) as f:
            for line in f:
                if not line.strip():
                    continue
                event = self._dict_to_event(json.loads(line))
                if event_type and event.event_type != event_type:
                    continue
                if subject_id and event.subject_id != subject_id:
                    continue
                events.append(event)
        return events

    def _event_to_dict(self, event: RunEvent) -> dict[str, Any]:
        return {
            "event_id": event.event_id,
            "event_type": event.event_type.value,
            "run_id": event.run_id,
            "subject_id": event.subject_id,
            "actor": event.actor,
            "summary": event.summary,
            "created_at": event.created_at,
        }

    def _dict_to_event(self, data: dict[str, Any]) -> RunEvent:
        return RunEvent(
            event_id=data["event_id"],
            event_type=RunEventType(data["event_type"]),
            run_id=data["run_id"],
            subject_id=data["subject_id"],
            actor=data.get("actor", "system"),
            summary=data.get("summary", ""),
            created_at=data.get("created_at", ""),
        )
