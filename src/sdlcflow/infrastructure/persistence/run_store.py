"""
Filesystem implementation of the Run Store.

One JSON record per run, replaced atomically on every save:
{base_dir}/runs/{run_id}.json
"""

import json
from pathlib import Path
from typing import Any

from sdlcflow.domain.interfaces import RunStoreInterface
from sdlcflow.infrastructure.persistence.filesystem import write_json_atomic


class FilesystemRunStore(RunStoreInterface):
    def __init__(self, base_dir: str | Path):
        self._runs_dir = Path(base_dir) / "runs"
        self._runs_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, run_id: str) -> Path:
        return self._runs_dir / f"{run_id}.json"

    def save(self, run_id: str, record: dict[str, Any]) -> None:
        write_json_atomic(self._path(run_id), record)

    def load(self, run_id: str) -> dict[str, Any]:
        path = self._path(run_id)
        if not path.exists():
            raise KeyError(f"Run not found: {run_id}")
        with open(path) as f:
            result: dict[str, Any] = json.load(f)
            return result

    def list_runs(self) -> list[str]:
        return sorted(p.stem for p in self._runs_dir.glob("*.json"))
