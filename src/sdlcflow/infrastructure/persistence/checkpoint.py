"""
Filesystem implementation of the Checkpoint Log.

Append-only: a checkpoint file is written once and never rewritten.

Directory structure:
{base_dir}/
    checkpoints/
        {prefix}/{checkpoint_id}.json
    checkpoint_index.json  # Maps run_id -> checkpoint_ids in append order
"""

import json
import threading
from pathlib import Path
from typing import Any

from sdlcflow.domain.interfaces import CheckpointLogInterface
from sdlcflow.domain.models import Checkpoint, CheckpointReason
from sdlcflow.infrastructure.persistence.filesystem import write_json_atomic


class FilesystemCheckpointLog(CheckpointLogInterface):
    """Persistent storage for run checkpoints."""

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._checkpoints_dir = self._base_dir / "checkpoints"
        self._index_path = self._base_dir / "checkpoint_index.json"
        self._lock = threading.Lock()
        self._cache: dict[str, Checkpoint] = {}
        self._index: dict[str, Any] = self._load_or_create_index()

    def _load_or_create_index(self) -> dict[str, Any]:
        """Load existing index or create new one."""
        self._checkpoints_dir.mkdir(parents=True, exist_ok=True)

        if self._index_path.exists():
            with open(self._index_path) as f:
                result: dict[str, Any] = json.load(f)
                return result

        return {
            "version": "1.0",
            "checkpoints": {},  # checkpoint_id -> metadata
            "by_run": {},  # run_id -> [checkpoint_ids]
        }

    def _checkpoint_path(self, checkpoint_id: str) -> Path:
        """Get filesystem path for checkpoint (using prefix directories)."""
        prefix = checkpoint_id[:2]
        return self._checkpoints_dir / prefix / f"{checkpoint_id}.json"

    def _checkpoint_to_dict(self, checkpoint: Checkpoint) -> dict[str, Any]:
        return {
            "checkpoint_id": checkpoint.checkpoint_id,
            "run_id": checkpoint.run_id,
            "created_at": checkpoint.created_at,
            "reason": checkpoint.reason.value,
            "source_id": checkpoint.source_id,
            "snapshot": checkpoint.snapshot,
        }

    def _dict_to_checkpoint(self, data: dict[str, Any]) -> Checkpoint:
        return Checkpoint(
            checkpoint_id=data["checkpoint_id"],
            run_id=data["run_id"],
            created_at=data["created_at"],
            reason=CheckpointReason(data["reason"]),
            source_id=data["source_id"],
            snapshot=data["snapshot"],
        )

    def append(self, checkpoint: Checkpoint) -> str:
        """
        Append a checkpoint to the log.

        Raises:
            ValueError: If the checkpoint id was already recorded
        """
        with self._lock:
            if checkpoint.checkpoint_id in self._index["checkpoints"]:
                raise ValueError(
                    f"Checkpoint already recorded: {checkpoint.checkpoint_id}"
                )
            path = self._checkpoint_path(checkpoint.checkpoint_id)
            write_json_atomic(path, self._checkpoint_to_dict(checkpoint))

            self._index["checkpoints"][checkpoint.checkpoint_id] = {
                "path": str(path.relative_to(self._base_dir)),
                "run_id": checkpoint.run_id,
                "reason": checkpoint.reason.value,
                "source_id": checkpoint.source_id,
                "created_at": checkpoint.created_at,
            }
            self._index["by_run"].setdefault(checkpoint.run_id, []).append(
                checkpoint.checkpoint_id
            )
            write_json_atomic(self._index_path, self._index)
            self._cache[checkpoint.checkpoint_id] = checkpoint
        return checkpoint.checkpoint_id

    def get(self, checkpoint_id: str) -> Checkpoint:
        """Retrieve checkpoint by ID (cache-first)."""
        with self._lock:
            if checkpoint_id in self._cache:
                return self._cache[checkpoint_id]
            if checkpoint_id not in self._index["checkpoints"]:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}")

            rel_path = self._index["checkpoints"][checkpoint_id]["path"]
            with open(self._base_dir / rel_path) as f:
                checkpoint = self._dict_to_checkpoint(json.load(f))
            self._cache[checkpoint_id] = checkpoint
            return checkpoint

    def list_for_run(self, run_id: str) -> list[Checkpoint]:
        with self._lock:
            ids = list(self._index["by_run"].get(run_id, []))
        return [self.get(cid) for cid in ids]
