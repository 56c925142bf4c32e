"""Persisted execution snapshots.

Snapshots are written to a single JSON file so executions stay inspectable
after a restart. Only snapshots are persisted; suspended executions are not
resumed from disk.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from .state_machine import ExecutionSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ExecutionStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[ExecutionSnapshot]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Execution state file is not valid JSON; treating as empty",
                extra={"path": str(self.path)},
            )
            return []
        if not isinstance(raw, list):
            return []

        out: list[ExecutionSnapshot] = []
        for item in raw:
            try:
                out.append(ExecutionSnapshot.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping malformed execution record", extra={"path": str(self.path)}
                )
        return out

    def _save_unlocked(self, snapshots: list[ExecutionSnapshot]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [s.to_json() for s in snapshots]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[ExecutionSnapshot]:
        with self._lock:
            return self._load_unlocked()

    def get(self, execution_id: str) -> ExecutionSnapshot | None:
        with self._lock:
            for snapshot in self._load_unlocked():
                if snapshot.execution_id == execution_id:
                    return snapshot
            return None

    def save(self, snapshot: ExecutionSnapshot) -> None:
        with self._lock:
            snapshots = self._load_unlocked()
            for idx, existing in enumerate(snapshots):
                if existing.execution_id == snapshot.execution_id:
                    snapshots[idx] = snapshot
                    break
            else:
                snapshots.append(snapshot)
            self._save_unlocked(snapshots)
