from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class TaskSuccess:
    """The dispatched work completed; `output` becomes the new payload."""

    token: str
    output: Any


@dataclass(frozen=True, slots=True)
class TaskFailure:
    token: str
    error: str
    cause: str


@dataclass(frozen=True, slots=True)
class TaskHeartbeat:
    """Keeps a callback alive. Never changes the execution state."""

    token: str


TaskSignal = TaskSuccess | TaskFailure | TaskHeartbeat
