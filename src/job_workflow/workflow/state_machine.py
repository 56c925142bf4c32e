from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    SUBMITTED = "submitted"
    WAITING_FOR_CALLBACK = "waiting_for_callback"
    EVALUATING = "evaluating"
    WAITING = "waiting"
    RUNNING_TASK = "running_task"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_FROM_ACTIVE: frozenset[ExecutionStatus] = frozenset(
    {
        ExecutionStatus.WAITING_FOR_CALLBACK,
        ExecutionStatus.EVALUATING,
        ExecutionStatus.WAITING,
        ExecutionStatus.RUNNING_TASK,
        ExecutionStatus.SUCCEEDED,
        ExecutionStatus.FAILED,
    }
)

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.SUBMITTED: _FROM_ACTIVE,
    ExecutionStatus.WAITING_FOR_CALLBACK: _FROM_ACTIVE,
    ExecutionStatus.EVALUATING: _FROM_ACTIVE,
    ExecutionStatus.WAITING: _FROM_ACTIVE,
    ExecutionStatus.RUNNING_TASK: _FROM_ACTIVE,
    # Terminal states are absorbing.
    ExecutionStatus.SUCCEEDED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED}
)


class FailureKind(str, Enum):
    CALLBACK_FAILURE = "callback_failure"
    CALLBACK_TIMEOUT = "callback_timeout"
    EXECUTION_TIMEOUT = "execution_timeout"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    CANCELLATION_REQUESTED = "cancellation_requested"
    STEP_FAILED = "step_failed"
    TASK_FAILED = "task_failed"
    ENGINE_RESTARTED = "engine_restarted"


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: ExecutionStatus, to: ExecutionStatus) -> ExecutionStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


class HistoryEvent(BaseModel):
    """One entry of an execution's ordered event history."""

    model_config = ConfigDict(frozen=True)

    type: str
    timestamp: str
    step: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ExecutionSnapshot(BaseModel):
    """Point-in-time, serialisable view of an execution instance."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    status: ExecutionStatus
    step: str | None = None
    payload: Any = None
    token: str | None = None

    error: str | None = None
    cause: str | None = None
    failure_kind: FailureKind | None = None

    started_at: str
    stopped_at: str | None = None
    history: list[HistoryEvent] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json")

    @staticmethod
    def from_json(obj: dict[str, object]) -> ExecutionSnapshot:
        return ExecutionSnapshot.model_validate(obj)
