"""A single execution instance of a workflow definition.

An execution is always in exactly one state and has at most one outstanding
callback token. It never blocks: suspension means registering the token (or
a timer) and returning to the caller. Signals and timer firings resume it.

Executions share nothing mutable with each other. The input payload and
every signalled output are deep-copied on entry.

When given the owner's lock, an execution expects it to be held on every
call and releases it only around `dispatcher.dispatch()`. Anything may
happen to the execution meanwhile (a signal, a timeout, a cancel), so the
result of a dispatch is applied only if the execution is still where it was.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from datetime import UTC, datetime
from typing import Any

from .definition import WorkflowDefinition
from .dispatch import TaskDispatcher
from .events import TaskFailure, TaskHeartbeat, TaskSignal, TaskSuccess
from .paths import MISSING, read_path
from .registry import TokenRegistry
from .state_machine import (
    TERMINAL_STATUSES,
    ExecutionSnapshot,
    ExecutionStatus,
    FailureKind,
    HistoryEvent,
    transition,
)
from .steps import Choice, Fail, Invoke, Succeed, Wait
from .timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "States.Timeout"
HEARTBEAT_TIMEOUT_ERROR = "States.HeartbeatTimeout"
RUNTIME_ERROR = "States.Runtime"
CANCELLATION_ERROR = "CancellationRequested"


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@contextmanager
def _released(lock: threading.Lock) -> Iterator[None]:
    lock.release()
    try:
        yield
    finally:
        lock.acquire()


class Execution:
    def __init__(
        self,
        *,
        definition: WorkflowDefinition,
        execution_id: str,
        payload: Any,
        dispatcher: TaskDispatcher,
        registry: TokenRegistry,
        timers: TimerService,
        lock: threading.Lock | None = None,
    ) -> None:
        self.definition = definition
        self.execution_id = execution_id
        self.payload: Any = copy.deepcopy(payload)
        self.status = ExecutionStatus.SUBMITTED
        self.step: str | None = None
        self.token: str | None = None

        self.error: str | None = None
        self.cause: str | None = None
        self.failure_kind: FailureKind | None = None

        self.started_at = _utc_iso_now()
        self.stopped_at: str | None = None
        self.history: list[HistoryEvent] = []
        self.revision = 0

        self._dispatcher = dispatcher
        self._registry = registry
        self._timers = timers
        self._lock = lock
        self._deadline: float | None = None
        self._timeout_timer: TimerHandle | None = None
        self._step_timer: TimerHandle | None = None
        self._started = False

    def _unlocked(self) -> AbstractContextManager[None]:
        return nullcontext() if self._lock is None else _released(self._lock)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> ExecutionSnapshot:
        return ExecutionSnapshot(
            execution_id=self.execution_id,
            status=self.status,
            step=self.step,
            payload=copy.deepcopy(self.payload),
            token=self.token,
            error=self.error,
            cause=self.cause,
            failure_kind=self.failure_kind,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            history=list(self.history),
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            raise RuntimeError(f"Execution {self.execution_id} already started")
        self._started = True
        self._record("ExecutionStarted", details={"input": copy.deepcopy(self.payload)})

        timeout = self.definition.timeout_seconds
        if timeout is not None:
            self._deadline = self._timers.now() + timeout
            self._timeout_timer = self._timers.schedule(
                timeout, self.on_timeout, label=f"timeout:{self.execution_id}"
            )
        self._run_from(self.definition.start_at)

    def deliver(self, signal: TaskSignal) -> bool:
        """Apply a correlated signal. Returns False if it was ignored."""

        if not isinstance(signal, TaskSuccess | TaskFailure | TaskHeartbeat):
            raise TypeError(f"Unsupported signal: {type(signal).__name__}")
        if not self.is_terminal and self._deadline_passed():
            self.on_timeout()

        if (
            self.is_terminal
            or self.status is not ExecutionStatus.WAITING_FOR_CALLBACK
            or signal.token != self.token
        ):
            logger.info(
                "Ignoring signal for a token that is no longer outstanding",
                extra={
                    "execution_id": self.execution_id,
                    "signal": type(signal).__name__,
                    "status": self.status.value,
                },
            )
            return False

        step = self.definition.step(self.step or "")
        if not isinstance(step, Invoke):
            raise TypeError(f"Step {step.name!r} does not wait for a callback")

        if isinstance(signal, TaskHeartbeat):
            self._record("TaskHeartbeat", step=step.name)
            if step.heartbeat_seconds is not None:
                self._arm_heartbeat(step)
            return True

        self._registry.resolve(signal.token)
        self.token = None
        self._timers.cancel(self._step_timer)
        self._step_timer = None

        if isinstance(signal, TaskFailure):
            self._record(
                "TaskFailed", step=step.name, details={"error": signal.error, "cause": signal.cause}
            )
            self._fail(FailureKind.CALLBACK_FAILURE, error=signal.error, cause=signal.cause)
            return True

        self._record("TaskSucceeded", step=step.name)
        self._complete_invoke(step, copy.deepcopy(signal.output))
        return True

    def cancel(self, cause: str = "Execution cancelled") -> bool:
        if self.is_terminal:
            return False
        self._record("ExecutionAborted", step=self.step, details={"cause": cause})
        self._fail(FailureKind.CANCELLATION_REQUESTED, error=CANCELLATION_ERROR, cause=cause)
        return True

    def on_timeout(self) -> None:
        if self.is_terminal:
            return
        if self.status is ExecutionStatus.WAITING_FOR_CALLBACK:
            kind = FailureKind.CALLBACK_TIMEOUT
            cause = f"No callback received for step {self.step!r} before the execution timeout"
        else:
            kind = FailureKind.EXECUTION_TIMEOUT
            cause = f"Execution timed out in step {self.step!r}"
        self._record("ExecutionTimedOut", step=self.step)
        self._fail(kind, error=TIMEOUT_ERROR, cause=cause)

    # ------------------------------------------------------------------
    # Step interpretation
    # ------------------------------------------------------------------

    def _run_from(self, name: str | None) -> None:
        current = name
        while current is not None and not self.is_terminal:
            current = self._enter_step(current)

    def _enter_step(self, name: str) -> str | None:
        """Enter `name`; return the next step to run now, or None if suspended/finished."""

        step = self.definition.step(name)
        self.step = name
        self._record("StepEntered", step=name)

        if isinstance(step, Invoke):
            if step.wait_for_token:
                return self._dispatch_with_token(step)
            return self._invoke_sync(step)

        if isinstance(step, Wait):
            self._enter(ExecutionStatus.WAITING)
            self._step_timer = self._timers.schedule(
                step.seconds,
                lambda: self._on_wait_elapsed(step),
                label=f"wait:{self.execution_id}:{name}",
            )
            return None

        if isinstance(step, Choice):
            self._enter(ExecutionStatus.EVALUATING)
            target = step.default
            for rule in step.rules:
                value = read_path(self.payload, rule.variable)
                if isinstance(value, str) and value == rule.string_equals:
                    target = rule.next
                    break
            self._record("ChoiceEvaluated", step=name, details={"next": target})
            return target

        if isinstance(step, Fail):
            self._fail(FailureKind.STEP_FAILED, error=step.error, cause=step.cause)
            return None

        if not isinstance(step, Succeed):
            raise TypeError(f"Unsupported step type: {type(step).__name__}")
        self._succeed()
        return None

    def _dispatch_with_token(self, step: Invoke) -> None:
        self._enter(ExecutionStatus.WAITING_FOR_CALLBACK)
        token = uuid.uuid4().hex
        self._registry.register(token, self.execution_id)
        self.token = token
        self._record("TaskScheduled", step=step.name, details={"resource": step.resource})
        request = {"token": token, "input": copy.deepcopy(self.payload)}

        error: Exception | None = None
        with self._unlocked():
            try:
                self._dispatcher.dispatch(step.resource, request)
            except Exception as e:
                error = e

        if self.token != token or self.status is not ExecutionStatus.WAITING_FOR_CALLBACK:
            # The callback, a timeout or a cancel got here while the task was dispatched.
            if error is not None:
                logger.warning(
                    "Task dispatch failed after its token was settled",
                    extra={"execution_id": self.execution_id, "step": step.name},
                )
            return None

        if error is not None:
            logger.error(
                "Task dispatch failed",
                exc_info=error,
                extra={"execution_id": self.execution_id, "step": step.name},
            )
            self._fail(FailureKind.TASK_FAILED, error=type(error).__name__, cause=str(error))
            return None

        if step.heartbeat_seconds is not None:
            self._arm_heartbeat(step)
        logger.info(
            "Waiting for task callback",
            extra={"execution_id": self.execution_id, "step": step.name},
        )
        return None

    def _invoke_sync(self, step: Invoke) -> str | None:
        self._enter(ExecutionStatus.RUNNING_TASK)
        self._record("TaskScheduled", step=step.name, details={"resource": step.resource})
        request = copy.deepcopy(self.payload)

        result: Any = None
        error: Exception | None = None
        with self._unlocked():
            try:
                result = self._dispatcher.dispatch(step.resource, request)
            except Exception as e:
                error = e

        if self.is_terminal:
            logger.info(
                "Discarding task result of a finished execution",
                extra={"execution_id": self.execution_id, "step": step.name},
            )
            return None
        if self._deadline_passed():
            self.on_timeout()
            return None

        if error is not None:
            logger.error(
                "Synchronous task failed",
                exc_info=error,
                extra={"execution_id": self.execution_id, "step": step.name},
            )
            self._record("TaskFailed", step=step.name, details={"error": type(error).__name__})
            self._fail(FailureKind.TASK_FAILED, error=type(error).__name__, cause=str(error))
            return None
        self._record("TaskSucceeded", step=step.name)
        return self._apply_output(step, copy.deepcopy(result))

    def _complete_invoke(self, step: Invoke, output: Any) -> None:
        self._run_from(self._apply_output(step, output))

    def _apply_output(self, step: Invoke, output: Any) -> str | None:
        selected = read_path(output, step.output_path)
        if selected is MISSING:
            self._fail(
                FailureKind.TASK_FAILED,
                error=RUNTIME_ERROR,
                cause=f"Output path {step.output_path!r} did not match the task result",
            )
            return None
        self.payload = selected
        if step.next is None:
            self._succeed()
        return step.next

    def _on_wait_elapsed(self, step: Wait) -> None:
        if self.is_terminal or self.status is not ExecutionStatus.WAITING or self.step != step.name:
            return
        self._step_timer = None
        if self._deadline_passed():
            self.on_timeout()
            return
        self._record("WaitEnded", step=step.name)
        self._run_from(step.next)

    def _arm_heartbeat(self, step: Invoke) -> None:
        seconds = step.heartbeat_seconds
        if seconds is None:
            return
        self._timers.cancel(self._step_timer)
        token = self.token
        self._step_timer = self._timers.schedule(
            seconds,
            lambda: self._on_heartbeat_timeout(token),
            label=f"heartbeat:{self.execution_id}",
        )

    def _on_heartbeat_timeout(self, token: str | None) -> None:
        if self.is_terminal or token is None or token != self.token:
            return
        self._record("TaskTimedOut", step=self.step)
        self._fail(
            FailureKind.HEARTBEAT_TIMEOUT,
            error=HEARTBEAT_TIMEOUT_ERROR,
            cause=f"No heartbeat received for step {self.step!r}",
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _succeed(self) -> None:
        self._enter(ExecutionStatus.SUCCEEDED)
        self._release()
        self._record("ExecutionSucceeded", step=self.step)
        logger.info(
            "Execution succeeded", extra={"execution_id": self.execution_id, "step": self.step}
        )

    def _fail(self, kind: FailureKind, *, error: str, cause: str) -> None:
        self._enter(ExecutionStatus.FAILED)
        self.error = error
        self.cause = cause
        self.failure_kind = kind
        self._release()
        self._record(
            "ExecutionFailed",
            step=self.step,
            details={"error": error, "cause": cause, "kind": kind.value},
        )
        logger.warning(
            "Execution failed",
            extra={
                "execution_id": self.execution_id,
                "step": self.step,
                "error": error,
                "failure_kind": kind.value,
            },
        )

    def _release(self) -> None:
        if self.token is not None:
            self._registry.release(self.token)
            self.token = None
        self._timers.cancel(self._step_timer)
        self._timers.cancel(self._timeout_timer)
        self._step_timer = None
        self._timeout_timer = None
        self.stopped_at = _utc_iso_now()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, status: ExecutionStatus) -> None:
        self.status = transition(current=self.status, to=status)

    def _deadline_passed(self) -> bool:
        return self._deadline is not None and self._timers.now() >= self._deadline

    def _record(
        self, event_type: str, *, step: str | None = None, details: dict[str, Any] | None = None
    ) -> None:
        self.history.append(
            HistoryEvent(
                type=event_type, timestamp=_utc_iso_now(), step=step, details=details or {}
            )
        )
        self.revision += 1
