"""Workflow runtime.

Signals are explicit messages: `send_task_*` only puts them on a completion
channel (a `queue.Queue`). Draining the channel routes each signal through
the token registry to the one execution suspended on that token.

No thread is held per execution. `start_background()` runs a single loop
that sleeps on the channel until either a signal arrives or the next timer
is due. The engine lock guards engine and execution state only; it is
released while a task is being dispatched, so a slow task never stalls other
executions.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from .definition import WorkflowDefinition
from .dispatch import TaskDispatcher
from .events import TaskFailure, TaskHeartbeat, TaskSignal, TaskSuccess
from .execution import RUNTIME_ERROR, Execution
from .registry import TokenRegistry
from .state_machine import ExecutionSnapshot, ExecutionStatus, FailureKind, HistoryEvent
from .store import ExecutionStore
from .timers import Clock, MonotonicClock, TimerService

logger = logging.getLogger(__name__)

RESTART_CAUSE = "Engine restarted before the execution finished"

_WAKE = object()
_STOP = object()


class ExecutionNotFound(KeyError):
    def __init__(self, execution_id: str) -> None:
        super().__init__(execution_id)
        self.execution_id = execution_id

    def __str__(self) -> str:
        return f"Execution not found: {self.execution_id}"


class ExecutionAlreadyExists(ValueError):
    pass


class WorkflowEngine:
    """Run executions of one definition.

    With a store, finished executions are evicted from memory once their
    final snapshot is saved, and executions a previous engine left
    unfinished are settled as failed on construction.
    """

    def __init__(
        self,
        *,
        definition: WorkflowDefinition,
        dispatcher: TaskDispatcher,
        store: ExecutionStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.definition = definition
        self._dispatcher = dispatcher
        self._store = store
        self._timers = TimerService(clock or MonotonicClock())
        self._registry = TokenRegistry()
        self._channel: queue.Queue[object] = queue.Queue()
        self._executions: dict[str, Execution] = {}
        self._persisted_revisions: dict[str, int] = {}
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

        if self._store is not None:
            self._settle_orphans(self._store)

    def __len__(self) -> int:
        """Number of executions held in memory."""

        with self._lock:
            return len(self._executions)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def start_execution(
        self, payload: Any, *, execution_id: str | None = None
    ) -> ExecutionSnapshot:
        if execution_id is not None and self._store is not None:
            if self._store.get(execution_id) is not None:
                raise ExecutionAlreadyExists(f"Execution already exists: {execution_id}")
        execution_id = execution_id or uuid.uuid4().hex

        with self._lock:
            if execution_id in self._executions:
                raise ExecutionAlreadyExists(f"Execution already exists: {execution_id}")
            execution = Execution(
                definition=self.definition,
                execution_id=execution_id,
                payload=payload,
                dispatcher=self._dispatcher,
                registry=self._registry,
                timers=self._timers,
                lock=self._lock,
            )
            self._executions[execution_id] = execution
            logger.info("Execution started", extra={"execution_id": execution_id})
            execution.start()
            snapshot = execution.snapshot()
            self._persist_dirty()

        # New timers may be due earlier than whatever the loop is sleeping on.
        self._wake_loop()
        return snapshot

    def stop_execution(
        self, execution_id: str, *, cause: str = "Execution cancelled"
    ) -> ExecutionSnapshot:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is not None:
                if execution.cancel(cause):
                    logger.info("Execution cancelled", extra={"execution_id": execution_id})
                snapshot = execution.snapshot()
                self._persist_dirty()
                return snapshot

        # Only finished executions leave memory, so cancelling them is a no-op.
        if self._store is not None:
            stored = self._store.get(execution_id)
            if stored is not None:
                return stored
        raise ExecutionNotFound(execution_id)

    def describe_execution(self, execution_id: str) -> ExecutionSnapshot:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is not None:
                return execution.snapshot()
        if self._store is not None:
            stored = self._store.get(execution_id)
            if stored is not None:
                return stored
        raise ExecutionNotFound(execution_id)

    def list_executions(self) -> list[ExecutionSnapshot]:
        with self._lock:
            live = {eid: e.snapshot() for eid, e in self._executions.items()}
        if self._store is None:
            return list(live.values())
        merged = {s.execution_id: s for s in self._store.list()}
        merged.update(live)
        return list(merged.values())

    # ------------------------------------------------------------------
    # Completion channel
    # ------------------------------------------------------------------

    def send_task_success(self, token: str, output: Any) -> None:
        self._channel.put(TaskSuccess(token=token, output=output))

    def send_task_failure(self, token: str, *, error: str, cause: str) -> None:
        self._channel.put(TaskFailure(token=token, error=error, cause=cause))

    def send_task_heartbeat(self, token: str) -> None:
        self._channel.put(TaskHeartbeat(token=token))

    def process_pending(self) -> int:
        """Fire due timers, then drain the channel. Returns signals applied."""

        applied = 0
        self.fire_timers()
        while True:
            try:
                item = self._channel.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                # Leave the stop request for the background loop.
                self._channel.put(_STOP)
                break
            if self._handle(item):
                applied += 1

        # Whatever was drained here may have scheduled timers the loop has not seen.
        self._wake_loop()
        return applied

    def fire_timers(self) -> int:
        with self._lock:
            fired = self._timers.fire_due()
            if fired:
                self._persist_dirty()
        if fired:
            self._wake_loop()
        return fired

    def _handle(self, item: object) -> bool:
        if item is _WAKE:
            return False
        if not isinstance(item, TaskSuccess | TaskFailure | TaskHeartbeat):
            raise TypeError(f"Unexpected item on the completion channel: {item!r}")
        return self._deliver(item)

    def _deliver(self, signal: TaskSignal) -> bool:
        with self._lock:
            # A deadline that has already passed must win over this signal.
            if self._timers.fire_due():
                self._persist_dirty()

            execution_id = self._registry.lookup(signal.token)
            execution = None if execution_id is None else self._executions.get(execution_id)
            if execution is None:
                if self._registry.is_resolved(signal.token):
                    logger.info(
                        "Duplicate signal ignored",
                        extra={"signal": type(signal).__name__},
                    )
                else:
                    logger.warning(
                        "Signal for unknown task token ignored",
                        extra={"signal": type(signal).__name__},
                    )
                return False

            applied = execution.deliver(signal)
            self._persist_dirty()
            return applied

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start_background(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run_loop, name="workflow-engine", daemon=True
        )
        self._thread.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._channel.put(_STOP)
        thread.join(timeout=timeout)
        self._thread = None

    def _wake_loop(self) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            self._channel.put(_WAKE)

    def _run_loop(self) -> None:
        logger.info("Workflow engine loop started")
        while True:
            with self._lock:
                next_due = self._timers.next_due()
                now = self._timers.now()
            wait = None if next_due is None else max(next_due - now, 0.0)

            try:
                item = self._channel.get(timeout=wait)
            except queue.Empty:
                item = None

            if item is _STOP:
                break
            try:
                self.fire_timers()
                if item is not None:
                    self._handle(item)
            except Exception:
                logger.exception("Workflow engine loop iteration failed")
        logger.info("Workflow engine loop stopped")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_dirty(self) -> None:
        for execution_id, execution in list(self._executions.items()):
            if self._persisted_revisions.get(execution_id) != execution.revision:
                self._persisted_revisions[execution_id] = execution.revision
                if self._store is not None:
                    self._store.save(execution.snapshot())
            if self._store is not None and execution.is_terminal:
                del self._executions[execution_id]
                del self._persisted_revisions[execution_id]

    def _settle_orphans(self, store: ExecutionStore) -> None:
        for snapshot in store.list():
            if snapshot.is_terminal:
                continue
            now = datetime.now(tz=UTC).isoformat()
            failed = HistoryEvent(
                type="ExecutionFailed",
                timestamp=now,
                step=snapshot.step,
                details={
                    "error": RUNTIME_ERROR,
                    "cause": RESTART_CAUSE,
                    "kind": FailureKind.ENGINE_RESTARTED.value,
                },
            )
            store.save(
                snapshot.model_copy(
                    update={
                        "status": ExecutionStatus.FAILED,
                        "token": None,
                        "error": RUNTIME_ERROR,
                        "cause": RESTART_CAUSE,
                        "failure_kind": FailureKind.ENGINE_RESTARTED,
                        "stopped_at": now,
                        "history": [*snapshot.history, failed],
                    }
                )
            )
            logger.warning(
                "Settled execution left unfinished by a previous engine",
                extra={"execution_id": snapshot.execution_id, "step": snapshot.step},
            )
