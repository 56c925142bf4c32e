"""End-to-end behaviour of the job-completion workflow under a manual clock."""

from __future__ import annotations

from unittest.mock import Mock

from job_workflow.workflow.engine import WorkflowEngine
from job_workflow.workflow.job_completion import (
    GET_FINAL_JOB_STATUS,
    JOB_COMPLETE,
    SUBMIT_JOB,
    WAIT_X_SECONDS,
    JobWorkflowConfig,
    build_job_completion_workflow,
)
from job_workflow.workflow.state_machine import ExecutionStatus, FailureKind
from job_workflow.workflow.store import ExecutionStore
from job_workflow.workflow.timers import ManualClock


def _history_types(engine: WorkflowEngine, execution_id: str) -> list[str]:
    return [e.type for e in engine.describe_execution(execution_id).history]


def test_start_dispatches_token_and_suspends(engine: WorkflowEngine, dispatcher: Mock) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")

    assert snap.status == ExecutionStatus.WAITING_FOR_CALLBACK
    assert snap.step == SUBMIT_JOB
    assert snap.token

    dispatcher.dispatch.assert_called_once_with(
        "submitLambda", {"token": snap.token, "input": {"guid": "g1"}}
    )


def test_success_signal_with_succeeded_status_reaches_succeeded(
    engine: WorkflowEngine, dispatcher: Mock
) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "SUCCEEDED", "guid": "g1"})
    assert engine.process_pending() == 1

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.SUCCEEDED
    assert done.step == GET_FINAL_JOB_STATUS
    assert done.payload == {"status": "SUCCEEDED", "final": True, "guid": "g1"}
    assert done.token is None
    assert done.error is None

    final_call = dispatcher.dispatch.call_args_list[-1]
    assert final_call.args == ("finalStatusLambda", {"status": "SUCCEEDED", "guid": "g1"})


def test_success_signal_with_failed_status_reaches_failed(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "FAILED"})
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.cause == "AWS Batch Job Failed"
    assert done.error == "DescribeJob returned FAILED"
    assert done.failure_kind == FailureKind.STEP_FAILED


def test_status_match_is_case_sensitive(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "succeeded"})
    engine.process_pending()

    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING


def test_pending_status_waits_then_rechecks_same_payload(
    engine: WorkflowEngine, clock: ManualClock
) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "PENDING", "guid": "g1"})
    engine.process_pending()

    waiting = engine.describe_execution("e1")
    assert waiting.status == ExecutionStatus.WAITING
    assert waiting.step == WAIT_X_SECONDS

    clock.advance(4)
    engine.process_pending()
    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING

    clock.advance(1)
    engine.process_pending()

    again = engine.describe_execution("e1")
    # Re-evaluating the unchanged payload lands back in the wait step.
    assert again.status == ExecutionStatus.WAITING
    assert again.payload == {"status": "PENDING", "guid": "g1"}
    assert _history_types(engine, "e1").count("ChoiceEvaluated") == 2


def test_missing_status_routes_to_wait(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"guid": "g1"})
    engine.process_pending()

    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING


def test_failure_signal_goes_straight_to_failed(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_failure(snap.token, error="Boom", cause="worker crashed")
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.error == "Boom"
    assert done.cause == "worker crashed"
    assert done.failure_kind == FailureKind.CALLBACK_FAILURE
    assert "ChoiceEvaluated" not in _history_types(engine, "e1")


def test_duplicate_signal_is_a_noop(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "FAILED"})
    assert engine.process_pending() == 1
    before = engine.describe_execution("e1")

    engine.send_task_success(snap.token, {"status": "SUCCEEDED"})
    engine.send_task_failure(snap.token, error="late", cause="late")
    assert engine.process_pending() == 0

    after = engine.describe_execution("e1")
    assert after.status == ExecutionStatus.FAILED
    assert after.error == before.error
    assert len(after.history) == len(before.history)


def test_unknown_token_is_ignored(engine: WorkflowEngine) -> None:
    engine.start_execution({"guid": "g1"}, execution_id="e1")

    engine.send_task_success("not-a-token", {"status": "SUCCEEDED"})
    assert engine.process_pending() == 0
    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING_FOR_CALLBACK


def test_timeout_while_waiting_for_callback_fails(
    engine: WorkflowEngine, clock: ManualClock
) -> None:
    engine.start_execution({"guid": "g1"}, execution_id="e1")

    clock.advance(300)
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.error == "States.Timeout"
    assert done.failure_kind == FailureKind.CALLBACK_TIMEOUT
    assert done.token is None


def test_timeout_wins_over_a_late_success_signal(
    engine: WorkflowEngine, clock: ManualClock
) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    # The deadline elapses, then the success signal is queued before any timer pass.
    clock.advance(300.000001)
    engine.send_task_success(snap.token, {"status": "SUCCEEDED"})
    assert engine.process_pending() == 0

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.failure_kind == FailureKind.CALLBACK_TIMEOUT


def test_timeout_during_wait_loop_is_honored_immediately(
    engine: WorkflowEngine, clock: ManualClock
) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    clock.advance(297)
    engine.send_task_success(snap.token, {"status": "PENDING"})
    engine.process_pending()
    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING

    # The wait step would end at 302s; the deadline at 300s must not wait for it.
    clock.advance(3)
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.failure_kind == FailureKind.EXECUTION_TIMEOUT
    assert done.step == WAIT_X_SECONDS


def test_wait_loop_ends_once_job_finishes(engine: WorkflowEngine, clock: ManualClock) -> None:
    """Each loop re-reads the payload; a changed payload only arrives with a new signal."""

    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None
    engine.send_task_success(snap.token, {"status": "RUNNABLE"})
    engine.process_pending()

    for _ in range(10):
        clock.advance(5)
        engine.process_pending()
        assert engine.describe_execution("e1").status == ExecutionStatus.WAITING

    clock.advance(250)
    engine.process_pending()
    assert engine.describe_execution("e1").status == ExecutionStatus.FAILED


def test_cancel_releases_pending_token(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    stopped = engine.stop_execution("e1", cause="operator request")
    assert stopped.status == ExecutionStatus.FAILED
    assert stopped.failure_kind == FailureKind.CANCELLATION_REQUESTED
    assert stopped.cause == "operator request"

    engine.send_task_success(snap.token, {"status": "SUCCEEDED"})
    assert engine.process_pending() == 0
    assert engine.describe_execution("e1").status == ExecutionStatus.FAILED


def test_cancel_during_wait(engine: WorkflowEngine, clock: ManualClock) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None
    engine.send_task_success(snap.token, {"status": "PENDING"})
    engine.process_pending()

    engine.stop_execution("e1")
    clock.advance(5)
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.failure_kind == FailureKind.CANCELLATION_REQUESTED
    assert done.step == WAIT_X_SECONDS


def test_cancel_of_finished_execution_is_noop(engine: WorkflowEngine) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None
    engine.send_task_success(snap.token, {"status": "SUCCEEDED"})
    engine.process_pending()

    after = engine.stop_execution("e1")
    assert after.status == ExecutionStatus.SUCCEEDED
    assert after.failure_kind is None


def test_executions_are_independent(engine: WorkflowEngine) -> None:
    a = engine.start_execution({"guid": "a"}, execution_id="a")
    b = engine.start_execution({"guid": "b"}, execution_id="b")
    assert a.token is not None and b.token is not None
    assert a.token != b.token

    engine.send_task_success(b.token, {"status": "FAILED"})
    engine.send_task_success(a.token, {"status": "SUCCEEDED"})
    assert engine.process_pending() == 2

    assert engine.describe_execution("a").status == ExecutionStatus.SUCCEEDED
    assert engine.describe_execution("b").status == ExecutionStatus.FAILED


def test_input_payload_is_copied(engine: WorkflowEngine) -> None:
    payload = {"guid": "g1", "meta": {"n": 1}}
    engine.start_execution(payload, execution_id="e1")
    payload["meta"]["n"] = 2

    assert engine.describe_execution("e1").payload == {"guid": "g1", "meta": {"n": 1}}


def test_submit_dispatch_error_fails_execution(engine: WorkflowEngine, dispatcher: Mock) -> None:
    dispatcher.dispatch.side_effect = ConnectionError("unreachable")

    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")

    assert snap.status == ExecutionStatus.FAILED
    assert snap.failure_kind == FailureKind.TASK_FAILED
    assert snap.error == "ConnectionError"
    assert snap.token is None


def test_final_status_error_fails_execution(engine: WorkflowEngine, dispatcher: Mock) -> None:
    def dispatch(resource: str, payload: object) -> object:
        if resource == "finalStatusLambda":
            raise RuntimeError("final status unavailable")
        return None

    dispatcher.dispatch.side_effect = dispatch
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    engine.send_task_success(snap.token, {"status": "SUCCEEDED"})
    engine.process_pending()

    done = engine.describe_execution("e1")
    assert done.status == ExecutionStatus.FAILED
    assert done.failure_kind == FailureKind.TASK_FAILED
    assert done.cause == "final status unavailable"
    assert done.step == GET_FINAL_JOB_STATUS


def test_every_execution_terminates_under_finite_schedule(
    engine: WorkflowEngine, clock: ManualClock
) -> None:
    outcomes = [{"status": "SUCCEEDED"}, {"status": "FAILED"}, {"status": "PENDING"}, None]
    for idx, output in enumerate(outcomes):
        snap = engine.start_execution({"guid": str(idx)}, execution_id=f"e{idx}")
        assert snap.token is not None
        if output is not None:
            engine.send_task_success(snap.token, output)
    engine.process_pending()

    clock.advance(300)
    engine.process_pending()

    statuses = {s.execution_id: s.status for s in engine.list_executions()}
    assert statuses == {
        "e0": ExecutionStatus.SUCCEEDED,
        "e1": ExecutionStatus.FAILED,
        "e2": ExecutionStatus.FAILED,
        "e3": ExecutionStatus.FAILED,
    }


def test_snapshots_are_persisted(engine: WorkflowEngine, store: ExecutionStore) -> None:
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None
    engine.send_task_success(snap.token, {"status": "FAILED"})
    engine.process_pending()

    stored = store.get("e1")
    assert stored is not None
    assert stored.status == ExecutionStatus.FAILED
    assert stored.history[0].type == "ExecutionStarted"
    assert stored.history[-1].type == "ExecutionFailed"
    assert any(e.type == "ChoiceEvaluated" and e.step == JOB_COMPLETE for e in stored.history)


def test_heartbeats_keep_callback_alive_until_they_stop(
    dispatcher: Mock, clock: ManualClock
) -> None:
    engine = WorkflowEngine(
        definition=build_job_completion_workflow(JobWorkflowConfig(heartbeat_seconds=10)),
        dispatcher=dispatcher,
        clock=clock,
    )
    snap = engine.start_execution({"guid": "g1"}, execution_id="e1")
    assert snap.token is not None

    clock.advance(8)
    engine.send_task_heartbeat(snap.token)
    assert engine.process_pending() == 1

    clock.advance(8)
    engine.fire_timers()
    assert engine.describe_execution("e1").status == ExecutionStatus.WAITING_FOR_CALLBACK

    clock.advance(2)
    engine.fire_timers()
    failed = engine.describe_execution("e1")
    assert failed.status == ExecutionStatus.FAILED
    assert failed.failure_kind == FailureKind.HEARTBEAT_TIMEOUT
    assert failed.error == "States.HeartbeatTimeout"
    assert failed.token is None
