"""Test configuration and fixtures."""

from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from job_workflow.workflow.definition import WorkflowDefinition
from job_workflow.workflow.engine import WorkflowEngine
from job_workflow.workflow.job_completion import JobWorkflowConfig, build_job_completion_workflow
from job_workflow.workflow.store import ExecutionStore
from job_workflow.workflow.timers import ManualClock


def _default_dispatch(resource: str, payload: Any) -> Any:
    if resource == "finalStatusLambda":
        return {"status": "SUCCEEDED", "final": True, "guid": payload.get("guid")}
    return None


@pytest.fixture
def clock() -> ManualClock:
    """Provide a clock that only moves when the test advances it."""
    return ManualClock()


@pytest.fixture
def dispatcher() -> Mock:
    """Provide a dispatcher that accepts submissions and answers final-status calls."""
    mock = Mock()
    mock.dispatch.side_effect = _default_dispatch
    return mock


@pytest.fixture
def job_config() -> JobWorkflowConfig:
    """Provide the default job workflow configuration."""
    return JobWorkflowConfig()


@pytest.fixture
def job_definition(job_config: JobWorkflowConfig) -> WorkflowDefinition:
    """Provide the job-completion workflow graph."""
    return build_job_completion_workflow(job_config)


@pytest.fixture
def store(tmp_path: Path) -> ExecutionStore:
    """Provide a temporary execution store."""
    return ExecutionStore(tmp_path / "workflow_state" / "executions.json")


@pytest.fixture
def engine(
    job_definition: WorkflowDefinition,
    dispatcher: Mock,
    clock: ManualClock,
    store: ExecutionStore,
) -> WorkflowEngine:
    """Provide an engine driven by the manual clock (no background thread)."""
    return WorkflowEngine(
        definition=job_definition,
        dispatcher=dispatcher,
        store=store,
        clock=clock,
    )
