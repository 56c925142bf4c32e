"""Workflow graph and runtime.

This package introduces first-class types for:
- Step variants (Invoke, Wait, Choice, Fail, Succeed)
- A validated, immutable workflow definition
- Callback signals correlated by task token
- Execution instances and the engine that routes signals to them

Definitions are static; every execution owns its own payload and state.
"""

from .definition import WorkflowBuilder, WorkflowDefinition, WorkflowDefinitionError
from .engine import ExecutionNotFound, WorkflowEngine
from .job_completion import JobWorkflowConfig, build_job_completion_workflow
from .state_machine import ExecutionSnapshot, ExecutionStatus, FailureKind

__all__ = [
    "ExecutionNotFound",
    "ExecutionSnapshot",
    "ExecutionStatus",
    "FailureKind",
    "JobWorkflowConfig",
    "WorkflowBuilder",
    "WorkflowDefinition",
    "WorkflowDefinitionError",
    "WorkflowEngine",
    "build_job_completion_workflow",
]
