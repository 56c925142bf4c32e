"""The job-completion workflow.

    Submit Job --(callback)--> Job Complete?
        "FAILED"    -> Job Failed
        "SUCCEEDED" -> Get Final Job Status -> (end)
        otherwise   -> Wait X Seconds -> Job Complete?
"""

from __future__ import annotations

from dataclasses import dataclass

from .definition import WorkflowBuilder, WorkflowDefinition
from .steps import Choice, ChoiceRule, Fail, Invoke, Wait

SUBMIT_JOB = "Submit Job"
JOB_COMPLETE = "Job Complete?"
WAIT_X_SECONDS = "Wait X Seconds"
JOB_FAILED = "Job Failed"
GET_FINAL_JOB_STATUS = "Get Final Job Status"


@dataclass(frozen=True, slots=True)
class JobWorkflowConfig:
    wait_seconds: float = 5.0
    timeout_seconds: float = 300.0
    failure_cause: str = "AWS Batch Job Failed"
    failure_error: str = "DescribeJob returned FAILED"
    submit_resource: str = "submitLambda"
    final_status_resource: str = "finalStatusLambda"
    status_path: str = "$.status"
    failed_status: str = "FAILED"
    succeeded_status: str = "SUCCEEDED"
    heartbeat_seconds: float | None = None


def build_job_completion_workflow(config: JobWorkflowConfig | None = None) -> WorkflowDefinition:
    config = config or JobWorkflowConfig()
    return (
        WorkflowBuilder()
        .add(
            Invoke(
                name=SUBMIT_JOB,
                resource=config.submit_resource,
                next=JOB_COMPLETE,
                wait_for_token=True,
                heartbeat_seconds=config.heartbeat_seconds,
                output_path="$",
            )
        )
        .add(
            Choice(
                name=JOB_COMPLETE,
                rules=(
                    ChoiceRule(
                        variable=config.status_path,
                        string_equals=config.failed_status,
                        next=JOB_FAILED,
                    ),
                    ChoiceRule(
                        variable=config.status_path,
                        string_equals=config.succeeded_status,
                        next=GET_FINAL_JOB_STATUS,
                    ),
                ),
                default=WAIT_X_SECONDS,
            )
        )
        .add(Wait(name=WAIT_X_SECONDS, seconds=config.wait_seconds, next=JOB_COMPLETE))
        .add(Fail(name=JOB_FAILED, error=config.failure_error, cause=config.failure_cause))
        .add(Invoke(name=GET_FINAL_JOB_STATUS, resource=config.final_status_resource))
        .start_at(SUBMIT_JOB)
        .build(timeout_seconds=config.timeout_seconds, comment="Job completion workflow")
    )
