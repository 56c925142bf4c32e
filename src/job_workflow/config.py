"""Configuration for the job-completion workflow service.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Workflow constants (delay, timeout, failure strings) are not module globals:
they live here and are handed to the graph builder via `to_job_config()`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from job_workflow.workflow.job_completion import JobWorkflowConfig


class WorkflowSettings(BaseSettings):
    """Settings for the workflow engine, REST server and CLI.

    Environment variables:
    - LOG_LEVEL                          (optional)
    - JOB_WORKFLOW_STATE_PATH            (optional)
    - JOB_WORKFLOW_WAIT_SECONDS          (optional)
    - JOB_WORKFLOW_TIMEOUT_SECONDS       (optional)
    - JOB_WORKFLOW_HEARTBEAT_SECONDS     (optional)
    - JOB_WORKFLOW_SUBMIT_URL            (optional)
    - JOB_WORKFLOW_FINAL_STATUS_URL      (optional)
    - JOB_WORKFLOW_SERVER_URL            (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkflowSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="JOB_WORKFLOW_STATE_PATH",
        description="Directory where execution snapshots are persisted",
    )

    wait_seconds: float = Field(
        default=5.0,
        ge=0,
        validation_alias="JOB_WORKFLOW_WAIT_SECONDS",
        description="Delay of the wait step between two status checks",
    )
    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="JOB_WORKFLOW_TIMEOUT_SECONDS",
        description="Overall wall-clock limit of one execution",
    )
    heartbeat_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="JOB_WORKFLOW_HEARTBEAT_SECONDS",
        description="If set, the submit step fails when no heartbeat arrives within this window",
    )

    failure_cause: str = Field(
        default="AWS Batch Job Failed", validation_alias="JOB_WORKFLOW_FAILURE_CAUSE"
    )
    failure_error: str = Field(
        default="DescribeJob returned FAILED", validation_alias="JOB_WORKFLOW_FAILURE_ERROR"
    )

    submit_resource: str = Field(
        default="submitLambda", validation_alias="JOB_WORKFLOW_SUBMIT_RESOURCE"
    )
    final_status_resource: str = Field(
        default="finalStatusLambda", validation_alias="JOB_WORKFLOW_FINAL_STATUS_RESOURCE"
    )
    submit_url: str = Field(
        default="",
        validation_alias="JOB_WORKFLOW_SUBMIT_URL",
        description="Endpoint receiving {token, input} for the submit step",
    )
    final_status_url: str = Field(
        default="",
        validation_alias="JOB_WORKFLOW_FINAL_STATUS_URL",
        description="Endpoint called synchronously for the final job status",
    )
    dispatch_timeout_seconds: float = Field(
        default=30.0, gt=0, validation_alias="JOB_WORKFLOW_DISPATCH_TIMEOUT_SECONDS"
    )

    server_url: str = Field(
        default="http://127.0.0.1:8000",
        validation_alias="JOB_WORKFLOW_SERVER_URL",
        description="Base URL of the REST server (used by the CLI)",
    )
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="JOB_WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def executions_state_file(self) -> Path:
        """Path where execution snapshots are persisted."""

        return self.state_path / "executions.json"

    def dispatch_endpoints(self) -> dict[str, str]:
        return {
            self.submit_resource: self.submit_url,
            self.final_status_resource: self.final_status_url,
        }

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def to_job_config(self) -> JobWorkflowConfig:
        return JobWorkflowConfig(
            wait_seconds=self.wait_seconds,
            timeout_seconds=self.timeout_seconds,
            failure_cause=self.failure_cause,
            failure_error=self.failure_error,
            submit_resource=self.submit_resource,
            final_status_resource=self.final_status_resource,
            heartbeat_seconds=self.heartbeat_seconds,
        )
