"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class StartExecutionRequest(BaseModel):
    input: Any = Field(default_factory=dict)
    execution_id: str | None = Field(default=None, min_length=1, max_length=80)


class StopExecutionRequest(BaseModel):
    cause: str = "Execution cancelled"


class TaskSuccessRequest(BaseModel):
    token: str = Field(min_length=1)
    output: Any = None


class TaskFailureRequest(BaseModel):
    token: str = Field(min_length=1)
    error: str = ""
    cause: str = ""


class TaskHeartbeatRequest(BaseModel):
    token: str = Field(min_length=1)


class SignalAccepted(BaseModel):
    """Signals are always accepted; stale or unknown tokens are ignored.

    `applied` counts the signals that matched an outstanding task token,
    heartbeats included.
    """

    status: str = "accepted"
    applied: int = 0
