"""FastAPI server adapter for job-completion-workflow.

This module exposes a REST API over the workflow engine.

Design intent:
- Keep workflow semantics in `job_workflow.workflow.*`
- Keep server-specific concerns (routing, CORS, request models) here

Run with: ``uvicorn job_workflow.server.app:create_app --factory``
"""

from __future__ import annotations

__all__ = ["create_app"]

from job_workflow.server.app import create_app
