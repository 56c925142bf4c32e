"""Small HTTP client for the workflow REST server.

Keeps HTTP calls out of CLI code and makes tests easy (inject a session).
"""

from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class WorkflowApiClient:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("Server base URL is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "job-completion-workflow-cli"}
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/api/v1/{path.lstrip('/')}"

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = self._session.post(self._url(path), json=payload, timeout=self._timeout)
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        return data

    def _get(self, path: str) -> Any:
        resp = self._session.get(self._url(path), timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()

    def start_execution(self, payload: Any, *, execution_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"input": payload}
        if execution_id:
            body["execution_id"] = execution_id
        return self._post("executions", body)

    def describe_execution(self, execution_id: str) -> dict[str, Any]:
        data: dict[str, Any] = self._get(f"executions/{execution_id}")
        return data

    def stop_execution(self, execution_id: str, *, cause: str) -> dict[str, Any]:
        return self._post(f"executions/{execution_id}/stop", {"cause": cause})

    def send_task_success(self, token: str, output: Any) -> dict[str, Any]:
        return self._post("tasks/success", {"token": token, "output": output})

    def send_task_failure(self, token: str, *, error: str, cause: str) -> dict[str, Any]:
        return self._post("tasks/failure", {"token": token, "error": error, "cause": cause})

    def send_task_heartbeat(self, token: str) -> dict[str, Any]:
        return self._post("tasks/heartbeat", {"token": token})

    def close(self) -> None:
        self._session.close()
