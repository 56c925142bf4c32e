"""Unit-of-work dispatch.

The engine never runs work itself; it hands a request to a dispatcher. For
callback-style steps the request carries the task token and the dispatcher's
return value is ignored; the outcome arrives later as a signal.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import requests

logger = logging.getLogger(__name__)


class TaskDispatchError(RuntimeError):
    pass


class TaskDispatcher(Protocol):
    def dispatch(self, resource: str, payload: Any) -> Any: ...


class HttpTaskDispatcher:
    """POST each request as JSON to the endpoint configured for its resource."""

    def __init__(
        self,
        *,
        endpoints: Mapping[str, str],
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._endpoints = {k: v for k, v in endpoints.items() if v.strip()}
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "job-completion-workflow"}
        )

    def dispatch(self, resource: str, payload: Any) -> Any:
        url = self._endpoints.get(resource)
        if url is None:
            raise TaskDispatchError(f"No endpoint configured for resource {resource!r}")

        logger.debug("Dispatching task", extra={"resource": resource, "url": url})
        try:
            resp = self._session.post(url, json=payload, timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TaskDispatchError(f"Dispatch to {resource!r} failed: {e}") from e

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TaskDispatchError(f"Resource {resource!r} returned a non-JSON body") from e

    def close(self) -> None:
        self._session.close()
