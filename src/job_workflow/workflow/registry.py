"""Callback token correlation.

Maps each outstanding token to the id of the one execution suspended on it.
Tokens are single-use: once resolved or released they are remembered, so a
late or repeated signal can be told apart from a token that never existed.
"""

from __future__ import annotations

import threading
from collections import OrderedDict


class TokenRegistry:
    def __init__(self, *, remember_resolved: int = 10_000) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, str] = {}
        self._resolved: OrderedDict[str, str] = OrderedDict()
        self._remember_resolved = remember_resolved

    def register(self, token: str, execution_id: str) -> None:
        with self._lock:
            if token in self._pending or token in self._resolved:
                raise ValueError(f"Task token already issued: {token}")
            self._pending[token] = execution_id

    def lookup(self, token: str) -> str | None:
        with self._lock:
            return self._pending.get(token)

    def resolve(self, token: str) -> str | None:
        """Consume a pending token. Returns None if it is not pending."""

        with self._lock:
            execution_id = self._pending.pop(token, None)
            if execution_id is not None:
                self._remember_unlocked(token, execution_id)
            return execution_id

    def release(self, token: str) -> None:
        """Drop a pending registration without a signal (timeout, cancel)."""

        self.resolve(token)

    def is_resolved(self, token: str) -> bool:
        with self._lock:
            return token in self._resolved

    def _remember_unlocked(self, token: str, execution_id: str) -> None:
        self._resolved[token] = execution_id
        while len(self._resolved) > self._remember_resolved:
            self._resolved.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
