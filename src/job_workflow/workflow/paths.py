"""Minimal reference paths into a payload (`$`, `$.a.b`)."""

from __future__ import annotations

from collections.abc import Mapping


class InvalidPathError(ValueError):
    pass


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def parse_path(path: str) -> tuple[str, ...]:
    if path == "$":
        return ()
    if not path.startswith("$."):
        raise InvalidPathError(f"Path must be '$' or start with '$.': {path!r}")
    parts = tuple(path[2:].split("."))
    if any(not p for p in parts):
        raise InvalidPathError(f"Empty path segment in {path!r}")
    return parts


def read_path(payload: object, path: str) -> object:
    """Resolve `path` against nested mappings.

    Missing keys (or a non-mapping in the middle of the path) resolve to
    `MISSING` instead of raising.
    """

    current = payload
    for key in parse_path(path):
        if not isinstance(current, Mapping) or key not in current:
            return MISSING
        current = current[key]
    return current
