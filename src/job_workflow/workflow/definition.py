"""Static workflow graph and its builder.

A definition is assembled once, validated eagerly, and never mutated. All
graph errors surface from `WorkflowBuilder.build()` before any execution
can be created.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .paths import parse_path
from .steps import Choice, Fail, Invoke, Step, Wait, step_targets

logger = logging.getLogger(__name__)

LAMBDA_INVOKE_RESOURCE = "arn:aws:states:::lambda:invoke"
LAMBDA_INVOKE_WAIT_FOR_TOKEN_RESOURCE = "arn:aws:states:::lambda:invoke.waitForTaskToken"


class WorkflowDefinitionError(ValueError):
    pass


class UnreachableChoiceTarget(WorkflowDefinitionError):
    """A transition references a step that is not defined."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(f"Step {source!r} references undefined step {target!r}")
        self.source = source
        self.target = target


class DuplicateStartStep(WorkflowDefinitionError):
    pass


class MissingStartStep(WorkflowDefinitionError):
    pass


class DuplicateStepName(WorkflowDefinitionError):
    pass


class UnreachableStep(WorkflowDefinitionError):
    pass


class UnboundedLoop(WorkflowDefinitionError):
    pass


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    start_at: str
    steps: Mapping[str, Step]
    timeout_seconds: float | None = None
    comment: str = ""

    def step(self, name: str) -> Step:
        return self.steps[name]

    def to_states_language(self) -> dict[str, Any]:
        """Render the graph as an Amazon States Language document."""

        doc: dict[str, Any] = {}
        if self.comment:
            doc["Comment"] = self.comment
        doc["StartAt"] = self.start_at
        doc["States"] = {name: _render_step(step) for name, step in self.steps.items()}
        if self.timeout_seconds is not None:
            doc["TimeoutSeconds"] = int(self.timeout_seconds)
        return doc


def _render_next(out: dict[str, Any], next_step: str | None) -> None:
    if next_step is None:
        out["End"] = True
    else:
        out["Next"] = next_step


def _render_step(step: Step) -> dict[str, Any]:
    out: dict[str, Any]
    if isinstance(step, Invoke):
        if step.wait_for_token:
            out = {
                "Type": "Task",
                "Resource": LAMBDA_INVOKE_WAIT_FOR_TOKEN_RESOURCE,
                "Parameters": {
                    "FunctionName": step.resource,
                    "Payload": {"token.$": "$$.Task.Token", "input.$": "$"},
                },
                "OutputPath": step.output_path,
            }
        else:
            out = {
                "Type": "Task",
                "Resource": LAMBDA_INVOKE_RESOURCE,
                "Parameters": {"FunctionName": step.resource, "Payload.$": "$"},
                "OutputPath": step.output_path,
            }
        if step.heartbeat_seconds is not None:
            out["HeartbeatSeconds"] = int(step.heartbeat_seconds)
        _render_next(out, step.next)
        return out
    if isinstance(step, Wait):
        out = {"Type": "Wait", "Seconds": int(step.seconds)}
        _render_next(out, step.next)
        return out
    if isinstance(step, Choice):
        return {
            "Type": "Choice",
            "Choices": [
                {"Variable": r.variable, "StringEquals": r.string_equals, "Next": r.next}
                for r in step.rules
            ],
            "Default": step.default,
        }
    if isinstance(step, Fail):
        return {"Type": "Fail", "Error": step.error, "Cause": step.cause}
    return {"Type": "Succeed"}


class WorkflowBuilder:
    """Collect steps, designate the start, then `build()` a validated graph."""

    def __init__(self) -> None:
        self._steps: dict[str, Step] = {}
        self._start: str | None = None

    def add(self, step: Step) -> WorkflowBuilder:
        if step.name in self._steps:
            raise DuplicateStepName(f"Step already defined: {step.name!r}")
        self._steps[step.name] = step
        return self

    def start_at(self, name: str) -> WorkflowBuilder:
        if self._start is not None:
            raise DuplicateStartStep(
                f"Start step already designated as {self._start!r}; refusing {name!r}"
            )
        self._start = name
        return self

    def build(
        self, *, timeout_seconds: float | None = None, comment: str = ""
    ) -> WorkflowDefinition:
        if self._start is None:
            raise MissingStartStep("No start step designated")
        if self._start not in self._steps:
            raise MissingStartStep(f"Start step {self._start!r} is not defined")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise WorkflowDefinitionError("timeout_seconds must be positive")

        for step in self._steps.values():
            _validate_step(step)
            for target in step_targets(step):
                if target not in self._steps:
                    raise UnreachableChoiceTarget(step.name, target)

        reachable = _reachable_from(self._start, self._steps)
        unreachable = [name for name in self._steps if name not in reachable]
        if unreachable:
            raise UnreachableStep(f"Steps not reachable from {self._start!r}: {unreachable}")

        loop = _find_loop_without_wait(self._steps)
        if loop is not None:
            raise UnboundedLoop(f"Cycle without a Wait step: {' -> '.join(loop)}")

        definition = WorkflowDefinition(
            start_at=self._start,
            steps=MappingProxyType(dict(self._steps)),
            timeout_seconds=timeout_seconds,
            comment=comment,
        )
        logger.debug(
            "Workflow definition built",
            extra={"start_at": definition.start_at, "steps": len(definition.steps)},
        )
        return definition


def _validate_step(step: Step) -> None:
    if isinstance(step, Wait) and step.seconds < 0:
        raise WorkflowDefinitionError(f"Wait step {step.name!r} has a negative delay")
    if isinstance(step, Invoke):
        parse_path(step.output_path)
        if step.heartbeat_seconds is not None:
            if not step.wait_for_token:
                raise WorkflowDefinitionError(
                    f"Step {step.name!r}: heartbeat requires wait_for_token"
                )
            if step.heartbeat_seconds <= 0:
                raise WorkflowDefinitionError(f"Step {step.name!r}: heartbeat must be positive")
    if isinstance(step, Choice):
        for rule in step.rules:
            parse_path(rule.variable)


def _reachable_from(start: str, steps: Mapping[str, Step]) -> set[str]:
    seen: set[str] = set()
    stack = [start]
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        stack.extend(step_targets(steps[name]))
    return seen


def _find_loop_without_wait(steps: Mapping[str, Step]) -> list[str] | None:
    # A cycle avoids every Wait iff it survives in the graph with Wait steps removed.
    graph = {
        name: [t for t in step_targets(step) if not isinstance(steps[t], Wait)]
        for name, step in steps.items()
        if not isinstance(step, Wait)
    }
    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in visiting:
            return visiting[visiting.index(name) :] + [name]
        if name in done:
            return None
        visiting.append(name)
        for target in graph[name]:
            found = visit(target)
            if found is not None:
                return found
        visiting.pop()
        done.add(name)
        return None

    for name in graph:
        found = visit(name)
        if found is not None:
            return found
    return None
