from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Invoke:
    """Call an external unit of work.

    With `wait_for_token`, the work is dispatched with a callback token and the
    execution suspends until a correlated signal arrives. Without it, the call
    is synchronous and its result replaces the payload.

    `next=None` ends the graph (implicit Succeed).
    """

    name: str
    resource: str
    next: str | None = None
    wait_for_token: bool = False
    heartbeat_seconds: float | None = None
    output_path: str = "$"


@dataclass(frozen=True, slots=True)
class Wait:
    """Pause for a fixed duration, then proceed unconditionally."""

    name: str
    seconds: float
    next: str


@dataclass(frozen=True, slots=True)
class ChoiceRule:
    variable: str
    string_equals: str
    next: str


@dataclass(frozen=True, slots=True)
class Choice:
    """Ordered predicate -> step branches with a default.

    Rules are evaluated in declaration order; the first match wins.
    """

    name: str
    rules: tuple[ChoiceRule, ...]
    default: str


@dataclass(frozen=True, slots=True)
class Fail:
    name: str
    error: str
    cause: str


@dataclass(frozen=True, slots=True)
class Succeed:
    name: str


Step = Invoke | Wait | Choice | Fail | Succeed


def step_targets(step: Step) -> list[str]:
    """Return the names of every step `step` may transition to."""

    if isinstance(step, Invoke):
        return [step.next] if step.next is not None else []
    if isinstance(step, Wait):
        return [step.next]
    if isinstance(step, Choice):
        targets = [rule.next for rule in step.rules]
        targets.append(step.default)
        return targets
    return []


def is_terminal(step: Step) -> bool:
    return isinstance(step, Fail | Succeed)
