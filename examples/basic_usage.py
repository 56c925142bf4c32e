#!/usr/bin/env python3
"""In-process job-completion example.

This drives the workflow engine directly, without the REST server:

* build the job-completion graph from settings
* start two executions against a fake job runner
* report "SUCCEEDED" for the first and "RUNNING" for the second
* advance a manual clock until the second one hits its timeout

A "RUNNING" report keeps the execution cycling between the wait and choice
steps; the payload never changes, so only the overall timeout ends it.
"""

from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from typing import Any

from job_workflow.config import WorkflowSettings
from job_workflow.logging import configure_logging
from job_workflow.workflow import WorkflowEngine, build_job_completion_workflow
from job_workflow.workflow.timers import ManualClock


class FakeJobRunner:
    """Accept submissions and answer final-status lookups."""

    def __init__(self) -> None:
        self.tokens: dict[str, str] = {}

    def dispatch(self, resource: str, payload: Any) -> Any:
        if "token" in payload:
            self.tokens[payload["input"]["guid"]] = payload["token"]
            return None
        return {"status": "SUCCEEDED", "guid": payload.get("guid"), "exitCode": 0}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run job-completion executions in-process.")
    parser.add_argument("--prefix", default="job", help="Prefix for the generated job ids")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    clock = ManualClock()
    runner = FakeJobRunner()
    engine = WorkflowEngine(
        definition=build_job_completion_workflow(settings.to_job_config()),
        dispatcher=runner,
        clock=clock,
    )

    done_guid, stuck_guid = f"{args.prefix}-done", f"{args.prefix}-stuck"
    done = engine.start_execution({"guid": done_guid})
    stuck = engine.start_execution({"guid": stuck_guid})

    engine.send_task_success(runner.tokens[done_guid], {"status": "SUCCEEDED", "guid": done_guid})
    engine.send_task_success(runner.tokens[stuck_guid], {"status": "RUNNING", "guid": stuck_guid})
    engine.process_pending()

    step = settings.wait_seconds or 1.0
    elapsed = 0.0
    while elapsed < settings.timeout_seconds:
        clock.advance(step)
        elapsed += step
        engine.fire_timers()

    results = [engine.describe_execution(e.execution_id) for e in (done, stuck)]
    print(json.dumps([r.to_json() for r in results], indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
