"""CLI entrypoint for the job-completion workflow.

`definition` works offline; every other command talks to the REST server
configured by JOB_WORKFLOW_SERVER_URL (or `--server`).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import requests
from pydantic import ValidationError

from job_workflow import __version__
from job_workflow.client import WorkflowApiClient
from job_workflow.config import WorkflowSettings
from job_workflow.logging import configure_logging
from job_workflow.workflow.job_completion import build_job_completion_workflow

logger = logging.getLogger(__name__)


def _parse_json(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="job-workflow",
        description="Run and signal the job-completion workflow",
    )
    parser.add_argument(
        "--version", action="version", version=f"job-completion-workflow {__version__}"
    )
    parser.add_argument(
        "--server",
        default=None,
        help="REST server base URL (defaults to JOB_WORKFLOW_SERVER_URL)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "definition", help="Print the workflow as an Amazon States Language document"
    )

    start = subparsers.add_parser("start", help="Start a new execution")
    start.add_argument(
        "--input",
        type=_parse_json,
        default={},
        help='Execution input as JSON, e.g. \'{"guid": "g1"}\'',
    )
    start.add_argument("--execution-id", default=None, help="Optional execution id")

    describe = subparsers.add_parser("describe", help="Show the state of an execution")
    describe.add_argument("--execution-id", required=True)

    stop = subparsers.add_parser("stop", help="Cancel a running execution")
    stop.add_argument("--execution-id", required=True)
    stop.add_argument("--cause", default="Execution cancelled", help="Cancellation cause")

    success = subparsers.add_parser("send-success", help="Report task success for a token")
    success.add_argument("--token", required=True)
    success.add_argument(
        "--output",
        type=_parse_json,
        default={},
        help='Task result as JSON, e.g. \'{"status": "SUCCEEDED"}\'',
    )

    failure = subparsers.add_parser("send-failure", help="Report task failure for a token")
    failure.add_argument("--token", required=True)
    failure.add_argument("--error", default="", help="Error code")
    failure.add_argument("--cause", default="", help="Human-readable cause")

    heartbeat = subparsers.add_parser("send-heartbeat", help="Report task liveness for a token")
    heartbeat.add_argument("--token", required=True)

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if args.command == "definition":
        definition = build_job_completion_workflow(settings.to_job_config())
        _print_json(definition.to_states_language())
        return 0

    client = WorkflowApiClient(base_url=args.server or settings.server_url)
    try:
        if args.command == "start":
            _print_json(client.start_execution(args.input, execution_id=args.execution_id))
            return 0

        if args.command == "describe":
            snapshot = client.describe_execution(args.execution_id)
            _print_json(snapshot)
            # Exit codes are designed to be CI-friendly.
            if snapshot.get("status") == "failed":
                return 4
            return 0

        if args.command == "stop":
            _print_json(client.stop_execution(args.execution_id, cause=args.cause))
            return 0

        if args.command == "send-success":
            _print_json(client.send_task_success(args.token, args.output))
            return 0

        if args.command == "send-failure":
            _print_json(client.send_task_failure(args.token, error=args.error, cause=args.cause))
            return 0

        if args.command == "send-heartbeat":
            _print_json(client.send_task_heartbeat(args.token))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        logger.warning("Server rejected request", extra={"status_code": status})
        print(f"Request failed: {e}", file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1

    finally:
        client.close()


if __name__ == "__main__":
    raise SystemExit(main())
