"""Job Completion Workflow.

Provides:
- a validated, immutable workflow graph (Invoke / Wait / Choice / Fail / Succeed)
- an execution engine with callback-token correlation and timers
- configuration loaded from `.env`, structured logging, a REST server and a CLI
"""

__version__ = "0.1.0"

from job_workflow.config import WorkflowSettings

__all__ = ["__version__", "WorkflowSettings"]
