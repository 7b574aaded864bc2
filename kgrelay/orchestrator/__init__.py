"""Scheduled automation: per-user job registry and the workflow it runs.

Public API
----------
* :class:`~kgrelay.orchestrator.jobs.JobRegistry` — start/stop/status of
  per-user cron jobs on an APScheduler ``AsyncIOScheduler``.
* :class:`~kgrelay.orchestrator.workflow.WorkflowExecutor` — one tick of the
  profile → listen → bonus × N → VIP-status workflow.
* :class:`~kgrelay.orchestrator.workflow.BackoffPolicy` — randomised pause
  between bonus claims; injectable for tests.
"""

from kgrelay.orchestrator.jobs import RUNNING, STOPPED, JobHandle, JobRegistry
from kgrelay.orchestrator.workflow import BackoffPolicy, TickResult, WorkflowExecutor

__all__ = [
    "JobHandle",
    "JobRegistry",
    "RUNNING",
    "STOPPED",
    "BackoffPolicy",
    "TickResult",
    "WorkflowExecutor",
]
