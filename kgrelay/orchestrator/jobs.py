"""Per-user cron job registry backed by APScheduler.

:class:`JobRegistry` owns one :class:`~apscheduler.schedulers.asyncio.AsyncIOScheduler`
and at most one :class:`JobHandle` per user.  Each handle wraps an
APScheduler job whose :class:`~apscheduler.triggers.cron.CronTrigger` fires
:meth:`~kgrelay.orchestrator.workflow.WorkflowExecutor.run_tick` for that
user.

Lifecycle per user::

    (no job) ──start──▶ SCHEDULED ──stop──▶ STOPPED
                  ▲          │
                  └─restart──┘   (old handle STOPPED, new handle SCHEDULED)

Invariants
----------
* **One live timer per user.**  :meth:`JobRegistry.start` removes the old
  APScheduler job and marks its handle ``STOPPED`` *before* adding the new
  one, all under the registry lock.
* **Start checks login first.**  The credential lookup happens inside the
  same critical section that installs the handle, so a credential deleted
  concurrently makes the start fail with
  :class:`~kgrelay.core.exceptions.UserNotLoggedInError`.
* **Stop is final.**  :meth:`JobRegistry.stop` removes the APScheduler job
  synchronously and flips the handle to ``STOPPED``.  A tick already queued
  on the event loop checks the handle state before running, so no tick starts
  after ``stop`` returns; one already running is allowed to finish.

The registry lock is a plain :class:`threading.Lock` and is never held across
an ``await``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from kgrelay.core import events
from kgrelay.core.exceptions import (
    CredentialNotFoundError,
    InvalidInputError,
    JobNotFoundError,
    UserNotLoggedInError,
)
from kgrelay.core.models import JobState
from kgrelay.storage.cache import CacheCoordinator
from kgrelay.storage.credentials import CredentialStore

__all__ = ["JobHandle", "JobRegistry", "RUNNING", "STOPPED"]

logger = logging.getLogger(__name__)

#: Labels reported by :meth:`JobRegistry.status`.
RUNNING = "Running"
STOPPED = "Stopped"

TickFn = Callable[[str], Awaitable[Any]]


@dataclass
class JobHandle:
    """Live scheduling resource for one user's recurring automation.

    Attributes:
        user_id: Owner of the job.
        schedule: Cron expression the trigger was built from.
        state: :class:`~kgrelay.core.models.JobState`.
        job: The APScheduler job; ``None`` once stopped.
    """

    user_id: str
    schedule: str
    state: JobState = JobState.SCHEDULED
    job: Job | None = None

    @property
    def job_id(self) -> str:
        return f"autocron:{self.user_id}"


class JobRegistry:
    """At-most-one scheduled job per user.

    Args:
        store: Credential store consulted on :meth:`start`.
        tick: Coroutine invoked with the user ID on every trigger fire.
        coordinator: Optional cache coordinator invalidated on start/stop so
            a cached ``/api/getCronStatus`` read cannot go stale.
        scheduler: Injected scheduler; a fresh ``AsyncIOScheduler`` otherwise.
        timezone: Time zone for cron triggers; the host's local zone if
            ``None``.
    """

    def __init__(
        self,
        store: CredentialStore,
        tick: TickFn,
        *,
        coordinator: CacheCoordinator | None = None,
        scheduler: AsyncIOScheduler | None = None,
        timezone: Any = None,
    ) -> None:
        self._store = store
        self._tick = tick
        self._coordinator = coordinator
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        )
        self._timezone = timezone
        self._lock = threading.Lock()
        self._handles: dict[str, JobHandle] = {}

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Scheduler lifecycle
    # ------------------------------------------------------------------

    def start_scheduler(self) -> None:
        """Start the underlying scheduler.  Must run inside the event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Job scheduler started.")

    def shutdown(self) -> None:
        """Cancel every live job and stop the scheduler."""
        with self._lock:
            for handle in self._handles.values():
                self._cancel(handle)
            self._handles.clear()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Job scheduler stopped.")

    # ------------------------------------------------------------------
    # Job operations
    # ------------------------------------------------------------------

    def start(self, user_id: str, schedule: str) -> JobHandle:
        """Schedule (or reschedule) the automation for *user_id*.

        Raises:
            UserNotLoggedInError: No credential is stored for *user_id*.
                Nothing is changed.
            InvalidInputError: *schedule* is not a valid 5-field cron
                expression.  Nothing is changed.
        """
        try:
            trigger = CronTrigger.from_crontab(schedule, timezone=self._timezone)
        except ValueError as exc:
            raise InvalidInputError(f"无效的cron表达式: {schedule}") from exc

        with self._lock:
            try:
                self._store.get(user_id)
            except CredentialNotFoundError as exc:
                raise UserNotLoggedInError(user_id) from exc

            previous = self._handles.pop(user_id, None)
            if previous is not None:
                self._cancel(previous)
                logger.info(
                    "Replaced existing job for user %r", user_id, extra={"event": events.JOB_REPLACED}
                )

            handle = JobHandle(user_id=user_id, schedule=schedule)
            handle.job = self._scheduler.add_job(
                self._fire,
                trigger,
                args=[handle],
                id=handle.job_id,
                name=f"autocron {user_id}",
                replace_existing=True,
            )
            self._handles[user_id] = handle

        logger.info(
            "Scheduled job for user %r with cron %r", user_id, schedule, extra={"event": events.JOB_STARTED}
        )
        self._invalidate()
        return handle

    def stop(self, user_id: str) -> None:
        """Cancel the job for *user_id*.

        The handle stays in the registry in the ``STOPPED`` state so
        :meth:`status` keeps reporting it until the user starts a new job.

        Raises:
            JobNotFoundError: No live job is registered for *user_id*.
        """
        with self._lock:
            handle = self._handles.get(user_id)
            if handle is None or handle.state is JobState.STOPPED:
                raise JobNotFoundError(user_id)
            self._cancel(handle)

        logger.info("Stopped job for user %r", user_id, extra={"event": events.JOB_STOPPED})
        self._invalidate()

    def status(self) -> dict[str, str]:
        """Return ``{user_id: "Running" | "Stopped"}`` for every known handle.

        ``Running`` requires the handle to be scheduled *and* the underlying
        APScheduler job to report a pending next run.
        """
        with self._lock:
            handles = list(self._handles.values())
        return {handle.user_id: RUNNING if self._is_live(handle) else STOPPED for handle in handles}

    def get(self, user_id: str) -> JobHandle | None:
        with self._lock:
            return self._handles.get(user_id)

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for h in self._handles.values() if h.state is JobState.SCHEDULED)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fire(self, handle: JobHandle) -> None:
        """APScheduler entry point; drops fires for handles stopped meanwhile."""
        if handle.state is not JobState.SCHEDULED:
            logger.debug("Ignoring fire for stopped job of user %r", handle.user_id)
            return
        await self._tick(handle.user_id)

    def _cancel(self, handle: JobHandle) -> None:
        handle.state = JobState.STOPPED
        if handle.job is None:
            return
        try:
            self._scheduler.remove_job(handle.job.id)
        except JobLookupError:
            logger.debug("Job %s already gone from the scheduler.", handle.job.id)
        handle.job = None

    def _is_live(self, handle: JobHandle) -> bool:
        if handle.state is not JobState.SCHEDULED or handle.job is None:
            return False
        if not self._scheduler.running:
            return False
        job = self._scheduler.get_job(handle.job_id)
        return job is not None and job.next_run_time is not None

    def _invalidate(self) -> None:
        if self._coordinator is not None:
            self._coordinator.invalidate()
