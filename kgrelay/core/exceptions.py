"""kgrelay exception taxonomy.

Every custom exception inherits from :class:`KgRelayError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    KgRelayError
    ├── ConfigError
    ├── InvalidInputError
    ├── StoreError
    │   └── CredentialNotFoundError
    ├── SchedulerError
    │   ├── UserNotLoggedInError
    │   └── JobNotFoundError
    ├── UpstreamError
    └── WorkflowStepError

Management endpoints translate everything except :class:`UpstreamError` into
a ``{"status": 0, "msg": ...}`` envelope; only dynamic routes ever surface a
non-2xx HTTP status.

Usage:

    from kgrelay.core.exceptions import UserNotLoggedInError

    raise UserNotLoggedInError(user_id)
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "KgRelayError",
    "ConfigError",
    "InvalidInputError",
    # Store
    "StoreError",
    "CredentialNotFoundError",
    # Scheduler
    "SchedulerError",
    "UserNotLoggedInError",
    "JobNotFoundError",
    # Upstream / workflow
    "UpstreamError",
    "WorkflowStepError",
]

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class KgRelayError(Exception):
    """Root exception for all kgrelay errors."""


class ConfigError(KgRelayError):
    """Raised when the application configuration is invalid or incomplete."""


class InvalidInputError(KgRelayError):
    """Raised when a management call is missing a required field.

    The message is user-facing: it is copied verbatim into the ``msg`` field
    of the ``{"status": 0}`` envelope.
    """


# ---------------------------------------------------------------------------
# Store layer
# ---------------------------------------------------------------------------


class StoreError(KgRelayError):
    """Base class for in-memory store errors."""


class CredentialNotFoundError(StoreError):
    """Raised when no credential is stored for a user.

    Args:
        user_id: The user identifier that was looked up.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No credential stored for user {user_id!r}")


# ---------------------------------------------------------------------------
# Scheduler layer
# ---------------------------------------------------------------------------


class SchedulerError(KgRelayError):
    """Base class for job lifecycle errors."""


class UserNotLoggedInError(SchedulerError):
    """Raised when a job is started for a user with no stored credential."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id!r} does not exist or is not logged in")


class JobNotFoundError(SchedulerError):
    """Raised when stopping a job that is not registered."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No scheduled job for user {user_id!r}")


# ---------------------------------------------------------------------------
# Upstream / workflow layer
# ---------------------------------------------------------------------------


class UpstreamError(KgRelayError):
    """Raised by handler modules when the proxied call failed.

    Carries the same ``status`` / ``headers`` / ``body`` triple as a
    successful module response so the dispatcher can forward it verbatim.
    An empty ``body`` is the canonical "route recognised, resource not found"
    signal and is answered with the 404 envelope.

    Args:
        status: HTTP status to forward.
        body: Response body to forward; falsy means "not found".
        headers: Extra response headers.
    """

    def __init__(
        self,
        status: int = 502,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.headers = headers or {}
        super().__init__(f"Upstream failure (HTTP {status})")


class WorkflowStepError(KgRelayError):
    """Raised inside a scheduled tick when a step cannot continue.

    Never escapes :meth:`~kgrelay.orchestrator.workflow.WorkflowExecutor.run_tick`.

    Args:
        step: Short name of the failing step (e.g. ``"profile"``).
        message: Human-readable error description.
    """

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        super().__init__(f"[{step}] {message}")
