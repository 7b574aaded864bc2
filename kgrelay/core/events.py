"""Structured log event name constants.

Key state transitions emit a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
surfaces as ``extra.event``; in text mode the message is self-describing.

Usage example::

    import logging
    from kgrelay.core import events

    logger = logging.getLogger(__name__)

    logger.info("Job started", extra={"event": events.JOB_STARTED})
"""

from __future__ import annotations

__all__ = [
    # Credential store
    "LOGIN_SAVED",
    "LOGIN_DELETED",
    "LOGINS_CLEARED",
    "CACHE_CLEARED",
    # Job lifecycle
    "JOB_STARTED",
    "JOB_STOPPED",
    "JOB_REPLACED",
    # Tick lifecycle
    "TICK_START",
    "TICK_SKIPPED",
    "TICK_TOKEN_EXPIRED",
    "TICK_BONUS_CLAIMED",
    "TICK_BONUS_EXHAUSTED",
    "TICK_BONUS_FAILED",
    "TICK_COMPLETE",
    "TICK_ERROR",
    # Dispatch
    "ROUTE_OK",
    "ROUTE_ERROR",
]

# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

LOGIN_SAVED: str = "LOGIN_SAVED"
LOGIN_DELETED: str = "LOGIN_DELETED"
LOGINS_CLEARED: str = "LOGINS_CLEARED"

#: Response cache invalidated (after a mutation or on manual request).
CACHE_CLEARED: str = "CACHE_CLEARED"

# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------

JOB_STARTED: str = "JOB_STARTED"
JOB_STOPPED: str = "JOB_STOPPED"

#: An existing job was torn down because the same user started a new one.
JOB_REPLACED: str = "JOB_REPLACED"

# ---------------------------------------------------------------------------
# Tick lifecycle
# ---------------------------------------------------------------------------

TICK_START: str = "TICK_START"

#: Tick fired but the user no longer has a stored credential.
TICK_SKIPPED: str = "TICK_SKIPPED"

#: Profile fetch lacked the nickname field; remaining steps skipped.
TICK_TOKEN_EXPIRED: str = "TICK_TOKEN_EXPIRED"

TICK_BONUS_CLAIMED: str = "TICK_BONUS_CLAIMED"

#: Remote reported the daily bonus quota as used up.
TICK_BONUS_EXHAUSTED: str = "TICK_BONUS_EXHAUSTED"

TICK_BONUS_FAILED: str = "TICK_BONUS_FAILED"
TICK_COMPLETE: str = "TICK_COMPLETE"

#: An exception escaped a workflow step; the tick was aborted.
TICK_ERROR: str = "TICK_ERROR"

# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

ROUTE_OK: str = "ROUTE_OK"
ROUTE_ERROR: str = "ROUTE_ERROR"
