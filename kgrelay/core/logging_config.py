"""Process-wide logging for kgrelay.

``configure_logging()`` is called once by ``python -m kgrelay``; library code
only ever does ``logger = logging.getLogger(__name__)``.

Every record is stamped with the scheduled tick it belongs to, so the log of
one user's daily run can be grepped out of a busy process::

    2026-03-01 02:00:00 INFO     [u1/3f9c01aa] kgrelay.orchestrator.workflow: Bonus claim 3 succeeded.

Level and format fall back to ``$LOG_LEVEL`` (DEBUG, INFO, WARNING, ERROR;
default INFO) and ``$LOG_FORMAT`` (text or json; default text).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_logging", "JsonFormatter", "TICK_ID_CTX", "TickContextFilter"]

#: ``"<user_id>/<hex8>"`` while :meth:`WorkflowExecutor.run_tick` runs, ``"-"``
#: elsewhere.  Each scheduler job is its own task, so concurrent ticks keep
#: their own value.
TICK_ID_CTX: ContextVar[str] = ContextVar("tick_id", default="-")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
FORMATS = ("text", "json")

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(tick_id)s] %(name)s: %(message)s"

# Chatty at INFO; only let them through when debugging.
_QUIET_BELOW_DEBUG = ("httpx", "httpcore", "asyncio", "apscheduler", "uvicorn.access")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_BUILTIN_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "tick_id",
    "event",
}


class TickContextFilter(logging.Filter):
    """Copy :data:`TICK_ID_CTX` onto the record as ``tick_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.tick_id = TICK_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One flat JSON object per line.

    ``tick`` and ``event`` are top-level so log shippers can index them;
    any other ``extra=`` keys are nested under ``extra``::

        {"ts": "2026-03-01T02:00:00.123+00:00", "level": "INFO",
         "logger": "kgrelay.orchestrator.jobs", "tick": "-",
         "event": "JOB_STARTED", "message": "Job started for user 'u1'"}
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "tick": getattr(record, "tick_id", TICK_ID_CTX.get()),
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
        }
        extra = {k: v for k, v in vars(record).items() if k not in _BUILTIN_ATTRS}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Replace the root handlers with one stderr handler.

    Safe to call again; each call discards the previous configuration.

    Raises:
        ValueError: *level* or *fmt* (or their env fallbacks) is not recognised.
    """
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    fmt = (fmt or os.environ.get("LOG_FORMAT") or "text").lower()
    if level not in LEVELS:
        raise ValueError(f"Unknown LOG_LEVEL {level!r}; expected one of {', '.join(LEVELS)}")
    if fmt not in FORMATS:
        raise ValueError(f"Unknown LOG_FORMAT {fmt!r}; expected one of {', '.join(FORMATS)}")

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(TickContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)

    quiet = logging.NOTSET if level == "DEBUG" else logging.WARNING
    for name in _QUIET_BELOW_DEBUG:
        logging.getLogger(name).setLevel(quiet)
