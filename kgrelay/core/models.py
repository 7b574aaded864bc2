"""kgrelay core domain models.

Typical usage::

    from kgrelay.core.models import CredentialRecord, ModuleResponse

    record = CredentialRecord(user_id="u1", token="t1")
    record.to_public()        # {"userId": "u1", "token": "t1", "savedAt": ...}

    return ModuleResponse(status=200, body={"status": 1}, cookie=["token=abc"])
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "CredentialRecord",
    "JobState",
    "ModuleResponse",
    "RequestFn",
    "Handler",
    "RouteEntry",
]

# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class CredentialRecord(BaseModel):
    """Stored session token for one user.

    Records are immutable; a re-save replaces the record wholesale.

    Attributes:
        user_id: Unique user identifier (store key).
        token: Session token forwarded to the remote API as a cookie.
        saved_at: UTC timestamp of the save that created this record.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    saved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("user_id", "token")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    def to_public(self) -> dict[str, Any]:
        """Project onto the three fields exposed by ``/api/getLogins``."""
        return {
            "userId": self.user_id,
            "token": self.token,
            "savedAt": self.saved_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Job registry
# ---------------------------------------------------------------------------


class JobState(StrEnum):
    """Lifecycle of a per-user scheduled job."""

    SCHEDULED = "scheduled"
    STOPPED = "stopped"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@dataclass
class ModuleResponse:
    """Value returned by a handler module on success.

    Attributes:
        status: HTTP status code to send.
        body: JSON-serialisable body, ``str`` or ``bytes``.
        headers: Extra response headers.
        cookie: ``"name=value"`` strings turned into ``Set-Cookie`` headers.
    """

    status: int = 200
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    cookie: list[str] = field(default_factory=list)


#: Downstream-call capability injected into every handler.
RequestFn = Callable[[dict[str, Any]], Awaitable[Any]]

#: Handler signature: ``await handle(context, request_fn) -> ModuleResponse``.
Handler = Callable[[dict[str, Any], RequestFn], Awaitable[ModuleResponse]]


@dataclass(frozen=True)
class RouteEntry:
    """One discovered handler module bound to a route path.

    Attributes:
        identifier: Module file stem (``"user_detail"``).
        path: Route path (``"/user/detail"``).
        handler: The module's ``handle`` coroutine, or the module's file path
            when discovery ran without importing.
    """

    identifier: str
    path: str
    handler: Any
