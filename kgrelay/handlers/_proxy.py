"""Pass-through helper shared by the bundled handler modules.

:func:`forward` relays the call to the same path on the upstream API (the
shared client's ``base_url``), carrying the caller's merged cookies and
query parameters.  The remote envelope convention is ``{"status": 1, ...}``
for success; anything else is raised as
:class:`~kgrelay.core.exceptions.UpstreamError` so the dispatcher forwards
the remote body, including its ``error_code``.
"""

from __future__ import annotations

from typing import Any

from kgrelay.core.exceptions import UpstreamError
from kgrelay.core.models import ModuleResponse, RequestFn

__all__ = ["forward"]

_CONTEXT_ONLY_KEYS = frozenset({"cookie", "body", "noCookie"})


async def forward(path: str, context: dict[str, Any], request_fn: RequestFn) -> ModuleResponse:
    params = {k: v for k, v in context.items() if k not in _CONTEXT_ONLY_KEYS}
    response = await request_fn(
        {
            "url": path,
            "method": "GET",
            "params": params or None,
            "cookie": context.get("cookie") or None,
        }
    )

    body = response.body
    if response.ok and isinstance(body, dict) and body.get("status") == 1:
        return ModuleResponse(status=200, body=body, cookie=response.cookie)

    raise UpstreamError(status=response.status if not response.ok else 502, body=body)
