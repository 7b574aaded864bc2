"""Current user's VIP membership details."""

from __future__ import annotations

from typing import Any

from kgrelay.core.models import ModuleResponse, RequestFn
from kgrelay.handlers._proxy import forward


async def handle(context: dict[str, Any], request_fn: RequestFn) -> ModuleResponse:
    return await forward("/user/vip/detail", context, request_fn)
