"""Mount discovered handler modules onto the FastAPI app.

For each :class:`~kgrelay.core.models.RouteEntry`, :func:`mount_routes`
registers one endpoint that:

1. builds the normalised context (:func:`~kgrelay.routing.context.build_request_context`),
2. awaits ``handler(context, request_fn)`` where ``request_fn`` forwards a
   request config to the shared :class:`~kgrelay.upstream.http_client.UpstreamClient`
   with the caller's IP attached (``::ffff:`` prefix stripped),
3. maps the outcome onto the HTTP response.

Success: every returned cookie becomes a ``Set-Cookie`` header, suffixed
``; PATH=/; SameSite=None; Secure`` over https and ``; PATH=/`` otherwise,
unless the context carries a truthy ``noCookie``.  Status, headers and body
are then written verbatim.

Failure: an exception without a ``body`` (or with an empty one) is answered
with the 404 envelope; otherwise its ``status``/``headers``/``body`` are
forwarded.  Handlers signal remote failures with
:class:`~kgrelay.core.exceptions.UpstreamError`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import parse_qsl, unquote

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from kgrelay.core import events
from kgrelay.core.cookies import strip_ipv4_mapped_prefix
from kgrelay.core.models import ModuleResponse, RouteEntry
from kgrelay.routing.context import build_request_context, is_truthy
from kgrelay.upstream.http_client import UpstreamClient

__all__ = [
    "NOT_FOUND_BODY",
    "ROUTE_METHODS",
    "mount_routes",
    "read_payload",
    "is_secure",
    "client_ip",
]

logger = logging.getLogger(__name__)

NOT_FOUND_BODY: dict[str, Any] = {"code": 404, "data": None, "msg": "Not Found"}

ROUTE_METHODS: list[str] = ["GET", "POST", "PUT", "DELETE"]

_SECURE_COOKIE_SUFFIX = "; PATH=/; SameSite=None; Secure"
_PLAIN_COOKIE_SUFFIX = "; PATH=/"


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


async def read_payload(request: Request) -> dict[str, Any]:
    """Parse a JSON or urlencoded body into a dict; anything else is ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(raw.decode("utf-8", errors="replace"), keep_blank_values=True))
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.debug("Ignoring unparseable request body (%d bytes).", len(raw))
        return {}
    return parsed if isinstance(parsed, dict) else {}


def is_secure(request: Request, trust_proxy: bool = False) -> bool:
    """``True`` when the client connection used https.

    ``X-Forwarded-Proto`` is only believed when *trust_proxy* is set.
    """
    forwarded = request.headers.get("x-forwarded-proto") if trust_proxy else None
    if forwarded:
        return forwarded.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


def client_ip(request: Request, trust_proxy: bool = False) -> str:
    """Caller IP: the socket peer, or the first ``X-Forwarded-For`` hop behind a trusted proxy."""
    forwarded = request.headers.get("x-forwarded-for") if trust_proxy else None
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else ""
    return strip_ipv4_mapped_prefix(ip)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _render(status: int, headers: Mapping[str, str] | None, body: Any) -> Response:
    if isinstance(body, (bytes, str)):
        return Response(content=body, status_code=status, headers=dict(headers or {}))
    return JSONResponse(content=body, status_code=status, headers=dict(headers or {}))


def _as_module_response(result: Any) -> ModuleResponse:
    """Accept a :class:`ModuleResponse`, any object with the same fields, or a mapping."""
    if isinstance(result, ModuleResponse):
        return result
    if isinstance(result, Mapping):
        return ModuleResponse(
            status=int(result.get("status", 200)),
            body=result.get("body"),
            headers=dict(result.get("headers") or {}),
            cookie=list(result.get("cookie") or []),
        )
    return ModuleResponse(
        status=int(getattr(result, "status", 200)),
        body=getattr(result, "body", None),
        headers=dict(getattr(result, "headers", None) or {}),
        cookie=list(getattr(result, "cookie", None) or []),
    )


def _attach_cookies(response: Response, cookies: Sequence[str], secure: bool) -> None:
    suffix = _SECURE_COOKIE_SUFFIX if secure else _PLAIN_COOKIE_SUFFIX
    for cookie in cookies:
        response.headers.append("set-cookie", f"{cookie}{suffix}")


# ---------------------------------------------------------------------------
# Mounting
# ---------------------------------------------------------------------------


def _make_endpoint(entry: RouteEntry, client: UpstreamClient, trust_proxy: bool):
    async def endpoint(request: Request) -> Response:
        url = unquote(str(request.url.path) + (f"?{request.url.query}" if request.url.query else ""))
        context = build_request_context(
            query=dict(request.query_params),
            body=await read_payload(request),
            cookie_header=request.headers.get("cookie"),
            authorization=request.headers.get("authorization"),
        )
        ip = client_ip(request, trust_proxy)

        async def request_fn(config: dict[str, Any]) -> Any:
            config["ip"] = ip
            return await client.request_config(config)

        try:
            result = _as_module_response(await entry.handler(context, request_fn))
        except Exception as exc:  # noqa: BLE001
            status = getattr(exc, "status", None)
            body = getattr(exc, "body", None)
            logger.info(
                "[ERR] %s status=%s body=%r",
                url,
                status,
                body,
                extra={"event": events.ROUTE_ERROR},
            )
            if not body:
                return JSONResponse(content=NOT_FOUND_BODY, status_code=404)
            return _render(int(status or 502), getattr(exc, "headers", None), body)

        logger.info("[OK] %s", url, extra={"event": events.ROUTE_OK})
        response = _render(result.status, result.headers, result.body)
        if result.cookie and not is_truthy(context.get("noCookie")):
            _attach_cookies(response, result.cookie, is_secure(request, trust_proxy))
        return response

    endpoint.__name__ = f"route_{entry.identifier}"
    return endpoint


def mount_routes(
    app: FastAPI,
    entries: Sequence[RouteEntry],
    client: UpstreamClient,
    *,
    trust_proxy: bool = False,
) -> None:
    """Register one endpoint per entry, in table order.

    With *trust_proxy* the caller IP and scheme come from ``X-Forwarded-*``
    headers; otherwise from the socket.
    """
    for entry in entries:
        app.add_api_route(
            entry.path,
            _make_endpoint(entry, client, trust_proxy),
            methods=ROUTE_METHODS,
            name=entry.identifier,
            include_in_schema=False,
        )
        logger.debug("Mounted %s → %s", entry.path, entry.identifier)
