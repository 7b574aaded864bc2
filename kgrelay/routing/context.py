"""Normalised request context handed to handler modules.

Every dynamic-route call is flattened into one plain ``dict``:

* ``cookie`` — merged mapping, later sources overriding earlier ones:

  1. the ``Cookie`` request header,
  2. a ``cookie`` field in the request body,
  3. a ``cookie`` query parameter,
  4. the ``Authorization`` header (parsed as ``k=v; …``).

  String ``cookie`` values in the query or body are URL-decoded and parsed;
  object values are used as-is.
* every other query parameter, verbatim,
* ``body`` — the parsed request body (``{}`` if none).

Handlers treat the context as read-only; it lives for one request.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote

from kgrelay.core.cookies import cookie_to_dict, parse_cookie_header

__all__ = ["build_request_context", "is_truthy"]


def _coerce_cookie(value: Any) -> dict[str, str]:
    if isinstance(value, str):
        return cookie_to_dict(unquote(value))
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return {}


def build_request_context(
    *,
    query: Mapping[str, Any],
    body: Mapping[str, Any] | None,
    cookie_header: str | None,
    authorization: str | None,
) -> dict[str, Any]:
    """Merge the pieces of one inbound request into a handler context."""
    params = dict(query)
    body_dict = dict(body or {})

    query_cookie = _coerce_cookie(params.pop("cookie", None))
    if "cookie" in body_dict:
        body_dict["cookie"] = _coerce_cookie(body_dict["cookie"])

    cookie = {
        **parse_cookie_header(cookie_header),
        **body_dict.get("cookie", {}),
        **query_cookie,
    }
    if authorization:
        cookie.update(cookie_to_dict(authorization))

    return {"cookie": cookie, **params, "body": body_dict}


def is_truthy(value: Any) -> bool:
    """Interpret a query/body flag such as ``noCookie``."""
    if isinstance(value, str):
        return value.strip().lower() not in {"", "0", "false", "no"}
    return bool(value)
