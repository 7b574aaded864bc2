"""Shared async HTTP client for downstream calls.

Wraps :class:`httpx.AsyncClient` with:

* **User-Agent rotation** — a random browser UA is injected into every
  outgoing request unless the caller supplies one.
* **Automatic retries** — transport errors and HTTP 429/5xx are retried with
  exponential back-off and jitter via :mod:`tenacity`.  429 honours
  ``Retry-After``.
* **Status pass-through** — unlike a typical fetch helper, non-2xx responses
  are *returned*, not raised.  Handler modules forward the remote status to
  their caller, and the scheduled workflow branches on the JSON body
  (``status`` / ``error_code``) rather than the HTTP status.  When retries run
  out on a retryable status the last response is returned; when they run out
  on a transport error that error propagates.

One instance is shared by the dispatcher (via each handler's ``request_fn``)
and the :class:`~kgrelay.orchestrator.workflow.WorkflowExecutor`, so both
reuse the same connection pool.

Typical usage::

    async with UpstreamClient(base_url="https://gateway.kugou.com") as client:
        resp = await client.request("GET", "/v1/user/detail", cookies={"token": "t"})
        resp.body["data"]
"""

from __future__ import annotations

import logging
import random
from http.cookiejar import CookieJar, DefaultCookiePolicy
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

__all__ = ["UpstreamClient", "UpstreamResponse"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes worth another attempt.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
_DEFAULT_READ_TIMEOUT: Final[float] = 20.0
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 30.0
_MAX_BACKOFF_JITTER: Final[float] = 5.0

_USER_AGENTS: Final[list[str]] = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:125.0) "
        "Gecko/20100101 Firefox/125.0"
    ),
    (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/17.4 Mobile/15E148 Safari/604.1"
    ),
    (
        "Mozilla/5.0 (Linux; Android 14; Pixel 8) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.6367.82 Mobile Safari/537.36"
    ),
]


def _pick_user_agent() -> str:
    return random.choice(_USER_AGENTS)


# ---------------------------------------------------------------------------
# Response value
# ---------------------------------------------------------------------------


@dataclass
class UpstreamResponse:
    """Decoded downstream response.

    Attributes:
        status: HTTP status code.
        body: Parsed JSON when the payload is JSON, otherwise the text.
        headers: Response headers (lower-cased names).
        cookie: ``"name=value"`` pairs taken from ``Set-Cookie`` headers.
    """

    status: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)
    cookie: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _decode(response: httpx.Response) -> UpstreamResponse:
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    cookies = [
        raw.split(";", 1)[0].strip() for raw in response.headers.get_list("set-cookie")
    ]
    return UpstreamResponse(
        status=response.status_code,
        body=body,
        headers={k.lower(): v for k, v in response.headers.items() if k.lower() != "set-cookie"},
        cookie=[c for c in cookies if c],
    )


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


def _is_retryable_response(response: httpx.Response | None) -> bool:
    return response is not None and response.status_code in _RETRYABLE_STATUS


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after", "")
    try:
        return max(float(header), 1.0) if header else None
    except ValueError:
        logger.debug("Could not parse Retry-After header %r.", header)
        return None


def _upstream_wait(retry_state: RetryCallState) -> float:
    """Honour ``Retry-After`` on 429, else exponential back-off with jitter."""
    outcome = retry_state.outcome
    if outcome is not None and not outcome.failed:
        response = outcome.result()
        if response is not None and response.status_code == 429:
            hint = _retry_after(response)
            if hint is not None:
                return hint

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))


def _return_last_outcome(retry_state: RetryCallState) -> Any:
    """Give back the last response, or re-raise the last transport error."""
    assert retry_state.outcome is not None
    return retry_state.outcome.result()


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class UpstreamClient:
    """Async HTTP client used for every downstream call.

    Use as an ``async with`` context manager, or call :meth:`close`.

    Args:
        base_url: Optional base URL for relative request paths.
        headers: Default headers merged into every request.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        max_attempts: Total attempts including the initial try (≥ 1).
        transport: Optional :class:`httpx.AsyncBaseTransport` (tests pass an
            :class:`httpx.MockTransport`).
        wait: Retry wait strategy; tests pass ``tenacity.wait_none()``.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
        wait: Any = _upstream_wait,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._base_url = base_url
        self._default_headers: dict[str, str] = headers or {}
        self._max_attempts = max_attempts
        self._transport = transport
        self._wait = wait
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=10.0,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> UpstreamClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> UpstreamResponse:
        """Perform one downstream call with retries.

        Args:
            method: HTTP verb.
            url: Absolute URL or path relative to ``base_url``.
            params: Query-string parameters.
            json: JSON body.  Mutually exclusive with ``data``.
            data: Form-encoded body.
            headers: Per-request headers; a caller-supplied ``User-Agent``
                disables UA rotation for this call.
            cookies: Sent as a single ``Cookie`` header.
            max_attempts: Per-call override of the client-wide attempt budget.
                Non-idempotent calls pass ``1``.

        Returns:
            The decoded response, whatever its status.

        Raises:
            httpx.TransportError: When every attempt failed at network level.
        """
        attempts = max_attempts or self._max_attempts
        request_headers = dict(headers or {})
        if cookies:
            request_headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in cookies.items())

        def _before_sleep(rs: RetryCallState) -> None:
            outcome = rs.outcome
            reason = "?"
            if outcome is not None:
                reason = (
                    type(outcome.exception()).__name__
                    if outcome.failed
                    else f"HTTP {outcome.result().status_code}"
                )
            logger.warning(
                "HTTP %s %s — attempt %d/%d failed (%s). Retrying…",
                method,
                url,
                rs.attempt_number,
                attempts,
                reason,
            )

        response: httpx.Response | None = None
        async for attempt in AsyncRetrying(
            wait=self._wait,
            stop=stop_after_attempt(attempts),
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(_is_retryable_response)
            ),
            retry_error_callback=_return_last_outcome,
            before_sleep=_before_sleep,
        ):
            with attempt:
                response = await self._single_request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    data=data,
                    headers=request_headers,
                )
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(response)

        assert response is not None, "tenacity exited without a response or exception"
        return _decode(response)

    async def get(self, url: str, **kwargs: Any) -> UpstreamResponse:
        return await self.request("GET", url, **kwargs)

    async def request_config(self, config: dict[str, Any]) -> UpstreamResponse:
        """Perform a call described by a handler's request config.

        Recognised keys: ``url`` (required), ``method`` (default ``GET``),
        ``params``, ``data``, ``json``, ``headers``, ``cookie`` (mapping) and
        ``ip`` (forwarded as ``X-Real-IP`` / ``X-Forwarded-For``).
        """
        headers = dict(config.get("headers") or {})
        ip = config.get("ip")
        if ip:
            headers.setdefault("X-Real-IP", ip)
            headers.setdefault("X-Forwarded-For", ip)
        return await self.request(
            str(config.get("method", "GET")).upper(),
            config["url"],
            params=config.get("params"),
            json=config.get("json"),
            data=config.get("data"),
            headers=headers,
            cookies=config.get("cookie") or None,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("UpstreamClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
                # One client serves every user; never persist Set-Cookie between calls.
                cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
                headers={
                    "Accept": "application/json, text/plain, */*",
                    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
                    **self._default_headers,
                },
            )
            logger.debug(
                "UpstreamClient session opened (base_url=%r).", self._base_url or "(none)"
            )
        return self._http

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json: Any | None,
        data: dict[str, Any] | None,
        headers: dict[str, str],
    ) -> httpx.Response:
        client = await self._ensure_client()

        request_headers = {"User-Agent": _pick_user_agent(), **headers}
        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                json=json,
                data=data,
                headers=request_headers,
            )
        except httpx.TransportError:
            logger.debug("Transport error on %s %s.", method, url, exc_info=True)
            raise

        logger.debug("HTTP %s %s → %d", method, url, response.status_code)
        return response
