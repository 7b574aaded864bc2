"""Unit tests for :class:`~kgrelay.upstream.http_client.UpstreamClient`.

All traffic goes through :class:`httpx.MockTransport`; retry waits use
``tenacity.wait_none()`` so nothing sleeps.
"""

from __future__ import annotations

import httpx
import pytest
import tenacity

from kgrelay.upstream.http_client import UpstreamClient, UpstreamResponse, _upstream_wait


def _client(handler, **kwargs) -> UpstreamClient:
    return UpstreamClient(
        base_url="http://upstream.test",
        transport=httpx.MockTransport(handler),
        wait=tenacity.wait_none(),
        **kwargs,
    )


class TestRequest:
    @pytest.mark.asyncio
    async def test_json_body_decoded(self) -> None:
        async with _client(lambda r: httpx.Response(200, json={"status": 1})) as client:
            resp = await client.get("/x")
        assert resp.status == 200
        assert resp.ok
        assert resp.body == {"status": 1}

    @pytest.mark.asyncio
    async def test_text_body_kept_as_text(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="plain")) as client:
            resp = await client.get("/x")
        assert resp.body == "plain"

    @pytest.mark.asyncio
    async def test_set_cookie_pairs_extracted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={},
                headers=[
                    ("set-cookie", "token=abc; Path=/; HttpOnly"),
                    ("set-cookie", "userid=42; Max-Age=60"),
                ],
            )

        async with _client(handler) as client:
            resp = await client.get("/x")
        assert resp.cookie == ["token=abc", "userid=42"]
        assert "set-cookie" not in resp.headers

    @pytest.mark.asyncio
    async def test_cookies_never_persist_between_calls(self) -> None:
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("cookie"))
            return httpx.Response(200, json={}, headers={"set-cookie": "token=leak; Path=/"})

        async with _client(handler) as client:
            await client.get("/x", cookies={"userid": "1"})
            await client.get("/x")
        assert seen == ["userid=1", None]

    @pytest.mark.asyncio
    async def test_non_2xx_returned_not_raised(self) -> None:
        async with _client(lambda r: httpx.Response(404, json={"status": 0})) as client:
            resp = await client.get("/x")
        assert resp.status == 404
        assert not resp.ok

    @pytest.mark.asyncio
    async def test_user_agent_injected_unless_supplied(self) -> None:
        agents: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            agents.append(request.headers["user-agent"])
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            await client.get("/x")
            await client.get("/x", headers={"User-Agent": "custom/1.0"})
        assert agents[0].startswith("Mozilla/5.0")
        assert agents[1] == "custom/1.0"

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            UpstreamClient(max_attempts=0)


class TestRetries:
    @pytest.mark.asyncio
    async def test_retryable_status_then_success(self) -> None:
        statuses = iter([503, 502, 200])
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(next(statuses), json={"n": calls})

        async with _client(handler, max_attempts=3) as client:
            resp = await client.get("/x")
        assert calls == 3
        assert resp.status == 200
        assert resp.body == {"n": 3}

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_last_response(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500, json={"n": calls})

        async with _client(handler, max_attempts=3) as client:
            resp = await client.get("/x")
        assert calls == 3
        assert resp.status == 500
        assert resp.body == {"n": 3}

    @pytest.mark.asyncio
    async def test_per_call_override_disables_retry(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, json={})

        async with _client(handler, max_attempts=3) as client:
            await client.request("GET", "/x", max_attempts=1)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_propagates_after_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler, max_attempts=2) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("/x")
        assert calls == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, json={})

        async with _client(handler, max_attempts=3) as client:
            await client.get("/x")
        assert calls == 1

    def test_wait_honours_retry_after_on_429(self) -> None:
        response = httpx.Response(429, headers={"retry-after": "7"})
        state = tenacity.RetryCallState(None, None, (), {})
        state.attempt_number = 1
        state.set_result(response)
        assert _upstream_wait(state) == 7.0


class TestRequestConfig:
    @pytest.mark.asyncio
    async def test_config_mapped_onto_request(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"status": 1})

        async with _client(handler) as client:
            resp = await client.request_config(
                {
                    "url": "/user/detail",
                    "method": "post",
                    "params": {"a": "1"},
                    "json": {"b": 2},
                    "cookie": {"token": "t"},
                    "ip": "10.0.0.9",
                }
            )

        assert isinstance(resp, UpstreamResponse)
        (request,) = captured
        assert request.method == "POST"
        assert request.url.path == "/user/detail"
        assert request.url.params["a"] == "1"
        assert request.headers["cookie"] == "token=t"
        assert request.headers["x-real-ip"] == "10.0.0.9"
        assert request.headers["x-forwarded-for"] == "10.0.0.9"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={}))
        await client.get("/x")
        await client.close()
        await client.close()
