"""
Unit tests for the upstream ICP client.
"""

import hashlib
import json

import httpx
import pytest

from shared.errors import UpstreamError
from shared.metrics import MetricsCollector
from service_icp.app.adapters.icp_client import IcpClient, is_breaker_failure


RECORD = {
    "domain": "example.com",
    "unitName": "Example Network Technology Co., Ltd.",
    "serviceLicence": "ICP-12345678-1",
}


def make_client(handler, **kwargs):
    """Build a client whose HTTP traffic goes to ``handler``."""
    kwargs.setdefault("clock", lambda: 1700000000.0)
    return IcpClient(
        "https://upstream.test/icpproject_query/api/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def ok(params):
    return httpx.Response(200, json={"code": 200, "success": True, "params": params})


class TestGetToken:
    """Token acquisition."""

    @pytest.mark.asyncio
    async def test_token_request_signs_timestamp(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["form"] = dict(httpx.QueryParams(request.content.decode()))
            return ok({"bussiness": "tok-abc", "expire": 300000})

        client = make_client(handler)
        token = await client.get_token()
        await client.close()

        assert token == "tok-abc"
        assert seen["path"] == "/icpproject_query/api/auth"
        assert seen["form"]["timeStamp"] == "1700000000000"
        assert seen["form"]["authKey"] == hashlib.md5(b"testtest1700000000000").hexdigest()

    @pytest.mark.asyncio
    async def test_missing_token_is_auth_failure(self):
        client = make_client(lambda request: ok({}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.get_token()
        await client.close()

        assert exc_info.value.code == "UPSTREAM_AUTH_FAILED"
        assert not exc_info.value.cachable


class TestQueryIcp:
    """Record queries and error mapping."""

    @pytest.mark.asyncio
    async def test_query_returns_first_record(self):
        seen = {}

        def handler(request):
            seen["token"] = request.headers["Token"]
            seen["body"] = json.loads(request.content)
            return ok({"list": [RECORD, {"domain": "other"}], "total": 2})

        client = make_client(handler)
        record = await client.query_icp("tok-abc", "example.com")
        await client.close()

        assert record == RECORD
        assert seen["token"] == "tok-abc"
        assert seen["body"]["unitName"] == "example.com"

    @pytest.mark.asyncio
    async def test_empty_list_is_cachable_not_found(self):
        client = make_client(lambda request: ok({"list": [], "total": 0}))

        with pytest.raises(UpstreamError) as exc_info:
            await client.query_icp("tok", "missing.cn")
        await client.close()

        assert exc_info.value.code == "DOMAIN_NOT_FOUND"
        assert exc_info.value.status_code == 404
        assert exc_info.value.cachable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,code,cachable", [
        (httpx.Response(400, text="bad domain"), "INVALID_DOMAIN", True),
        (httpx.Response(200, json={"success": False, "code": 400, "msg": "bad"}), "INVALID_DOMAIN", True),
        (httpx.Response(401), "UPSTREAM_AUTH_FAILED", False),
        (httpx.Response(200, json={"success": False, "code": 401, "msg": "token expired"}), "UPSTREAM_AUTH_FAILED", False),
        (httpx.Response(500, text="oops"), "UPSTREAM_ERROR", False),
        (httpx.Response(200, json={"success": False, "code": 500}), "UPSTREAM_ERROR", False),
        (httpx.Response(200, text="<html>"), "UPSTREAM_BAD_RESPONSE", False),
        (httpx.Response(200, json=["unexpected"]), "UPSTREAM_BAD_RESPONSE", False),
    ])
    async def test_error_mapping(self, response, code, cachable):
        client = make_client(lambda request: response)

        with pytest.raises(UpstreamError) as exc_info:
            await client.query_icp("tok", "example.com")
        await client.close()

        assert exc_info.value.code == code
        assert exc_info.value.cachable is cachable

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamError) as exc_info:
            await client.query_icp("tok", "example.com")
        await client.close()

        assert exc_info.value.code == "UPSTREAM_UNAVAILABLE"
        assert exc_info.value.status_code == 502
        assert not exc_info.value.cachable


class TestCircuitBreaking:
    """Breaker integration."""

    def test_breaker_ignores_cachable_errors(self):
        assert not is_breaker_failure(UpstreamError("DOMAIN_NOT_FOUND", "x", status_code=404, cachable=True))
        assert is_breaker_failure(UpstreamError("UPSTREAM_ERROR", "x"))
        assert is_breaker_failure(RuntimeError("x"))

    @pytest.mark.asyncio
    async def test_breaker_opens_after_repeated_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, failure_threshold=2)
        for _ in range(2):
            with pytest.raises(UpstreamError):
                await client.query_icp("tok", "example.com")

        with pytest.raises(UpstreamError) as exc_info:
            await client.query_icp("tok", "example.com")
        await client.close()

        assert exc_info.value.code == "UPSTREAM_CIRCUIT_OPEN"
        assert exc_info.value.status_code == 503
        assert not exc_info.value.cachable
        assert len(calls) == 2
        assert client.circuit_breaker.is_open()

    @pytest.mark.asyncio
    async def test_not_found_answers_do_not_open_breaker(self):
        client = make_client(lambda request: ok({"list": []}), failure_threshold=1)

        for _ in range(3):
            with pytest.raises(UpstreamError) as exc_info:
                await client.query_icp("tok", "missing.cn")
            assert exc_info.value.code == "DOMAIN_NOT_FOUND"
        await client.close()

        assert not client.circuit_breaker.is_open()


@pytest.mark.asyncio
async def test_upstream_calls_are_recorded():
    metrics = MetricsCollector("icp")

    def handler(request):
        if request.url.path.endswith("/auth"):
            return ok({"bussiness": "tok"})
        return ok({"list": []})

    client = make_client(handler, metrics=metrics)
    await client.get_token()
    with pytest.raises(UpstreamError):
        await client.query_icp("tok", "missing.cn")
    await client.close()

    assert metrics.sample("upstream_calls_total", operation="auth", outcome="ok") == 1.0
    assert metrics.sample("upstream_calls_total", operation="query", outcome="cachable_error") == 1.0
    assert metrics.sample("upstream_calls_total", operation="query", outcome="ok") is None


@pytest.mark.asyncio
async def test_cachable_answers_are_recorded_alike():
    metrics = MetricsCollector("icp")

    def handler(request):
        body = json.loads(request.content)
        if body["unitName"] == "bad..domain":
            return httpx.Response(400, text="invalid")
        return ok({"list": []})

    client = make_client(handler, metrics=metrics)
    for domain in ("missing.cn", "bad..domain"):
        with pytest.raises(UpstreamError) as exc_info:
            await client.query_icp("tok", domain)
        assert exc_info.value.cachable
    await client.close()

    assert metrics.sample("upstream_calls_total", operation="query", outcome="cachable_error") == 2.0
    assert metrics.sample("upstream_calls_total", operation="query", outcome="ok") is None
