"""
End-to-end tests for the resolver with in-memory collaborators.
"""

import asyncio

import pytest

from shared.errors import DeadlineExceededError, StoreUnavailableError, UpstreamError
from service_icp.app.caching.backends import CacheBackend
from service_icp.app.caching.store import CacheStore
from service_icp.app.resolver.revalidation import query_key
from service_icp.app.resolver.service import IcpResolver
from service_icp.app.resolver.token_manager import STALE_TOKEN_KEY, TOKEN_KEY


class TestResolve:
    """resolve() as the HTTP layer sees it."""

    @pytest.mark.asyncio
    async def test_cold_then_repeat_costs_no_upstream_calls(self, resolver, upstream, clock):
        first = await resolver.resolve("example.com")
        await resolver.close()
        assert first["domain"] == "example.com"
        assert upstream.token_calls == 1
        assert len(upstream.query_calls) == 1

        clock.advance(59)
        second = await resolver.resolve("example.com")
        await resolver.close()

        assert second == first
        assert upstream.token_calls == 1
        assert len(upstream.query_calls) == 1

    @pytest.mark.asyncio
    async def test_cachable_error_raised_live_and_from_cache(self, resolver, upstream):
        upstream.query_errors["missing.cn"] = UpstreamError(
            "DOMAIN_NOT_FOUND", "No ICP record", status_code=404, cachable=True
        )

        with pytest.raises(UpstreamError) as live:
            await resolver.resolve("missing.cn")
        await resolver.close()

        with pytest.raises(UpstreamError) as cached:
            await resolver.resolve("missing.cn")
        await resolver.close()

        assert live.value.code == cached.value.code == "DOMAIN_NOT_FOUND"
        assert cached.value.cachable
        assert len(upstream.query_calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_independence(self, resolver, upstream, backend):
        upstream.query_delay = 0.2

        with pytest.raises(DeadlineExceededError):
            await resolver.resolve("slow.example.com", deadline=0.05)

        await resolver.close()
        assert await backend.read(query_key("slow.example.com")) is not None

        result = await resolver.resolve("slow.example.com", deadline=0.05)
        assert result["domain"] == "slow.example.com"
        assert len(upstream.query_calls) == 1

    @pytest.mark.asyncio
    async def test_token_reused_once_warm(self, resolver, upstream):
        first, second = await asyncio.gather(
            resolver.resolve("a.example.com"),
            resolver.resolve("b.example.com"),
        )
        await resolver.close()
        acquired = upstream.token_calls
        assert 1 <= acquired <= 2

        await resolver.resolve("c.example.com")
        await resolver.close()

        assert upstream.token_calls == acquired
        assert {first["domain"], second["domain"]} == {"a.example.com", "b.example.com"}

    @pytest.mark.asyncio
    async def test_concurrent_cold_lookups_are_not_deduplicated(self, resolver, upstream):
        await asyncio.gather(
            resolver.resolve("example.com"),
            resolver.resolve("example.com"),
        )
        await resolver.close()

        assert len(upstream.query_calls) == 2


class TestTokenWarm:
    """resolve(None) runs the token manager alone."""

    @pytest.mark.asyncio
    async def test_warm_populates_token_slots(self, resolver, upstream, backend):
        assert await resolver.resolve(None) is None
        await resolver.close()

        assert (await backend.read(TOKEN_KEY)).value == "token-1"
        assert (await backend.read(STALE_TOKEN_KEY)).value == "token-1"
        assert upstream.query_calls == []

    @pytest.mark.asyncio
    async def test_warm_respects_deadline(self, resolver, upstream, metrics):
        upstream.token_gate = asyncio.Event()

        with pytest.raises(DeadlineExceededError):
            await resolver.resolve(None, deadline=0.05)

        upstream.token_gate.set()
        await resolver.close()
        assert metrics.sample("deadline_exceeded_total", mode="token_warm") == 1.0


class _DownBackend(CacheBackend):
    async def read(self, key):
        raise StoreUnavailableError(details={"key": key})

    async def write(self, key, value, expiry):
        raise StoreUnavailableError(details={"key": key})

    async def ping(self):
        return False

    async def close(self):
        return None


@pytest.mark.asyncio
async def test_store_outage_surfaces(upstream, config, metrics):
    resolver = IcpResolver(CacheStore(_DownBackend()), upstream, config=config, metrics=metrics)

    with pytest.raises(StoreUnavailableError):
        await resolver.resolve("example.com")
    await resolver.close()

    assert upstream.query_calls == []
