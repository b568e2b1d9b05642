"""
Shared fixtures for ICP lookup service tests.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from shared.circuit_breaker import CircuitBreaker
from shared.config import BaseConfig
from shared.metrics import MetricsCollector
from service_icp.app.caching.background import BackgroundTasks
from service_icp.app.caching.backends import MemoryCacheBackend
from service_icp.app.caching.store import CacheStore
from service_icp.app.resolver.service import IcpResolver


class FakeClock:
    """Manually advanced clock shared by the memory backend and the store."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIcpClient:
    """In-memory stand-in for IcpClient that counts upstream calls."""

    def __init__(self):
        self.token_calls = 0
        self.query_calls: List[Tuple[str, str]] = []
        self.records: Dict[str, Any] = {}
        self.query_errors: Dict[str, Exception] = {}
        self.token_error: Optional[Exception] = None
        self.token_gate: Optional[asyncio.Event] = None
        self.query_gate: Optional[asyncio.Event] = None
        self.query_delay = 0.0
        self.closed = False
        self.circuit_breaker = CircuitBreaker(name="fake_upstream")

    async def get_token(self) -> str:
        self.token_calls += 1
        call = self.token_calls
        if self.token_gate is not None:
            await self.token_gate.wait()
        if self.token_error is not None:
            raise self.token_error
        return f"token-{call}"

    async def query_icp(self, token: str, domain: str) -> Dict[str, Any]:
        self.query_calls.append((token, domain))
        if self.query_gate is not None:
            await self.query_gate.wait()
        if self.query_delay:
            await asyncio.sleep(self.query_delay)
        if domain in self.query_errors:
            raise self.query_errors[domain]
        return self.records.get(domain, {
            "domain": domain,
            "unitName": "Example Network Technology Co., Ltd.",
            "natureName": "Enterprise",
            "serviceLicence": "ICP-12345678-1",
        })

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    """Deterministic clock."""
    return FakeClock()


@pytest.fixture
def backend(clock):
    """In-memory backend driven by the fake clock."""
    return MemoryCacheBackend(clock=clock)


@pytest.fixture
def store(backend, clock):
    """Cache store over the in-memory backend."""
    return CacheStore(backend, clock=clock)


@pytest.fixture
def upstream():
    """Fake upstream client."""
    return FakeIcpClient()


@pytest.fixture
def metrics():
    """Metrics collector with its own registry."""
    return MetricsCollector("icp")


@pytest.fixture
def background(metrics):
    """Background task tracker."""
    return BackgroundTasks(metrics)


@pytest.fixture
def config():
    """Configuration with the documented defaults."""
    return BaseConfig(_env_file=None, cache_backend="memory")


@pytest.fixture
def resolver(store, upstream, config, background, metrics):
    """Resolver wired to the fakes."""
    return IcpResolver(store, upstream, config=config, background=background, metrics=metrics)
