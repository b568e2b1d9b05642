"""
Entry point tying the token manager, revalidation engine and deadline guard
together.
"""

from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

from shared.config import BaseConfig
from shared.logging import get_logger

from ..caching.background import BackgroundTasks
from ..caching.store import CacheStore
from .deadline import DeadlineGuard
from .outcome import QueryOutcome
from .revalidation import RevalidationEngine
from .token_manager import TokenManager

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.icp_client import IcpClient
    from shared.metrics import MetricsCollector


class IcpResolver:
    """
    Resolves lookup subjects for the HTTP layer and the token warm job.

    The store, upstream client and background tracker are injected; nothing
    here is a process-wide singleton.
    """

    def __init__(
        self,
        store: CacheStore,
        client: "IcpClient",
        *,
        config: Optional[BaseConfig] = None,
        background: Optional[BackgroundTasks] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        config = config or BaseConfig()
        self.store = store
        self.client = client
        self.metrics = metrics
        self.background = background or BackgroundTasks(metrics)
        self.logger = get_logger("icp.resolver")

        self.tokens = TokenManager(
            store,
            client,
            self.background,
            fresh_ttl=config.token_fresh_ttl,
            stale_ttl=config.token_stale_ttl,
            read_ttl=config.read_ttl_seconds or None,
            metrics=metrics,
        )
        self.engine = RevalidationEngine(
            store,
            client,
            self.tokens,
            self.background,
            result_fresh_ttl=config.result_fresh_ttl,
            error_fresh_ttl=config.error_fresh_ttl,
            result_stale_ttl=config.result_stale_ttl,
            metrics=metrics,
        )
        self.guard = DeadlineGuard(self.background, config.deadline_seconds, metrics)

    async def resolve_outcome(self, subject: str, deadline: Optional[float] = None) -> QueryOutcome:
        """Resolve ``subject`` to its outcome under the deadline."""
        return await self.guard.run(
            self.engine.lookup(subject),
            name=f"lookup:{subject}",
            timeout=deadline,
        )

    async def resolve(self, subject: Optional[str], deadline: Optional[float] = None) -> Optional[Any]:
        """
        Resolve ``subject`` to its record.

        Raises the captured UpstreamError for cachable failures, whether they
        came from cache or a live call. With ``subject=None`` only the token
        is warmed and None is returned.
        """
        if subject is None:
            await self.warm_token(deadline)
            return None

        outcome = await self.resolve_outcome(subject, deadline)
        return outcome.unwrap()

    async def warm_token(self, deadline: Optional[float] = None) -> str:
        """Run the token manager alone, as the scheduled trigger does."""
        token = await self.guard.run(
            self.tokens.get_token(),
            name="warm:token",
            timeout=deadline,
            mode="token_warm",
        )
        self.logger.debug("Token warm completed")
        return token

    async def close(self, timeout: Optional[float] = None) -> int:
        """Drain detached work. Returns the number of tasks left running."""
        return await self.background.drain(timeout)
