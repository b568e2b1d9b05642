"""
Upstream auth token caching with background refresh.
"""

from __future__ import annotations

import asyncio
from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger

from ..caching.background import BackgroundTasks
from ..caching.store import CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.icp_client import IcpClient
    from shared.metrics import MetricsCollector


TOKEN_KEY = "token"
STALE_TOKEN_KEY = "stale:token"


class TokenManager:
    """
    Serves the upstream token from cache, refreshing it behind the caller.

    A fresh slot answers immediately. Without one, a single acquisition is
    started; a stale slot answers this call while that acquisition runs,
    otherwise the caller waits for it. Whichever branch ran, a completed
    acquisition is written to both slots in the background.

    Concurrent invocations are not de-duplicated: two callers that both miss
    the fresh slot each start their own acquisition.
    """

    def __init__(
        self,
        store: CacheStore,
        client: "IcpClient",
        background: BackgroundTasks,
        *,
        fresh_ttl: int = 120,
        stale_ttl: int = 240,
        read_ttl: Optional[float] = 60,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.client = client
        self.background = background
        self.fresh_ttl = fresh_ttl
        self.stale_ttl = stale_ttl
        self.read_ttl = read_ttl
        self.metrics = metrics
        self.logger = get_logger("icp.token_manager")

    async def get_token(self) -> str:
        """Return a usable token, acquiring one only when the fresh slot is empty."""
        token, stale_token = await asyncio.gather(
            self.store.get(TOKEN_KEY, self.read_ttl),
            self.store.get(STALE_TOKEN_KEY, self.read_ttl),
        )
        if token is not None:
            self._record("fresh")
            return token

        acquisition = self.background.spawn(
            self.client.get_token(),
            name="token:acquire",
            report_errors=False,
        )
        self.background.spawn(self._store_when_acquired(acquisition), name="token:store")

        if stale_token is not None:
            self._record("stale")
            self.logger.debug("Serving stale token while refreshing")
            return stale_token

        self._record("miss")
        return await asyncio.shield(acquisition)

    async def _store_when_acquired(self, acquisition: "asyncio.Task[str]") -> None:
        try:
            token = await asyncio.shield(acquisition)
        except Exception as exc:
            self.logger.warning("Token acquisition failed; cache write skipped", error=str(exc))
            return

        await asyncio.gather(
            self.store.put(TOKEN_KEY, token, self.fresh_ttl),
            self.store.put(STALE_TOKEN_KEY, token, self.stale_ttl),
        )
        self.logger.info("Token refreshed", fresh_ttl=self.fresh_ttl, stale_ttl=self.stale_ttl)

    def _record(self, tier: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup("token", tier)
