"""
Stale-while-revalidate resolution of a single lookup subject.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger

from ..caching.background import BackgroundTasks
from ..caching.store import CacheStore
from .classifier import is_cachable
from .outcome import QueryOutcome
from .token_manager import TokenManager

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.icp_client import IcpClient
    from shared.metrics import MetricsCollector


QUERY_KEY_PREFIX = "queryIcp:"
STALE_KEY_PREFIX = "stale:"


def query_key(subject: str) -> str:
    """Fresh-slot key for a subject."""
    return f"{QUERY_KEY_PREFIX}{subject}"


def stale_query_key(subject: str) -> str:
    """Stale-slot key for a subject."""
    return f"{STALE_KEY_PREFIX}{query_key(subject)}"


class RevalidationEngine:
    """Resolves a subject to a QueryOutcome through the fresh and stale slots."""

    def __init__(
        self,
        store: CacheStore,
        client: "IcpClient",
        tokens: TokenManager,
        background: BackgroundTasks,
        *,
        result_fresh_ttl: int = 3600,
        error_fresh_ttl: int = 600,
        result_stale_ttl: int = 86400,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.client = client
        self.tokens = tokens
        self.background = background
        self.result_fresh_ttl = result_fresh_ttl
        self.error_fresh_ttl = error_fresh_ttl
        self.result_stale_ttl = result_stale_ttl
        self.metrics = metrics
        self.logger = get_logger("icp.revalidation")

    async def lookup(self, subject: str) -> QueryOutcome:
        """
        Resolve ``subject``.

        A fresh entry answers without touching upstream. Otherwise one
        upstream query is started; a stale entry answers meanwhile, or the
        caller waits for the query. Cachable upstream errors come back as an
        error outcome, anything else is raised. The settled outcome is written
        to both slots in the background.
        """
        fresh_key = query_key(subject)
        stale_key = stale_query_key(subject)

        # Token refresh runs alongside the cache reads and survives this call
        token_task = self.background.spawn(
            self.tokens.get_token(),
            name="token:get",
            report_errors=False,
        )

        try:
            raw, stale_raw = await asyncio.gather(
                self.store.get(fresh_key),
                self.store.get(stale_key),
            )
        except Exception:
            self.background.report_failures(token_task)
            raise
        outcome = self._decode(fresh_key, raw)
        if outcome is not None:
            self._record("fresh")
            # The query path is skipped, so nothing else observes the token task
            self.background.report_failures(token_task)
            return outcome

        query_task = self.background.spawn(
            self._query(subject, token_task),
            name=f"query:{subject}",
            report_errors=False,
        )
        self.background.spawn(
            self._store_when_settled(subject, query_task),
            name=f"store:{subject}",
        )

        stale_outcome = self._decode(stale_key, stale_raw)
        if stale_outcome is not None:
            self._record("stale")
            self.background.report_failures(query_task)
            self.logger.debug("Serving stale outcome while revalidating", subject=subject)
            return stale_outcome

        self._record("miss")
        return await asyncio.shield(query_task)

    async def _query(self, subject: str, token_task: "asyncio.Task[str]") -> QueryOutcome:
        token = await asyncio.shield(token_task)
        try:
            record = await self.client.query_icp(token, subject)
        except Exception as exc:
            if not is_cachable(exc):
                raise
            self.logger.info("Capturing cachable upstream error", subject=subject, code=getattr(exc, "code", None))
            return QueryOutcome.of_error(exc)
        return QueryOutcome.of_result(record)

    async def _store_when_settled(self, subject: str, query_task: "asyncio.Task[QueryOutcome]") -> None:
        try:
            outcome = await asyncio.shield(query_task)
        except Exception:
            # Non-cachable failures are never written
            return

        payload = outcome.to_json()
        fresh_ttl = self.error_fresh_ttl if outcome.is_error else self.result_fresh_ttl
        await asyncio.gather(
            self.store.put(query_key(subject), payload, fresh_ttl),
            self.store.put(stale_query_key(subject), payload, self.result_stale_ttl),
        )
        self.logger.debug("Stored outcome", subject=subject, error=outcome.is_error, fresh_ttl=fresh_ttl)

    def _decode(self, key: str, raw: Optional[str]) -> Optional[QueryOutcome]:
        if raw is None:
            return None
        try:
            return QueryOutcome.from_json(raw)
        except (ValueError, TypeError, json.JSONDecodeError):
            self.logger.warning("Discarding malformed cache payload", key=key)
            return None

    def _record(self, tier: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup("query", tier)
