"""
ICP lookup HTTP service.
"""

import asyncio
import re
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import MethodNotAllowedError, NotFoundError
from shared.logging import set_subject

from service_icp.app.adapters.icp_client import IcpClient
from service_icp.app.caching.store import CacheStore, build_store
from service_icp.app.resolver.service import IcpResolver


_SUBJECT_PATTERN = re.compile(r"^[a-zA-Z0-9.-]+$")
# Underscore is outside the subject alphabet, so ops routes never shadow a domain
OPS_PREFIX = "/_ops"
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class IcpService(BaseService):
    """ICP lookup service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[CacheStore] = None,
        client: Optional[IcpClient] = None,
    ):
        super().__init__("icp", 8000, config, ops_prefix=OPS_PREFIX)
        self.store = store or build_store(self.config)
        self.client = client or IcpClient(
            self.config.upstream_url,
            self.config.upstream_auth_secret,
            timeout=self.config.upstream_timeout,
            failure_threshold=self.config.circuit_failure_threshold,
            recovery_timeout=self.config.circuit_recovery_timeout,
            metrics=self.metrics,
        )
        self.resolver = IcpResolver(
            self.store,
            self.client,
            config=self.config,
            metrics=self.metrics,
        )
        self._warm_task: Optional[asyncio.Task] = None

        self._setup_lookup_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.icp_service = self

    async def _on_startup(self) -> None:
        if self.config.token_warm_interval > 0:
            self._warm_task = asyncio.create_task(self._token_warm_loop(), name="token:warm_loop")
            self.logger.info("Token warm loop started", interval=self.config.token_warm_interval)

    async def _on_shutdown(self) -> None:
        if self._warm_task is not None:
            self._warm_task.cancel()
            try:
                await self._warm_task
            except asyncio.CancelledError:
                pass
            self._warm_task = None

        pending = await self.resolver.close(timeout=self.config.deadline_seconds)
        if pending:
            self.logger.warning("Shutting down with background work pending", pending=pending)
        await self.client.close()
        await self.store.close()

    async def _token_warm_loop(self) -> None:
        """Keep the token slots warm so lookups rarely wait on auth."""
        while True:
            try:
                await self.resolver.resolve(None)
            except Exception as exc:
                self.logger.warning("Scheduled token warm failed", error=str(exc))
            await asyncio.sleep(self.config.token_warm_interval)

    async def _check_dependencies(self) -> Dict[str, Any]:
        store_ok = await self.store.ping()
        breaker = self.client.circuit_breaker.get_state()
        return {
            "cache_store": "ok" if store_ok else "error",
            "upstream": "error" if breaker["state"] == "open" else "ok",
            "background_tasks": self.resolver.background.pending,
            "cache_stats": self.store.get_stats().to_dict(),
        }

    def _setup_lookup_routes(self):
        """Set up lookup routes."""

        @self.app.get("/favicon.ico", include_in_schema=False)
        async def favicon():
            raise NotFoundError()

        @self.app.api_route("/{subject}", methods=_ALL_METHODS)
        async def lookup(subject: str, request: Request):
            """Return the ICP filing record for a domain."""
            if request.method != "GET":
                raise MethodNotAllowedError(details={"method": request.method})
            if not _SUBJECT_PATTERN.match(subject):
                raise NotFoundError(details={"path": request.url.path})

            set_subject(subject)
            record = await self.resolver.resolve(subject)
            return JSONResponse(
                content=record,
                headers={"cache-control": f"public, max-age={self.config.response_max_age}"},
            )

        @self.app.api_route("/{path:path}", methods=_ALL_METHODS, include_in_schema=False)
        async def fallback(path: str, request: Request):
            if request.method != "GET":
                raise MethodNotAllowedError(details={"method": request.method})
            raise NotFoundError(details={"path": request.url.path})


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = IcpService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = IcpService()
    service.run()
