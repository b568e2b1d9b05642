"""
Upstream ICP filing service client.
"""

import hashlib
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import UpstreamError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; icp-lookup/1.0)",
    "Origin": "https://beian.miit.gov.cn",
    "Referer": "https://beian.miit.gov.cn/",
}

# Upstream "code" values that mean the token was rejected
_AUTH_FAILURE_CODES = {401, 403}


def is_breaker_failure(exc: BaseException) -> bool:
    """Deterministic domain answers are not upstream faults."""
    return not (isinstance(exc, UpstreamError) and exc.cachable)


class IcpClient:
    """Client for the upstream ICP filing query API."""

    def __init__(
        self,
        base_url: str,
        auth_secret: str = "testtest",
        *,
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip('/')
        self.auth_secret = auth_secret
        self.metrics = metrics
        self.logger = get_logger("icp.upstream_client")
        self._clock = clock
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name="icp_upstream",
            is_failure=is_breaker_failure,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers=_DEFAULT_HEADERS,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def get_token(self) -> str:
        """Acquire a fresh upstream token."""
        timestamp = str(int(self._clock() * 1000))
        auth_key = hashlib.md5(f"{self.auth_secret}{timestamp}".encode()).hexdigest()

        payload = await self._call(
            "auth",
            "/auth",
            data={"authKey": auth_key, "timeStamp": timestamp},
        )

        token = (payload.get("params") or {}).get("bussiness")
        if not isinstance(token, str) or not token:
            raise UpstreamError(
                "UPSTREAM_AUTH_FAILED",
                "Upstream did not issue a token",
                details={"response": payload},
            )
        return token

    async def query_icp(self, token: str, domain: str) -> Dict[str, Any]:
        """Return the ICP filing record for ``domain``.

        Raises:
            UpstreamError: cachable for unknown or invalid domains, otherwise
                transient.
        """
        payload = await self._call(
            "query",
            "/icpAbbreviateInfo/queryByCondition",
            json={"pageNum": "", "pageSize": "", "unitName": domain},
            headers={"Token": token},
            domain=domain,
        )

        return payload["params"]["list"][0]

    async def _call(self, operation: str, path: str, domain: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Execute an upstream call with circuit breaker + error mapping."""
        start = time.perf_counter()
        outcome = "error"
        try:
            payload = await self.circuit_breaker.call(self._post, path, domain, **kwargs)
            outcome = "ok"
            return payload
        except CircuitBreakerOpenException as exc:
            self.logger.warning("Upstream circuit open", operation=operation)
            raise UpstreamError(
                "UPSTREAM_CIRCUIT_OPEN",
                str(exc),
                status_code=503,
            ) from exc
        except UpstreamError as exc:
            if exc.cachable:
                outcome = "cachable_error"
            raise
        finally:
            duration = time.perf_counter() - start
            self.logger.info(
                "Upstream call",
                operation=operation,
                outcome=outcome,
                duration_ms=round(duration * 1000, 2),
            )
            if self.metrics:
                self.metrics.record_upstream_call(operation, outcome, duration)

    async def _post(self, path: str, domain: Optional[str], **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(
                "UPSTREAM_UNAVAILABLE",
                f"Upstream request failed: {exc}",
                details={"path": path},
            ) from exc

        if response.status_code in (401, 403):
            raise UpstreamError(
                "UPSTREAM_AUTH_FAILED",
                f"Upstream rejected credentials: {response.status_code}",
                details={"status_code": response.status_code},
            )
        if response.status_code == 400 and domain is not None:
            raise self._invalid_domain(domain, response.text)
        if response.status_code != 200:
            raise UpstreamError(
                "UPSTREAM_ERROR",
                f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "UPSTREAM_BAD_RESPONSE",
                "Upstream returned malformed JSON",
                details={"path": path},
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(
                "UPSTREAM_BAD_RESPONSE",
                "Upstream returned an unexpected payload",
                details={"path": path},
            )

        if payload.get("success") is True:
            if domain is not None:
                self._require_records(domain, payload)
            return payload

        code = payload.get("code")
        message = str(payload.get("msg") or "Upstream reported failure")
        if code in _AUTH_FAILURE_CODES:
            raise UpstreamError(
                "UPSTREAM_AUTH_FAILED",
                message,
                details={"upstream_code": code},
            )
        if code == 400 and domain is not None:
            raise self._invalid_domain(domain, message)
        raise UpstreamError(
            "UPSTREAM_ERROR",
            message,
            details={"upstream_code": code},
        )

    def _require_records(self, domain: str, payload: Dict[str, Any]) -> None:
        """Raise the cachable not-found answer when the record list is empty."""
        params = payload.get("params")
        records = params.get("list") if isinstance(params, dict) else None
        if isinstance(records, list) and records:
            return
        self.logger.info("No ICP record for domain", domain=domain)
        raise UpstreamError(
            "DOMAIN_NOT_FOUND",
            f"No ICP filing found for {domain}",
            status_code=404,
            cachable=True,
            details={"domain": domain},
        )

    @staticmethod
    def _invalid_domain(domain: str, message: str) -> UpstreamError:
        return UpstreamError(
            "INVALID_DOMAIN",
            f"Invalid domain: {domain}",
            status_code=400,
            cachable=True,
            details={"domain": domain, "upstream_message": message[:200]},
        )
