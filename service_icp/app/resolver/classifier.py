"""
Decides which upstream failures may be cached and replayed.
"""

from typing import Any, Dict

from shared.errors import UpstreamError


def is_cachable(exc: BaseException) -> bool:
    """
    True only for upstream errors the adapter flagged as cachable.

    Deterministic, subject-specific answers (unknown domain, invalid domain
    syntax) qualify. Network failures, 5xx, auth failures, an open circuit
    and any other exception do not, so the next caller retries upstream.
    """
    return isinstance(exc, UpstreamError) and exc.cachable


def serialize_error(exc: UpstreamError) -> Dict[str, Any]:
    """Serialize a cachable upstream error for the cache payload."""
    return {
        "code": exc.code,
        "message": exc.message,
        "status_code": exc.status_code,
        "details": exc.details,
    }


def deserialize_error(payload: Dict[str, Any]) -> UpstreamError:
    """Rehydrate a cached error. Anything persisted was cachable by construction."""
    return UpstreamError(
        code=str(payload.get("code") or "UPSTREAM_ERROR"),
        message=str(payload.get("message") or "Upstream error"),
        status_code=int(payload.get("status_code") or 502),
        cachable=True,
        details=dict(payload.get("details") or {}),
    )
