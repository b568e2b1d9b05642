"""
Outcome of an upstream query, as cached and as returned to callers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.errors import UpstreamError

from .classifier import deserialize_error, serialize_error


@dataclass(frozen=True)
class QueryOutcome:
    """
    Either a record (``result``) or a cachable upstream error (``error``).

    Serializes to ``{"result": ...}`` or ``{"error": {...}}``; that JSON is
    stored verbatim in both cache slots.
    """

    result: Optional[Any] = None
    error: Optional[UpstreamError] = None

    @classmethod
    def of_result(cls, result: Any) -> "QueryOutcome":
        return cls(result=result)

    @classmethod
    def of_error(cls, error: UpstreamError) -> "QueryOutcome":
        if not error.cachable:
            raise ValueError("only cachable errors can be captured in an outcome")
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """Return the record, or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.result

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": serialize_error(self.error)}
        return {"result": self.result}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "QueryOutcome":
        if not isinstance(payload, dict):
            raise ValueError("outcome payload must be an object")
        if "error" in payload:
            error = payload["error"]
            if not isinstance(error, dict):
                raise ValueError("outcome error must be an object")
            return cls(error=deserialize_error(error))
        if "result" in payload:
            return cls(result=payload["result"])
        raise ValueError("outcome payload has neither result nor error")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "QueryOutcome":
        return cls.from_dict(json.loads(raw))
