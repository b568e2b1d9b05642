"""
Lookup resolution: token caching, stale-while-revalidate and deadlines.
"""

from .classifier import is_cachable
from .deadline import DeadlineGuard
from .outcome import QueryOutcome
from .revalidation import RevalidationEngine, query_key, stale_query_key
from .service import IcpResolver
from .token_manager import STALE_TOKEN_KEY, TOKEN_KEY, TokenManager

__all__ = [
    "DeadlineGuard",
    "IcpResolver",
    "QueryOutcome",
    "RevalidationEngine",
    "STALE_TOKEN_KEY",
    "TOKEN_KEY",
    "TokenManager",
    "is_cachable",
    "query_key",
    "stale_query_key",
]
