#!/usr/bin/env python3
"""
Warm the upstream token slots once.

This is the scheduled-trigger counterpart of the lookup endpoint: a cron job
or CI step runs it so the first lookup after an idle period does not pay for
authentication. It resolves with no subject, waits for the background cache
writes, and prints a JSON summary.
"""

import argparse
import asyncio
import json
import sys
import time
from typing import Optional

from shared.config import get_config
from shared.logging import configure_logging
from service_icp.app.adapters.icp_client import IcpClient
from service_icp.app.caching.store import build_store
from service_icp.app.resolver.service import IcpResolver


async def warm(*, redis_url: Optional[str], upstream_url: Optional[str], deadline: Optional[float]) -> dict:
    """Warm the token slots and return the summary."""
    overrides = {}
    if redis_url:
        overrides["redis_url"] = redis_url
    if upstream_url:
        overrides["upstream_url"] = upstream_url
    config = get_config("icp", 8000, **overrides)

    store = build_store(config)
    client = IcpClient(
        config.upstream_url,
        config.upstream_auth_secret,
        timeout=config.upstream_timeout,
    )
    resolver = IcpResolver(store, client, config=config)

    start = time.perf_counter()
    try:
        await resolver.resolve(None, deadline)
        pending = await resolver.close(timeout=config.deadline_seconds)
    finally:
        await client.close()
        await store.close()

    return {
        "status": "ok",
        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        "pending_writes": pending,
        "cache": store.get_stats().to_dict(),
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the upstream ICP token cache.")
    parser.add_argument("--redis-url", default=None, help="Redis connection URL (default: ICP_REDIS_URL)")
    parser.add_argument("--upstream-url", default=None, help="Upstream ICP API base URL (default: ICP_UPSTREAM_URL)")
    parser.add_argument("--deadline", type=float, default=None, help="Seconds to wait before giving up")
    parser.add_argument("--log-level", default="warning", help="Log level")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    configure_logging("icp", args.log_level)
    try:
        summary = asyncio.run(
            warm(
                redis_url=args.redis_url,
                upstream_url=args.upstream_url,
                deadline=args.deadline,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[token-warm] failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
