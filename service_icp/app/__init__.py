"""
ICP lookup service package.

Answers ICP filing lookups for a domain while shielding the upstream ICP
service from load and clients from upstream latency:
- A fresh/stale cache pair per key, refreshed in the background
- Upstream auth tokens cached the same way
- A deadline racing every lookup

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.adapters: HTTP client for the upstream ICP service.
- app.caching: Cache store, backends, and background task tracking.
- app.resolver: Token manager, revalidation engine, deadline guard.
"""
