"""
Shared utilities for the ICP lookup service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Resilient upstream call protection
- base_service: FastAPI application scaffolding

Do not import from service_* packages into shared/.
"""
