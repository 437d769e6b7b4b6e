"""
Shared utilities for the Order Cache Service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and order correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorators and loop back-off
- base_service: FastAPI application scaffolding

Do not import from service_* packages into shared/.
"""
