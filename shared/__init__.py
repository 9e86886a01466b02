"""
Shared utilities for the advanced request manager.

This package aggregates the cross-cutting building blocks used by
``advanced_request``:

- config: Process settings via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and error reports
- test_helpers: Fake clock, transports and factories for tests

Only test_helpers imports from ``advanced_request``.
"""
