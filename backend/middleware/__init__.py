"""Observability middleware for the Idea Engine AI router backend."""

from middleware.metrics import MetricsMiddleware  # noqa: F401

__all__ = ["MetricsMiddleware"]
