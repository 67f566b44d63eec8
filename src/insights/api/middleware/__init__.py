"""API middleware package."""

from src.insights.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
