"""API package exports."""

from src.api.middleware import CorrelationIdMiddleware

__all__ = ["CorrelationIdMiddleware"]
