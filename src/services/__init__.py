"""Services package exports."""

from src.services.logging_service import configure_logging

__all__ = [
    "configure_logging",
]
