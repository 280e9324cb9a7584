"""Structured logging configuration with redaction support."""

import logging
import sys
from typing import Any, Dict

import structlog

# Substrings of event keys whose values never reach the output
SENSITIVE_KEYS = (
    "password",
    "secret",
    "token",
    "hash",
    "salt",
    "authorization",
)


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact credential material from log entries.

    Any key containing one of ``SENSITIVE_KEYS`` (case-insensitive) is
    replaced, including keys nested one level down in dict values such as
    request headers.
    """
    for key, value in list(event_dict.items()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            event_dict[key] = "REDACTED"
        elif isinstance(value, dict):
            event_dict[key] = {
                k: "REDACTED"
                if any(s in str(k).lower() for s in SENSITIVE_KEYS)
                else v
                for k, v in value.items()
            }

    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output with correlation ID support.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
