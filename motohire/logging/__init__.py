"""Structured logging configuration using structlog."""

import logging
import re
import sys
from typing import Optional

import structlog

# Authorization header values sent to the M-Pesa API
_AUTH_HEADER_PATTERN = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9+/=._-]+")

# Kenyan MSISDNs in international format, e.g. 254712345678
_MSISDN_PATTERN = re.compile(r"\b(254)(\d{3})\d{3}(\d{3})\b")

_SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "authorization",
        "consumer_key",
        "consumer_secret",
        "passkey",
        "password",
        "Password",
    }
)


def _redact_text(value: str) -> str:
    value = _AUTH_HEADER_PATTERN.sub(r"\1 <REDACTED>", value)
    return _MSISDN_PATTERN.sub(r"\1\2***\3", value)


class SecretRedactingFilter(logging.Filter):
    """Filter that redacts credentials and phone numbers from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log message."""
        if record.msg and isinstance(record.msg, str):
            record.msg = _redact_text(record.msg)
        if record.args:
            record.args = tuple(
                _redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def _redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor to redact secrets from event dictionaries."""
    for key, value in list(event_dict.items()):
        if key in _SENSITIVE_KEYS:
            event_dict[key] = "<REDACTED>"
        elif isinstance(value, str):
            event_dict[key] = _redact_text(value)
    return event_dict


# Third-party loggers that may carry Daraja credentials or payer numbers
_LIBRARY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "asyncpg")


def setup_logging(
    log_level: str = "INFO",
    app_name: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """
    Configure JSON logging for the engine and the libraries it drives.

    Args:
        log_level: Minimum level, e.g. "INFO"
        app_name: Bound to every event as ``app`` when given
        environment: Bound to every event as ``env`` when given
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    secret_filter = SecretRedactingFilter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(secret_filter)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).addFilter(secret_filter)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    context = {"app": app_name, "env": environment}
    structlog.contextvars.bind_contextvars(**{k: v for k, v in context.items() if v})



def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
