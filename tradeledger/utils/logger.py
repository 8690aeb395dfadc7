from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from tradeledger.utils.config import get_settings


def setup_logging() -> None:
    settings = get_settings()

    os.makedirs(os.path.dirname(settings.log_file) or ".", exist_ok=True)

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(settings.log_file, mode="a"),
        ],
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def strategy_context(strategy_id: str, **extra: Any) -> Iterator[None]:
    """Tag every log line emitted inside the block with the owning strategy."""
    with structlog.contextvars.bound_contextvars(strategy=strategy_id, **extra):
        yield


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Redact credential-looking keys before a strategy config is logged."""
    sensitive_keys = {"api_key", "secret_key", "private_key", "api_secret", "password", "secret"}
    sanitized = {}
    for key, value in data.items():
        if key.lower() in sensitive_keys or key.lower().endswith("_key"):
            sanitized[key] = "***REDACTED***" if value else value
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
