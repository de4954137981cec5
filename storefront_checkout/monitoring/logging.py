"""
Structured logging configuration.

Every event is rendered as one JSON object (or a console line in debug) with
the request id bound per request. Webhook rejections are logged with their
request headers for tampering investigations, so signatures, credentials and
gateway secrets are masked before anything is rendered.
"""
import logging
import sys
from collections.abc import Mapping
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from storefront_checkout import __version__
from storefront_checkout.config import Settings, get_settings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "signature",
        "razorpay_signature",
        "x_razorpay_signature",
        "key_secret",
        "webhook_secret",
        "razorpay_key_secret",
        "razorpay_webhook_secret",
    }
)


def _is_sensitive(key: Any) -> bool:
    return str(key).lower().replace("-", "_") in SENSITIVE_KEYS


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            key: REDACTED if _is_sensitive(key) else _redact(item)
            for key, item in value.items()
        }
    return value


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Mask signature headers and gateway secrets, including inside nested dicts.

    Header names are matched case-insensitively with dashes folded to
    underscores, so ``X-Razorpay-Signature`` and ``x_razorpay_signature``
    are both masked.
    """
    for key in list(event_dict):
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Tag events with the service name, environment and release."""
    settings = get_settings()
    event_dict.setdefault("app_name", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    event_dict.setdefault("version", __version__)
    return event_dict


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog over the standard library logger.

    Debug mode renders human-readable console lines; otherwise events are
    JSON, written to stdout through a python-json-logger handler.
    """
    settings = settings or get_settings()

    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    # Gateway calls go through httpx; its per-request INFO lines duplicate ours
    for name in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        renderer="console" if settings.debug else "json",
    )
