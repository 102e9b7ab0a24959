"""Structured logging for the gateway and the wizard CLI (structlog over stdlib)."""

import logging
import sys

import structlog

# Event keys whose values are replaced before rendering
REDACTED_KEYS = frozenset({
    "app_key",
    "apikey",
    "authorization",
    "ciphertext",
    "dedicated_key_encrypted",
    "token",
})

# httpx logs full request URLs at INFO; SQLAlchemy echoes statements
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor masking credential-bearing fields."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Route stdlib and structlog records through one stdout handler.

    Args:
        log_level: Level name (debug/info/warning/error).
        json_output: JSON lines when True, the coloured console renderer otherwise.
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(trace_id: str, org_id: str | None = None) -> None:
    """Bind the request's trace id (and org id, when known) for every log line."""
    structlog.contextvars.bind_contextvars(trace_id=trace_id)
    if org_id:
        structlog.contextvars.bind_contextvars(org_id=org_id)


def bind_identity_context(user_id: str, org_id: str) -> None:
    """Bind the authenticated caller once the access guard has verified the token."""
    structlog.contextvars.bind_contextvars(user_id=user_id, org_id=org_id)


def current_user_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("user_id")


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
