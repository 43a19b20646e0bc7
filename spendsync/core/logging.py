import logging
import sys

import structlog

from spendsync.core.config import get_settings
from spendsync.core.tracing import add_trace_id_processor

SENSITIVE_FIELDS = {
    "email", "user_email", "password", "token", "api_token", "secret", "api_key",
    "client_secret", "private_key", "secret_access_key", "session_token",
    "external_id", "service_account_key", "credentials",
}


def pii_redactor(logger, method_name, event_dict):
    """
    Redact credential material and PII from log records before rendering.
    """
    for field in SENSITIVE_FIELDS:
        if field in event_dict:
            event_dict[field] = "[REDACTED]"

    for container in ("metadata", "payload", "details", "extra"):
        if container in event_dict and isinstance(event_dict[container], dict):
            for field in SENSITIVE_FIELDS:
                if field in event_dict[container]:
                    event_dict[container][field] = "[REDACTED]"

    return event_dict


def setup_logging():
    settings = get_settings()

    if settings.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        min_level = logging.INFO

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_trace_id_processor,
        pii_redactor,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route library logs (uvicorn, apscheduler, botocore) through stdout too
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=min_level,
    )


def audit_log(event: str, user_id: str, details: dict = None):
    """
    Standardized helper for security-relevant events (role exchange,
    credential failures). Consistent schema for SIEM ingestion.
    """
    logger = structlog.get_logger("audit")
    logger.info(
        "audit_event",
        audit_event=event,
        user_id=str(user_id),
        metadata=details or {},
    )
