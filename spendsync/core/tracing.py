"""
Trace ID propagation.

Adds correlation IDs to every request and background job so a single sync can be
followed across the API call, the per-account tasks and the recompute jobs.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

_trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

logger = structlog.get_logger()


def get_current_trace_id() -> Optional[str]:
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    _trace_id_var.set(trace_id)


def generate_trace_id() -> str:
    return str(uuid.uuid4())[:8]


class TraceIdMiddleware(BaseHTTPMiddleware):
    """
    Accepts an incoming X-Trace-Id header (or generates one), stores it in the
    context for logging and echoes it back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or generate_trace_id()
        set_trace_id(trace_id)
        request.state.trace_id = trace_id

        logger.info("request_start", method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_error", error=str(e))
            raise

        response.headers["X-Trace-Id"] = trace_id
        logger.info("request_end", status_code=response.status_code)
        return response


def add_trace_id_processor(logger, method_name, event_dict):
    """Structlog processor that stamps the current trace id on every record."""
    trace_id = get_current_trace_id()
    if trace_id and "trace_id" not in event_dict:
        event_dict["trace_id"] = trace_id
    return event_dict
