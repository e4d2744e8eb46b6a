import json
import logging
import os
import time
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")

_QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})


class JsonFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__()
        self._service = os.getenv("SERVICE_NAME", "layer-advisor")
        self._environment = os.getenv("ENVIRONMENT", "local")

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": self._service,
            "environment": self._environment,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get() or None,
            "request_id": request_id_var.get() or None,
            "trace_id": trace_id_var.get() or None,
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: v for k, v in payload.items() if v is not None}, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


def trace_id_from_traceparent(traceparent: str) -> str:
    parts = traceparent.split("-") if traceparent else []
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return uuid4().hex


def setup_observability(app: FastAPI) -> None:
    configure_logging()
    Instrumentator(excluded_handlers=["/metrics"]).instrument(app).expose(app)

    @app.middleware("http")
    async def _request_observability_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        logger = logging.getLogger("http.access")
        started = time.perf_counter()

        correlation_id = request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}"
        request_id = request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}"
        trace_id = trace_id_from_traceparent(request.headers.get("traceparent", ""))

        correlation_token = correlation_id_var.set(correlation_id)
        request_token = request_id_var.set(request_id)
        trace_token = trace_id_var.set(trace_id)
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            if request.url.path not in _QUIET_PATHS:
                latency_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.info(
                    "request.completed",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "endpoint": request.url.path,
                            "status_code": status_code,
                            "latency_ms": latency_ms,
                        }
                    },
                )
            correlation_id_var.reset(correlation_token)
            request_id_var.reset(request_token)
            trace_id_var.reset(trace_token)

        response.headers["X-Correlation-Id"] = response.headers.get(
            "X-Correlation-Id", correlation_id
        )
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Trace-Id"] = trace_id
        response.headers["traceparent"] = f"00-{trace_id}-0000000000000001-01"
        return response
