"""Structured JSON logging, request and cycle correlation ids, optional tracing."""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

try:  # pragma: no cover - optional runtime dependency
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
except Exception:  # pragma: no cover - allows running without otel extras
    trace = None
    OTLPSpanExporter = None
    FastAPIInstrumentor = None
    Resource = None
    TracerProvider = None
    BatchSpanProcessor = None
    TraceIdRatioBased = None


REQUEST_ID_HEADER = "X-Request-ID"
_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_cycle_id_ctx: ContextVar[str | None] = ContextVar("cycle_id", default=None)
_CONTEXT_FIELDS = ("service", "request_id", "cycle_id", "trace_id", "span_id")
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def get_cycle_id() -> str | None:
    return _cycle_id_ctx.get()


@contextmanager
def cycle_context(cycle_id: str | None = None) -> Iterator[str]:
    """Tag every log record emitted inside the block with one publish cycle id."""

    value = cycle_id or uuid.uuid4().hex[:12]
    token = _cycle_id_ctx.set(value)
    try:
        yield value
    finally:
        _cycle_id_ctx.reset(token)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Carries ``X-Request-ID`` (inbound or generated) through the request and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = _request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _span_ids() -> tuple[str | None, str | None]:
    if trace is None:
        return None, None
    ctx = trace.get_current_span().get_span_context()
    if not ctx or not ctx.trace_id:
        return None, None
    return f"{ctx.trace_id:032x}", f"{ctx.span_id:016x}"


class TraceContextFilter(logging.Filter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self._service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self._service
        record.request_id = getattr(record, "request_id", None) or _request_id_ctx.get()
        record.cycle_id = getattr(record, "cycle_id", None) or get_cycle_id()
        record.trace_id, record.span_id = _span_ids()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for key in _CONTEXT_FIELDS:
            payload[key] = getattr(record, key, None)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and key not in _CONTEXT_FIELDS
        }
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def configure_logging(service: str, level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(TraceContextFilter(service))
    level = level.upper()

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.setLevel(level)
        uvicorn_logger.propagate = False


def _parse_header_pairs(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` OTLP header strings; malformed items are dropped."""

    pairs = (item.split("=", 1) for item in (raw or "").split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs if key.strip()}


def configure_tracing(
    *,
    service_name: str,
    service_version: str | None,
    otlp_endpoint: str,
    otlp_headers: str | None,
    sample_ratio: float = 1.0,
    app: FastAPI | None = None,
) -> None:
    if trace is None or OTLPSpanExporter is None:
        logging.getLogger(__name__).warning("OpenTelemetry not available; tracing disabled")
        return
    resource_attrs: dict[str, Any] = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    provider = TracerProvider(
        resource=Resource.create(resource_attrs),
        sampler=TraceIdRatioBased(max(min(float(sample_ratio), 1.0), 0.0)),
    )
    exporter = OTLPSpanExporter(endpoint=otlp_endpoint, headers=_parse_header_pairs(otlp_headers))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)


def configure_observability(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str | None,
    log_level: str,
    otel_enabled: bool,
    otlp_endpoint: str,
    otlp_headers: str | None,
    otel_sample_ratio: float = 1.0,
) -> None:
    configure_logging(service_name, log_level)
    app.add_middleware(RequestIdMiddleware)
    if otel_enabled:
        configure_tracing(
            service_name=service_name,
            service_version=service_version,
            otlp_endpoint=otlp_endpoint,
            otlp_headers=otlp_headers,
            sample_ratio=otel_sample_ratio,
            app=app,
        )
