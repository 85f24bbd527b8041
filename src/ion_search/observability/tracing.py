"""OpenTelemetry tracing and log correlation for engine operations."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import SpanKind, Status, StatusCode


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

# Correlation fields picked up by JsonFormatter (trace_id, span_id, index)
_log_context: ContextVar[dict[str, str] | None] = ContextVar("ion_log_context", default=None)

_tracer_holder: dict[str, Tracer | None] = {"tracer": None}


def get_log_context() -> dict[str, str]:
    """Return the correlation fields of the current context (may be empty)."""
    return dict(_log_context.get() or {})


def init_tracing(
    service_name: str = "ion-search",
    resource_attributes: dict[str, str] | None = None,
) -> TracerProvider:
    """Install an SDK tracer provider; exporters are attached by the host application."""
    attributes = {"service.name": service_name}
    if resource_attributes:
        attributes.update(resource_attributes)
    provider = TracerProvider(resource=Resource.create(attributes))
    trace.set_tracer_provider(provider)
    _tracer_holder["tracer"] = trace.get_tracer(__name__)
    logger.info("Tracing initialized for service: %s", service_name)
    return provider


def get_tracer() -> Tracer:
    """Return the engine tracer (the global provider's, which is a no-op until configured)."""
    if _tracer_holder["tracer"] is None:
        _tracer_holder["tracer"] = trace.get_tracer(__name__)
    return _tracer_holder["tracer"]  # type: ignore[return-value]


def reset_tracer() -> None:
    _tracer_holder["tracer"] = None


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a span and expose its ids (plus the ``index`` attribute) to log records."""
    tracer = get_tracer()
    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)

        ctx = span.get_span_context()
        fields = {**get_log_context()}
        if ctx.is_valid:
            fields["trace_id"] = format(ctx.trace_id, "032x")
            fields["span_id"] = format(ctx.span_id, "016x")
        if attributes and "ion.index" in attributes:
            fields["index"] = str(attributes["ion.index"])
        token = _log_context.set(fields)

        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
        finally:
            _log_context.reset(token)
