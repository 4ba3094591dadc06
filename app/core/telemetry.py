"""Telemetrie-Kontext für das Moderated Chat Gateway: wird explizit durch
jede Pipeline-Stufe gereicht und kapselt OpenTelemetry-Spans.

Jede Stufe öffnet über `stage()` einen Kind-Span des aktuellen Spans. Der
Span wird auf jedem Pfad genau einmal geschlossen; Exceptions werden am Span
vermerkt und weitergereicht. `TelemetryContext.noop()` liefert einen Kontext
ohne Backend (z.B. für Tests).
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer


class TelemetryContext:
    """Korrelations-Scope (Trace/Span) einer Anfrage."""

    def __init__(self, tracer: Tracer, span: Optional[Span] = None):
        self.tracer = tracer
        self.span = span

    @classmethod
    def noop(cls) -> "TelemetryContext":
        return cls(trace.NoOpTracer())

    @classmethod
    def for_service(cls, name: str) -> "TelemetryContext":
        return cls(trace.get_tracer(name))

    def set_attribute(self, key: str, value: Any) -> None:
        if self.span is not None:
            self.span.set_attribute(key, value)

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        for key, value in attributes.items():
            self.set_attribute(key, value)

    def mark_error(self, message: str) -> None:
        if self.span is not None:
            self.span.set_status(Status(StatusCode.ERROR, message))

    def record_exception(self, exc: BaseException) -> None:
        if self.span is not None:
            self.span.record_exception(exc)
            self.span.set_status(Status(StatusCode.ERROR, str(exc)))

    @contextmanager
    def stage(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator["TelemetryContext"]:
        """Öffnet einen Kind-Span und liefert den zugehörigen Kontext."""
        parent = trace.set_span_in_context(self.span) if self.span is not None else None
        span = self.tracer.start_span(name, context=parent, attributes=attributes)
        child = TelemetryContext(self.tracer, span)
        try:
            yield child
        except Exception as exc:
            child.record_exception(exc)
            raise
        finally:
            span.end()
