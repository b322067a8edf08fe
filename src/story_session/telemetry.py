"""OpenTelemetry tracing for story sessions.

``SessionManager`` holds a :class:`StoryTracer` and opens a span around every
narrator call, compaction and record write. Until :meth:`StoryTracer.init` is
called with an exporter configured, all spans are no-ops.

Environment (read by :meth:`TelemetryConfig.from_env`):
    - ``STORY_OTEL_EXPORTER``: ``none`` (default), ``stdout`` or ``otlp``
    - ``STORY_OTEL_ENDPOINT``: OTLP collector address
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Generator
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import NoOpTracer, Span, Tracer

logger = logging.getLogger(__name__)

_EXPORTERS = ("none", "stdout", "otlp")


@dataclass
class TelemetryConfig:
    service_name: str = "story-session"
    exporter: str = "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        exporter = os.environ.get("STORY_OTEL_EXPORTER", "none").strip().lower() or "none"
        if exporter not in _EXPORTERS:
            logger.warning("Unknown STORY_OTEL_EXPORTER %r, tracing disabled", exporter)
            exporter = "none"
        endpoint = os.environ.get("STORY_OTEL_ENDPOINT", "").strip()
        return cls(exporter=exporter, otlp_endpoint=endpoint or cls.otlp_endpoint)


class StoryTracer:
    """Owns the span pipeline for one process."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def enabled(self) -> bool:
        return self._provider is not None

    def init(self, exporter: SpanExporter | None = None) -> None:
        """Install *exporter*, or the one the config names; ``none`` keeps spans as no-ops."""
        exporter = exporter or self._build_exporter()
        if exporter is None:
            return
        resource = Resource.create({"service.name": self._config.service_name})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        self._provider = provider
        self._tracer = provider.get_tracer(self._config.service_name)
        logger.info("Tracing enabled with %s", type(exporter).__name__)

    def _build_exporter(self) -> SpanExporter | None:
        if self._config.exporter == "stdout":
            return ConsoleSpanExporter()
        if self._config.exporter == "otlp":
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                    OTLPSpanExporter,
                )
            except ImportError:
                logger.warning("OTLP exporter requested but the 'otlp' extra is not installed")
                return None
            return OTLPSpanExporter(endpoint=self._config.otlp_endpoint, insecure=True)
        return None

    def shutdown(self) -> None:
        """Flush pending spans. Safe to call more than once."""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            self._tracer = NoOpTracer()

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, str | int] | None = None,
    ) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=attributes) as s:
            yield s

    def record_event(self, name: str, attributes: dict[str, str | int] | None = None) -> None:
        """Attach an event to the active span, if one is recording."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    # -- session spans ---------------------------------------------------------

    def turn(self, turn_count: int) -> contextlib.AbstractContextManager[Span]:
        return self.span("session/turn", {"session.turns": turn_count})

    def compaction(self, folded: int, retained: int) -> contextlib.AbstractContextManager[Span]:
        return self.span(
            "session/compaction",
            {"compaction.folded": folded, "compaction.retained": retained},
        )

    def persistence(self, tier: str) -> contextlib.AbstractContextManager[Span]:
        return self.span("store/write", {"store.tier": tier})
