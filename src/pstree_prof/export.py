"""Output sinks: count table, JSON Lines samples and OpenTelemetry spans."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable
from typing import TextIO

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from pstree_prof.aggregate import Span
from pstree_prof.config import TraceConfig
from pstree_prof.formatting import format_timestamp, to_nanoseconds
from pstree_prof.snapshot import Snapshot

log = structlog.get_logger()

TRACER_NAME = "pstree_prof"


def write_counts(rows: Iterable[tuple[int, str]], out: TextIO | None = None) -> None:
    """Print the command histogram as tab-separated text with a header."""
    out = out or sys.stdout
    out.write("count\tcommand\n")
    for count, command in rows:
        if count == 0:
            continue
        out.write(f"{count}\t{command}\n")
    out.flush()


def sample_to_dict(snapshot: Snapshot) -> dict:
    """Convert a selected snapshot to a JSON-serializable dict."""
    return {
        "at": format_timestamp(snapshot.captured_at),
        "procs": {str(pid): record.to_dict() for pid, record in snapshot.processes.items()},
    }


def write_samples(samples: Iterable[Snapshot], out: TextIO | None = None) -> None:
    """Print one JSON object per sample (JSON Lines)."""
    out = out or sys.stdout
    for snapshot in samples:
        out.write(json.dumps(sample_to_dict(snapshot)) + "\n")
    out.flush()


class TraceExporter:
    """Sends process spans to an OpenTelemetry span exporter.

    One root span covers the whole profiling run; every process lifetime
    becomes a child span named after its command, with the observed start and
    end times set explicitly.
    """

    def __init__(
        self,
        config: TraceConfig,
        exporter: SpanExporter | None = None,
        service_version: str = "0.0.0",
    ) -> None:
        resource = Resource.create(
            {
                "service.name": config.service_name,
                "service.version": service_version,
                "deployment.environment": config.environment,
            }
        )
        self.provider = TracerProvider(resource=resource)
        self.provider.add_span_processor(BatchSpanProcessor(exporter or _default_exporter(config)))
        self.tracer = self.provider.get_tracer(TRACER_NAME)

    def export(self, name: str, spans: list[Span], start: float, end: float) -> None:
        """Emit the run's root span and one child span per process.

        Args:
            name: Root span name (the profiled command or pattern).
            spans: Process lifetimes from the span builder.
            start: When profiling began.
            end: When profiling finished.
        """
        run_start = min([start, *(s.start for s in spans)])
        root = self.tracer.start_span(name, start_time=to_nanoseconds(run_start))
        ctx = trace.set_span_in_context(root)
        try:
            for span in spans:
                child = self.tracer.start_span(
                    span.command,
                    context=ctx,
                    start_time=to_nanoseconds(span.start),
                    attributes={
                        "process.pid": span.pid,
                        "process.command_line": span.command,
                    },
                )
                child.end(end_time=to_nanoseconds(span.end))
        finally:
            root.set_attribute("pstree_prof.process_count", len(spans))
            root.end(end_time=to_nanoseconds(max([end, *(s.end for s in spans)])))
        log.info("spans_exported", count=len(spans))

    def shutdown(self) -> None:
        """Flush pending spans and release the exporter."""
        self.provider.shutdown()


def _default_exporter(config: TraceConfig) -> SpanExporter:
    if config.otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)

    indent = 4 if config.pretty else None
    return ConsoleSpanExporter(
        out=sys.stderr,
        formatter=lambda span: span.to_json(indent=indent) + os.linesep,
    )
