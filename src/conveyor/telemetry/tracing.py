import os
import threading
from typing import Any, Dict, List, Optional

from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import get_tracer as _otel_get_tracer
from opentelemetry.trace import set_tracer_provider
from pydantic import BaseModel, Field

from ._resource import _inject_otel_resource_attributes


class TracingConfig(BaseModel):
    """
    Span export for the channel's open / delivery / publish spans.

    `endpoint` adds an OTLP gRPC exporter; `exporters` takes extra
    SpanExporter instances (console, in-memory, ...).
    """

    resource: Dict[str, Any] = Field(default_factory=dict)
    endpoint: Optional[str] = None
    insecure: bool = True
    sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    batch: bool = True
    exporters: List[Any] = Field(default_factory=list)

    @classmethod
    def from_env(cls, endpoint: Optional[str] = None) -> Optional["TracingConfig"]:
        """
        Config for `endpoint`, falling back to OTEL_EXPORTER_OTLP_ENDPOINT.
        Returns None when neither is set.
        """
        endpoint = (endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")).strip()
        if not endpoint:
            return None
        ratio = os.environ.get("OTEL_TRACES_SAMPLER_ARG", "").strip()
        return cls(endpoint=endpoint, sample_ratio=ratio or 1.0)


def build_tracer_provider(cfg: TracingConfig, metadata: dict) -> TracerProvider:
    resource = Resource(attributes=_inject_otel_resource_attributes(resource=cfg.resource, metadata=metadata))
    provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(cfg.sample_ratio)))

    exporters = list(cfg.exporters)
    if cfg.endpoint:
        exporters.append(OTLPSpanExporter(endpoint=cfg.endpoint, insecure=cfg.insecure))

    processor_cls = BatchSpanProcessor if cfg.batch else SimpleSpanProcessor
    for exporter in exporters:
        provider.add_span_processor(processor_cls(exporter))

    return provider


_TRACING_CONFIGURED = False
_TRACING_LOCK = threading.Lock()


def _apply_tracing_config(cfg: TracingConfig, metadata: dict):
    """Install the global TracerProvider once per process."""
    global _TRACING_CONFIGURED

    with _TRACING_LOCK:
        if _TRACING_CONFIGURED:
            return

        set_tracer_provider(build_tracer_provider(cfg, metadata))
        _TRACING_CONFIGURED = True


def get_tracer(name: str = "conveyor"):
    return _otel_get_tracer(name)


__all__ = [
    "TracingConfig",
    "build_tracer_provider",
    "get_tracer",
]
