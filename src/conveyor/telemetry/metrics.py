import os
import threading
from typing import Any, Dict, List, Optional

from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import get_meter_provider, set_meter_provider
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from pydantic import BaseModel, Field

from ._resource import _inject_otel_resource_attributes


class MetricsConfig(BaseModel):
    """
    Export of the channel.* instruments recorded by `conveyor.instrumentation`.

    `endpoint` adds a periodic OTLP gRPC reader; `readers` takes extra
    MetricReader instances.
    """

    resource: Dict[str, Any] = Field(default_factory=dict)
    endpoint: Optional[str] = None
    insecure: bool = True
    export_interval_ms: int = Field(default=60_000, gt=0)
    readers: List[Any] = Field(default_factory=list)

    @classmethod
    def from_env(cls, endpoint: Optional[str] = None) -> Optional["MetricsConfig"]:
        endpoint = (endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")).strip()
        if not endpoint:
            return None
        interval = os.environ.get("OTEL_METRIC_EXPORT_INTERVAL", "").strip()
        return cls(endpoint=endpoint, export_interval_ms=interval or 60_000)


def build_meter_provider(cfg: MetricsConfig, metadata: dict) -> MeterProvider:
    resource = Resource(attributes=_inject_otel_resource_attributes(resource=cfg.resource, metadata=metadata))

    readers = list(cfg.readers)
    if cfg.endpoint:
        readers.append(
            PeriodicExportingMetricReader(
                OTLPMetricExporter(endpoint=cfg.endpoint, insecure=cfg.insecure),
                export_interval_millis=cfg.export_interval_ms,
            )
        )

    return MeterProvider(resource=resource, metric_readers=readers)


_CONFIGURED_METRICS = False
_METRICS_LOCK = threading.Lock()


def _apply_metrics_config(cfg: MetricsConfig, metadata: dict):
    global _CONFIGURED_METRICS

    with _METRICS_LOCK:
        if _CONFIGURED_METRICS:
            return

        set_meter_provider(build_meter_provider(cfg, metadata))
        _CONFIGURED_METRICS = True


def get_metric_meter(name: str):
    """
    Returns a Meter, similar to get_logger for logging.
    """
    return get_meter_provider().get_meter(name)


__all__ = [
    "MetricsConfig",
    "build_meter_provider",
    "get_metric_meter",
]
