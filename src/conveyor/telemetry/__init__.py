from typing import Optional

from . import logging, metrics, tracing
from ._resource import ExecMetadata
from .logging import LoggingConfig
from .metrics import MetricsConfig
from .tracing import TracingConfig


def configure(
    logging_config: Optional[LoggingConfig] = None,
    tracing_config: Optional[TracingConfig] = None,
    metrics_config: Optional[MetricsConfig] = None,
    metadata: Optional[ExecMetadata] = None,
) -> dict:
    """
    Apply the given telemetry configs once per process and return the
    execution metadata they were tagged with.
    """
    meta = (metadata or ExecMetadata()).model_dump()

    if logging_config:
        logging._apply_logging_config(cfg=logging_config, metadata=meta)

    if tracing_config:
        tracing._apply_tracing_config(cfg=tracing_config, metadata=meta)

    if metrics_config:
        metrics._apply_metrics_config(cfg=metrics_config, metadata=meta)

    return meta


__all__ = [
    "ExecMetadata",
    "LoggingConfig",
    "MetricsConfig",
    "TracingConfig",
    "configure",
    "logging",
    "metrics",
    "tracing",
]
