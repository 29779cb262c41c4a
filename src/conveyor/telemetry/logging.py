import logging
import logging.config
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from pydantic import BaseModel, Field

from ._resource import _inject_otel_resource_attributes

# ============================================================
# Pydantic CONFIG OBJECTS
# ============================================================

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s %(message)s"


class LogFormatter(BaseModel):
    name: str = "default"
    fmt: str = TEXT_FORMAT
    datefmt: str = "%Y-%m-%d %H:%M:%S"


class BaseLogHandler(BaseModel):
    level: LogLevel = "INFO"
    formatter: str = "default"


class ConsoleLogHandler(BaseLogHandler):
    type: Literal["console"] = "console"
    stream: Literal["stdout", "stderr"] = "stderr"


class FileLogHandler(BaseLogHandler):
    """`filename` may use {service}, {pid} and {timestamp}."""

    type: Literal["file"] = "file"
    filename: str
    mode: Literal["a", "w"] = "a"


class JSONLogHandler(BaseLogHandler):
    """JSON lines to stdout, or to `filename` when given."""

    type: Literal["json"] = "json"
    filename: Optional[str] = None
    formatter: str = "json"
    mode: Literal["a", "w"] = "a"


class RotatingFileLogHandler(BaseLogHandler):
    type: Literal["rotating_file"] = "rotating_file"
    filename: str
    max_bytes: int = 10_000_000
    backup_count: int = 5
    callback: Optional[Callable[..., str]] = None


class OTLPLogHandler(BaseLogHandler):
    """Ships records to an OTLP gRPC collector through a batch processor."""

    type: Literal["otlp"] = "otlp"
    endpoint: str
    insecure: bool = True
    resource: Dict[str, Any] = Field(default_factory=dict)
    exporter_factory: Callable[..., Any] = OTLPLogExporter


LogHandlers = Union[
    ConsoleLogHandler,
    FileLogHandler,
    JSONLogHandler,
    OTLPLogHandler,
    RotatingFileLogHandler,
]


class LoggingConfig(BaseModel):
    level: LogLevel = "INFO"
    handlers: List[LogHandlers] = Field(default_factory=lambda: [ConsoleLogHandler()])
    formatters: List[LogFormatter] = Field(default_factory=list)


# ============================================================
# Handler builders
# ============================================================


def _resolve_filename(cfg, metadata: dict) -> str:
    final = cfg.filename.format(
        pid=metadata["pid"],
        service=metadata["service_name"],
        timestamp=datetime.now().strftime("%Y-%m-%d_%H-%M-%S"),
    )
    Path(final).parent.mkdir(parents=True, exist_ok=True)

    if getattr(cfg, "callback", None):
        return cfg.callback(metadata=metadata, filename=final)

    return final


def _build_console_handler_dict(cfg: ConsoleLogHandler, metadata: dict):
    return {
        "class": "logging.StreamHandler",
        "level": cfg.level,
        "formatter": cfg.formatter,
        "stream": f"ext://sys.{cfg.stream}",
    }


def _build_file_handler_dict(cfg: FileLogHandler, metadata: dict):
    return {
        "class": "logging.FileHandler",
        "level": cfg.level,
        "formatter": cfg.formatter,
        "filename": _resolve_filename(cfg, metadata),
        "mode": cfg.mode,
        "encoding": "utf-8",
    }


def _build_rotating_handler_dict(cfg: RotatingFileLogHandler, metadata: dict):
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": cfg.level,
        "formatter": cfg.formatter,
        "filename": _resolve_filename(cfg, metadata),
        "maxBytes": cfg.max_bytes,
        "backupCount": cfg.backup_count,
        "encoding": "utf-8",
    }


def _build_json_handler_dict(cfg: JSONLogHandler, metadata: dict):
    if cfg.filename:
        target = {
            "class": "logging.FileHandler",
            "filename": _resolve_filename(cfg, metadata),
            "mode": cfg.mode,
            "encoding": "utf-8",
        }
    else:
        target = {"class": "logging.StreamHandler", "stream": "ext://sys.stdout"}

    return {"level": cfg.level, "formatter": cfg.formatter, **target}


def _build_otlp_handler_dict(cfg: OTLPLogHandler, metadata: dict):
    resource = Resource(attributes=_inject_otel_resource_attributes(resource=cfg.resource, metadata=metadata))
    provider = LoggerProvider(resource=resource)
    exporter = cfg.exporter_factory(endpoint=cfg.endpoint, insecure=cfg.insecure)
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    set_logger_provider(provider)

    return {
        "class": "opentelemetry.sdk._logs.LoggingHandler",
        "level": cfg.level,
        "logger_provider": provider,
    }


_LOG_HANDLER_BUILDERS_DICT = {
    "console": _build_console_handler_dict,
    "file": _build_file_handler_dict,
    "json": _build_json_handler_dict,
    "otlp": _build_otlp_handler_dict,
    "rotating_file": _build_rotating_handler_dict,
}

# ============================================================
# Apply entire LoggingConfig to dictConfig
# ============================================================

_LOGGING_CONFIGURED = False
_LOGGING_LOCK = threading.Lock()


def build_logging_dict(cfg: LoggingConfig, metadata: dict) -> dict:
    formatters = {f.name: {"format": f.fmt, "datefmt": f.datefmt} for f in cfg.formatters}
    formatters.setdefault("default", {"format": TEXT_FORMAT, "datefmt": LogFormatter().datefmt})
    formatters["json"] = {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT}

    handlers = {
        f"handler_{idx}": _LOG_HANDLER_BUILDERS_DICT[handler_cfg.type](handler_cfg, metadata)
        for idx, handler_cfg in enumerate(cfg.handlers)
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "root": {"level": cfg.level, "handlers": list(handlers)},
        "loggers": {"pika": {"level": "WARNING"}},
    }


def _apply_logging_config(cfg: LoggingConfig, metadata: dict):
    global _LOGGING_CONFIGURED

    with _LOGGING_LOCK:
        if _LOGGING_CONFIGURED:
            return

        logging.config.dictConfig(build_logging_dict(cfg, metadata))
        _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "LoggingConfig",
    "LogFormatter",
    "ConsoleLogHandler",
    "FileLogHandler",
    "JSONLogHandler",
    "OTLPLogHandler",
    "RotatingFileLogHandler",
    "build_logging_dict",
    "get_logger",
]
