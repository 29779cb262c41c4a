import argparse
import logging
import signal
import sys

from pydantic import ValidationError

from . import channel as broker_channel
from . import exceptions, telemetry
from .config import BrokerConfig
from .policies import AckMode, ConsumerPolicy
from .telemetry.logging import (
    ConsoleLogHandler,
    JSONLogHandler,
    LoggingConfig,
    OTLPLogHandler,
    RotatingFileLogHandler,
)
from .telemetry.metrics import MetricsConfig
from .telemetry.tracing import TracingConfig
from .utils import load_env
from .worker import DotDelayWorker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------
# CLI parser
# ---------------------------------------------------------------------
def create_parser():
    parser = argparse.ArgumentParser(
        prog="conveyor",
        description="Broker-backed work distribution channel",
    )
    parser.add_argument("--env-file", type=str, default=None, help="dotenv file with BROKER_* / CONSUMER_* settings")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    parser.add_argument("--log-format", choices=["text", "json"], default="text")
    parser.add_argument("--log-file", type=str, default=None, help="also log to this rotating file")
    parser.add_argument(
        "--otlp-endpoint",
        type=str,
        default=None,
        help="OTLP gRPC collector for logs, traces and metrics (default: $OTEL_EXPORTER_OTLP_ENDPOINT)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -----------------------------------------------------------------
    # conveyor declare
    # -----------------------------------------------------------------
    subparsers.add_parser("declare", help="Declare exchange, queue and binding, then exit")

    # -----------------------------------------------------------------
    # conveyor consume
    # -----------------------------------------------------------------
    consume_parser = subparsers.add_parser("consume", help="Consume deliveries with the demo worker")
    consume_parser.add_argument("--consumer-tag", type=str, default=None)
    consume_parser.add_argument(
        "--ack-after",
        action="store_true",
        help="Acknowledge after the worker returns instead of on receipt",
    )
    consume_parser.add_argument("--seconds-per-dot", type=float, default=1.0)

    # -----------------------------------------------------------------
    # conveyor publish <body>
    # -----------------------------------------------------------------
    publish_parser = subparsers.add_parser("publish", help="Publish one message")
    publish_parser.add_argument("body", type=str)
    publish_parser.add_argument("--routing-key", type=str, default="")

    return parser


def _install_signal_handlers(channel: broker_channel.BrokerChannel) -> None:
    def _handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}; shutting down")
        channel.shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)


def _logging_config(level: str, fmt: str, log_file=None, otlp_endpoint=None) -> LoggingConfig:
    handlers = [JSONLogHandler(level=level) if fmt == "json" else ConsoleLogHandler(level=level)]
    if log_file:
        handlers.append(
            RotatingFileLogHandler(level=level, filename=log_file, formatter="json" if fmt == "json" else "default")
        )
    if otlp_endpoint:
        handlers.append(OTLPLogHandler(level=level, endpoint=otlp_endpoint))
    return LoggingConfig(level=level, handlers=handlers)


# ---------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------
def conveyor(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    load_env(args.env_file)
    try:
        tracing_config = TracingConfig.from_env(args.otlp_endpoint)
        metrics_config = MetricsConfig.from_env(args.otlp_endpoint)
        endpoint = tracing_config.endpoint if tracing_config else None
        telemetry.configure(
            logging_config=_logging_config(args.log_level, args.log_format, args.log_file, endpoint),
            tracing_config=tracing_config,
            metrics_config=metrics_config,
        )
        config = BrokerConfig.from_env()
        policy = ConsumerPolicy.from_env()
    except ValidationError as exc:
        print(f"[ERROR] Invalid configuration: {exc}")
        sys.exit(1)

    if args.command == "consume" and args.ack_after:
        policy = policy.model_copy(update={"ack_mode": AckMode.AFTER_PROCESS})

    channel = broker_channel.BrokerChannel(config, policy, connection_factory=broker_channel.connect)

    try:
        # ---- DECLARE TOPOLOGY ----
        if args.command == "declare":
            with channel:
                print(f"✔ Topology ready: {config.exchange} → {channel.queue_name}")
            return

        # ---- CONSUME ----
        if args.command == "consume":
            channel.open()
            _install_signal_handlers(channel)
            channel.wait_for_messages(DotDelayWorker(args.seconds_per_dot), consumer_tag=args.consumer_tag)
            return

        # ---- PUBLISH ----
        if args.command == "publish":
            with channel:
                channel.publish(args.body, args.routing_key)
            print(f"✔ Published to {config.exchange} with key '{channel.resolve_routing_key(args.routing_key)}'")
            return
    except exceptions.FatalBrokerException as exc:
        print(f"[ERROR] {exc}")
        sys.exit(1)
