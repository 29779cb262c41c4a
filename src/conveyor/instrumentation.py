"""
Built-in metrics for the broker channel.

Instruments are created lazily on first use, after the MeterProvider has been
configured. Until then the global no-op provider absorbs every recording.
"""

from typing import Callable

from . import telemetry

_meter = None
_instruments = {}


def _get_meter():
    global _meter
    if _meter is None:
        _meter = telemetry.metrics.get_metric_meter("conveyor.channel")
    return _meter


def _get_instrument(name: str, factory: Callable):
    if name not in _instruments:
        _instruments[name] = factory(_get_meter())
    return _instruments[name]


# ============================================================
# CONSUMER METRICS
# ============================================================


def _deliveries_total():
    return _get_instrument(
        "channel.deliveries.total",
        lambda m: m.create_counter(
            name="channel.deliveries.total",
            description="Total number of deliveries dispatched to the worker",
            unit="1",
        ),
    )


def _worker_duration():
    return _get_instrument(
        "channel.worker.duration",
        lambda m: m.create_histogram(
            name="channel.worker.duration",
            description="Time spent inside the worker callback per delivery",
            unit="s",
        ),
    )


def _acks_total():
    return _get_instrument(
        "channel.acks.total",
        lambda m: m.create_counter(
            name="channel.acks.total",
            description="Total number of acknowledgements sent to the broker",
            unit="1",
        ),
    )


def _reconnects_total():
    return _get_instrument(
        "channel.reconnects.total",
        lambda m: m.create_counter(
            name="channel.reconnects.total",
            description="Reconnection attempts after the delivery stream was lost",
            unit="1",
        ),
    )


# ============================================================
# PUBLISHER METRICS
# ============================================================


def _publishes_total():
    return _get_instrument(
        "channel.publishes.total",
        lambda m: m.create_counter(
            name="channel.publishes.total",
            description="Total number of publish calls",
            unit="1",
        ),
    )


def _publish_size():
    return _get_instrument(
        "channel.publish.size",
        lambda m: m.create_histogram(
            name="channel.publish.size",
            description="Size of published message bodies",
            unit="By",
        ),
    )


# ============================================================
# RECORDING HELPERS
# ============================================================


def record_delivery(consumer_tag: str, duration: float, outcome: str):
    attrs = {"consumer_tag": consumer_tag, "outcome": outcome}
    _deliveries_total().add(1, attrs)
    _worker_duration().record(duration, attrs)


def record_ack(consumer_tag: str, ack_mode: str, success: bool):
    _acks_total().add(
        1,
        {"consumer_tag": consumer_tag, "ack_mode": ack_mode, "outcome": "ok" if success else "error"},
    )


def record_reconnect(attempt: int, success: bool):
    _reconnects_total().add(1, {"attempt": attempt, "outcome": "ok" if success else "error"})


def record_publish(exchange: str, routing_key: str, size: int, success: bool):
    attrs = {"exchange": exchange, "routing_key": routing_key, "outcome": "ok" if success else "error"}
    _publishes_total().add(1, attrs)
    if success:
        _publish_size().record(size, attrs)
