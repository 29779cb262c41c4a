from . import errors, exceptions, policies, telemetry
from .channel import BrokerChannel, ConnectionState
from .config import BrokerConfig
from .models import Delivery, OutboundMessage
from .policies import AckMode, ConsumerPolicy, ReconnectPolicy
from .worker import DotDelayWorker, Worker

__all__ = [
    "AckMode",
    "BrokerChannel",
    "BrokerConfig",
    "ConnectionState",
    "ConsumerPolicy",
    "Delivery",
    "DotDelayWorker",
    "OutboundMessage",
    "ReconnectPolicy",
    "Worker",
    "errors",
    "exceptions",
    "policies",
    "telemetry",
]

__version__ = "0.1.0"
