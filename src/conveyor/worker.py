import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Union

logger = logging.getLogger(__name__)


class Worker(ABC):
    """
    Processing boundary invoked once per delivery.

    Exceptions raised by `process` are the worker's own concern: the channel
    logs them and moves on to the next delivery.
    """

    @abstractmethod
    def process(self, body: bytes, consumer_tag: str) -> Any:
        raise NotImplementedError

    def __call__(self, body: bytes, consumer_tag: str) -> Any:
        return self.process(body, consumer_tag)


WorkerCallback = Union[Worker, Callable[[bytes, str], Any]]


class DotDelayWorker(Worker):
    """
    Demo worker: logs each message and sleeps one `seconds_per_dot` per "."
    in the body, simulating a task whose cost is written into its payload.
    """

    def __init__(self, seconds_per_dot: float = 1.0):
        self.seconds_per_dot = seconds_per_dot
        self.processed = 0

    def process(self, body: bytes, consumer_tag: str) -> None:
        logger.info(f"[{consumer_tag}] Received new message: {body.decode('utf-8', errors='replace')}")
        delay = body.count(b".") * self.seconds_per_dot
        if delay > 0:
            time.sleep(delay)
        self.processed += 1
        logger.info(f"[{consumer_tag}] Done after {delay:.1f}s")
