"""
Process-level error primitives.

`fail` aborts: it logs at CRITICAL and raises `FatalBrokerException`, which the
CLI turns into a non-zero exit. `log` reports and lets the caller continue.
"""

import logging
from typing import NoReturn

from . import exceptions

logger = logging.getLogger(__name__)


def fail(err: BaseException, context: str) -> NoReturn:
    logger.critical(f"{context}: {err}")
    raise exceptions.FatalBrokerException(f"{context}: {err}") from err


def log(err: BaseException, context: str) -> None:
    logger.error(f"{context}: {err}")
