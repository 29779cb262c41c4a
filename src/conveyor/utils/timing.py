import logging
import math
import threading
import time
from datetime import datetime
from typing import Optional

from .. import telemetry

logger = logging.getLogger(__name__)
tracer = telemetry.tracing.get_tracer(__name__)


def _get_wake_time_iso(delay: float) -> str:
    return datetime.fromtimestamp(time.time() + delay).isoformat()


# ============================================================
#  BACKOFF / SLEEP HELPERS
# ============================================================
def compute_backoff(backoff: float, multiplier: float, cap: float, attempt: int) -> float:
    """Exponential backoff `backoff * multiplier**attempt`, clamped to `cap` when cap > 0."""
    if cap > 0 and multiplier > 1 and backoff > 0:
        # largest attempt that won't exceed cap
        max_attempt = math.floor(math.log(cap / backoff, multiplier)) if cap > backoff else 0
        safe_attempt = min(attempt, max_attempt)
    else:
        safe_attempt = attempt

    delay = backoff * (multiplier**safe_attempt)
    return min(delay, cap) if cap > 0 else delay


def backoff(
    backoff: float,
    multiplier: float,
    cap: float,
    attempt: int,
    stop_event: Optional[threading.Event] = None,
) -> bool:
    """
    Sleep for the computed backoff. When `stop_event` is given the sleep ends
    early once it is set. Returns False if interrupted, True otherwise.
    """
    delay = compute_backoff(backoff, multiplier, cap, attempt)
    if delay <= 0:
        return True

    with tracer.start_as_current_span("sleep", attributes={"delay": delay}):
        logger.info(f"Sleeping for {delay} seconds until {_get_wake_time_iso(delay)}")
        if stop_event is None:
            time.sleep(delay)
            return True
        return not stop_event.wait(delay)
