import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# =====================================================================
#   INTERNAL NORMALIZERS
# =====================================================================


def _normalize_optional(v):
    """
    Normalize optional env-driven values.

    Accepts:
      - None
      - ""
      - "none" / "null"
      - numeric strings

    Lets Pydantic handle final coercion.
    """
    if v is None:
        return None

    if isinstance(v, str):
        v = v.strip()
        if v == "" or v.lower() in {"none", "null"}:
            return None

    return v


# =====================================================================
#   ACKNOWLEDGEMENT
# =====================================================================


class AckMode(str, Enum):
    """
    When a delivery is acknowledged relative to the worker callback.

    BEFORE_PROCESS acks on receipt: the broker's prefetch window never waits on
    slow work, but a crash mid-processing loses the message.
    AFTER_PROCESS acks once the callback returns: a crash leaves the delivery
    unacknowledged and the broker redelivers it.
    """

    BEFORE_PROCESS = "before"
    AFTER_PROCESS = "after"


# =====================================================================
#   RECONNECTION
# =====================================================================


class ReconnectPolicy(BaseModel):
    max_attempts: int = Field(default=0, ge=0)
    backoff: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_cap: float = Field(default=30.0, ge=0.0)

    @field_validator("max_attempts", "backoff", "backoff_multiplier", "backoff_cap", mode="before")
    @classmethod
    def _normalize_numbers(cls, v):
        return _normalize_optional(v)

    @property
    def enabled(self) -> bool:
        return self.max_attempts > 0


# =====================================================================
#   CONSUMER POLICY
# =====================================================================


class ConsumerPolicy(BaseModel):
    ack_mode: AckMode = AckMode.BEFORE_PROCESS
    poll_interval: float = Field(default=0.1, gt=0.0)
    shutdown_timeout: Optional[float] = Field(default=30.0, ge=0.0)
    reconnect: ReconnectPolicy = Field(default_factory=ReconnectPolicy)

    @field_validator("poll_interval", "shutdown_timeout", mode="before")
    @classmethod
    def _normalize_optional_numbers(cls, v):
        return _normalize_optional(v)

    @field_validator("ack_mode", mode="before")
    @classmethod
    def _normalize_ack_mode(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @classmethod
    def from_env(cls, prefix: str = "CONSUMER_") -> "ConsumerPolicy":
        """
        Build a policy from environment variables, e.g. CONSUMER_ACK_MODE=after,
        CONSUMER_RECONNECT_MAX_ATTEMPTS=5. Unset variables keep their defaults.
        """
        values = {}
        for field in ("ack_mode", "poll_interval"):
            raw = os.environ.get(f"{prefix}{field.upper()}")
            if raw is not None and _normalize_optional(raw) is not None:
                values[field] = raw

        # "none" removes the join limit
        raw = os.environ.get(f"{prefix}SHUTDOWN_TIMEOUT")
        if raw is not None and raw.strip():
            values["shutdown_timeout"] = raw

        reconnect = {}
        for field in ReconnectPolicy.model_fields:
            raw = os.environ.get(f"{prefix}RECONNECT_{field.upper()}")
            if raw is not None and _normalize_optional(raw) is not None:
                reconnect[field] = raw

        return cls(**values, reconnect=ReconnectPolicy(**reconnect))
