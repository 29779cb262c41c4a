from .timing import backoff, compute_backoff
from .env import load_env

__all__ = ["backoff", "compute_backoff", "load_env"]
