"""
Retry with Exponential Backoff
==============================
Bounded retry for transient provider and storage failures.
"""

from .exceptions import RetryExhausted
from .backoff import compute_backoff, retry_with_backoff

__all__ = [
    "RetryExhausted",
    "compute_backoff",
    "retry_with_backoff",
]
