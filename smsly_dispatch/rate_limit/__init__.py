"""
Throughput Scheduling
=====================
Per-campaign token buckets with burst tolerance and period caps.
"""

from .models import AdmitResult, BucketSpec, BucketState, TakeResult, TakeStatus
from .store import BucketStore
from .in_memory import InMemoryBucketStore
from .redis_store import RedisBucketStore, TAKE_SCRIPT
from .scheduler import ThroughputScheduler

__all__ = [
    "AdmitResult",
    "BucketSpec",
    "BucketState",
    "TakeResult",
    "TakeStatus",
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "TAKE_SCRIPT",
    "ThroughputScheduler",
]
