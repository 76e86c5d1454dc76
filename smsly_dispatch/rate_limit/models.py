"""
Rate Limit Models
=================
Bucket state and the results of take/admit operations.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from smsly_dispatch.errors import ReasonCode


@dataclass(frozen=True)
class BucketSpec:
    """Limits a campaign's bucket is configured with."""
    rate: float                    # tokens per second
    capacity: float                # burst size
    daily_cap: Optional[int] = None
    monthly_cap: Optional[int] = None


@dataclass
class BucketState:
    """Persisted per-campaign limiter state (RateLimiterState)."""
    rate: float
    capacity: float
    tokens: float
    last_refill: float             # Unix timestamp
    day_key: str = ""
    day_count: int = 0
    month_key: str = ""
    month_count: int = 0


class TakeStatus(str, Enum):
    TAKEN = "taken"
    EMPTY = "empty"
    DAILY_CAP = "daily_cap"
    MONTHLY_CAP = "monthly_cap"


@dataclass(frozen=True)
class TakeResult:
    """Outcome of one atomic take attempt."""
    status: TakeStatus
    tokens: float
    retry_after: Optional[float] = None  # seconds until a token is available

    @property
    def taken(self) -> bool:
        return self.status == TakeStatus.TAKEN


@dataclass(frozen=True)
class AdmitResult:
    """Outcome of ThroughputScheduler.admit."""
    admitted: bool
    reason: Optional[ReasonCode] = None
    waited: float = 0.0
    tokens_remaining: float = 0.0
