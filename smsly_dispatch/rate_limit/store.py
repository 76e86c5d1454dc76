"""
Bucket Store Interface
======================
Owner of per-campaign limiter state. Every method is atomic per campaign.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import BucketSpec, BucketState, TakeResult


class BucketStore(ABC):

    @abstractmethod
    async def create(self, campaign_id: str, spec: BucketSpec, now: float) -> None:
        """Create a full bucket unless one already exists."""

    @abstractmethod
    async def reconfigure(self, campaign_id: str, spec: BucketSpec, now: float) -> bool:
        """Apply a new spec. Returns False if the bucket does not exist."""

    @abstractmethod
    async def try_take(
        self,
        campaign_id: str,
        spec: BucketSpec,
        now: float,
        day_key: str,
        month_key: str,
    ) -> TakeResult:
        """Refill, check period caps and take one token in a single step."""

    @abstractmethod
    async def remove(self, campaign_id: str) -> None:
        ...

    @abstractmethod
    async def get(self, campaign_id: str) -> Optional[BucketState]:
        ...
