"""
Throughput Scheduler
====================
Per-campaign token bucket admission with daily and monthly caps.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple
from zoneinfo import ZoneInfo

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.campaigns import Campaign, CampaignDirectory
from smsly_dispatch.errors import ReasonCode

from .in_memory import InMemoryBucketStore
from .models import AdmitResult, BucketSpec, TakeStatus
from .store import BucketStore

logger = structlog.get_logger(__name__)

_CAP_REASONS = {
    TakeStatus.DAILY_CAP: ReasonCode.DAILY_CAP_REACHED,
    TakeStatus.MONTHLY_CAP: ReasonCode.MONTHLY_CAP_REACHED,
}


class ThroughputScheduler:
    """
    Admits messages at each campaign's trust-score-derived rate.

    Buckets are owned by the store: created on ``activate`` (or lazily on
    first admission), retuned by ``update_rate`` and torn down by
    ``deactivate``. All token accounting happens inside the store's atomic
    ``try_take``; the scheduler only decides how long to wait.
    """

    def __init__(
        self,
        directory: CampaignDirectory,
        store: Optional[BucketStore] = None,
        burst_seconds: float = 1.0,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._directory = directory
        self._store = store or InMemoryBucketStore()
        self._burst_seconds = burst_seconds
        self._audit = audit
        self._clock = clock
        self._sleep = sleep
        # Rates pushed through update_rate ahead of the directory catching up
        self._rate_overrides: Dict[str, float] = {}

    @property
    def store(self) -> BucketStore:
        return self._store

    def spec_for(self, campaign: Campaign, rate: Optional[float] = None) -> BucketSpec:
        if rate is None:
            rate = self._rate_overrides.get(campaign.id, campaign.rate_per_second)
        return BucketSpec(
            rate=rate,
            capacity=max(1.0, rate * self._burst_seconds),
            daily_cap=campaign.daily_cap,
            monthly_cap=campaign.monthly_cap,
        )

    async def activate(self, campaign: Campaign) -> None:
        await self._store.create(campaign.id, self.spec_for(campaign), self._clock())
        logger.info("bucket_activated", campaign_id=campaign.id, rate=campaign.rate_per_second)

    async def deactivate(self, campaign_id: str) -> None:
        await self._store.remove(campaign_id)
        self._rate_overrides.pop(campaign_id, None)
        logger.info("bucket_deactivated", campaign_id=campaign_id)

    async def update_rate(self, campaign_id: str, rate: float) -> bool:
        """
        Retune a campaign's bucket after a trust score change.

        The new rate governs refills from now on; tokens already accrued are
        kept up to the new capacity.
        """
        campaign = await self._directory.get(campaign_id)
        if campaign is None:
            return False

        self._rate_overrides[campaign_id] = rate
        updated = await self._store.reconfigure(
            campaign_id, self.spec_for(campaign, rate), self._clock()
        )
        logger.info("bucket_rate_changed", campaign_id=campaign_id, rate=rate, updated=updated)
        if updated and self._audit:
            self._audit.log(
                AuditEventType.RATE_CHANGED,
                action="rate changed",
                resource_type="campaign",
                resource_id=campaign_id,
                payload={"rate": rate},
            )
        return updated

    async def admit(self, campaign_id: str, timeout: float = 0.0) -> AdmitResult:
        """
        Take one token for ``campaign_id``, waiting up to ``timeout`` seconds.

        A timeout or cancellation leaves the bucket untouched: tokens are only
        ever consumed inside a successful ``try_take``.
        """
        campaign = await self._directory.get(campaign_id)
        if campaign is None or not campaign.is_active:
            return self._reject(campaign_id, ReasonCode.CAMPAIGN_INACTIVE, 0.0)

        started = self._clock()
        deadline = started + max(0.0, timeout)

        while True:
            now = self._clock()
            day_key, month_key = self._period_keys(campaign, now)
            result = await self._store.try_take(
                campaign_id, self.spec_for(campaign), now, day_key, month_key
            )

            if result.taken:
                logger.debug(
                    "admitted",
                    campaign_id=campaign_id,
                    tokens=round(result.tokens, 3),
                    waited=round(now - started, 3),
                )
                if self._audit:
                    self._audit.log(
                        AuditEventType.THROTTLE_ADMITTED,
                        action="throughput check",
                        resource_type="campaign",
                        resource_id=campaign_id,
                        payload={"waited": round(now - started, 3)},
                    )
                return AdmitResult(
                    admitted=True,
                    waited=now - started,
                    tokens_remaining=result.tokens,
                )

            if result.status in _CAP_REASONS:
                return self._reject(campaign_id, _CAP_REASONS[result.status], now - started)

            remaining = deadline - now
            if remaining <= 0 or result.retry_after is None:
                return self._reject(campaign_id, ReasonCode.BACKPRESSURE, now - started)

            await self._sleep(min(result.retry_after, remaining))

    @staticmethod
    def _period_keys(campaign: Campaign, now: float) -> Tuple[str, str]:
        local = datetime.fromtimestamp(now, ZoneInfo(campaign.timezone))
        return local.strftime("%Y-%m-%d"), local.strftime("%Y-%m")

    def _reject(self, campaign_id: str, reason: ReasonCode, waited: float) -> AdmitResult:
        logger.info("admission_throttled", campaign_id=campaign_id, reason=reason.value)
        if self._audit:
            self._audit.log(
                AuditEventType.THROTTLE_REJECTED,
                action="throughput check",
                outcome="rejected",
                resource_type="campaign",
                resource_id=campaign_id,
                payload={"reason": reason.value, "waited": round(waited, 3)},
            )
        return AdmitResult(admitted=False, reason=reason, waited=waited)
