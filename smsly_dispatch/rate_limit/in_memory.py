"""
In-Memory Bucket Store
======================
Process-local bucket store guarded by one keyed asyncio lock per campaign.
"""

import dataclasses
from typing import Dict, Optional

from smsly_dispatch.locks import KeyedLock

from . import token_bucket
from .models import BucketSpec, BucketState, TakeResult
from .store import BucketStore


class InMemoryBucketStore(BucketStore):
    """
    Bucket store for a single process.

    State can be persisted with ``snapshot()`` and reloaded with
    ``restore()``; tokens are recomputed from the timestamps on the next
    take, so at most one refill interval is lost across a restart.
    """

    def __init__(self):
        self._buckets: Dict[str, BucketState] = {}
        self._locks = KeyedLock()

    async def create(self, campaign_id: str, spec: BucketSpec, now: float) -> None:
        async with self._locks.hold(campaign_id):
            if campaign_id not in self._buckets:
                self._buckets[campaign_id] = token_bucket.new_bucket(spec, now)

    async def reconfigure(self, campaign_id: str, spec: BucketSpec, now: float) -> bool:
        async with self._locks.hold(campaign_id):
            state = self._buckets.get(campaign_id)
            if state is None:
                return False
            token_bucket.reconfigure(state, spec, now)
            return True

    async def try_take(
        self,
        campaign_id: str,
        spec: BucketSpec,
        now: float,
        day_key: str,
        month_key: str,
    ) -> TakeResult:
        async with self._locks.hold(campaign_id):
            state = self._buckets.get(campaign_id)
            if state is None:
                state = self._buckets[campaign_id] = token_bucket.new_bucket(spec, now)
            return token_bucket.take(state, spec, now, day_key, month_key)

    async def remove(self, campaign_id: str) -> None:
        async with self._locks.hold(campaign_id):
            self._buckets.pop(campaign_id, None)

    async def get(self, campaign_id: str) -> Optional[BucketState]:
        state = self._buckets.get(campaign_id)
        return dataclasses.replace(state) if state else None

    def snapshot(self) -> Dict[str, BucketState]:
        return {cid: dataclasses.replace(s) for cid, s in self._buckets.items()}

    def restore(self, states: Dict[str, BucketState]) -> None:
        for campaign_id, state in states.items():
            self._buckets[campaign_id] = dataclasses.replace(state)
