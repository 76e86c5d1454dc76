"""
Tests for the Throughput Scheduler
==================================
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from smsly_dispatch.campaigns import Campaign, CampaignStatus, InMemoryCampaignDirectory
from smsly_dispatch.errors import ReasonCode
from tests.conftest import FakeClock, FakeSleep


class TestTokenBucket:
    """Tests for the pure bucket arithmetic."""

    def test_new_bucket_starts_full(self):
        from smsly_dispatch.rate_limit import BucketSpec
        from smsly_dispatch.rate_limit.token_bucket import new_bucket

        state = new_bucket(BucketSpec(rate=2.0, capacity=2.0), now=100.0)
        assert state.tokens == 2.0

    def test_refill_never_exceeds_capacity(self):
        from smsly_dispatch.rate_limit import BucketSpec
        from smsly_dispatch.rate_limit.token_bucket import new_bucket, refill

        state = new_bucket(BucketSpec(rate=2.0, capacity=2.0), now=100.0)
        state.tokens = 0.0
        refill(state, 100.25)
        assert state.tokens == pytest.approx(0.5)

        refill(state, 500.0)
        assert state.tokens == 2.0

    def test_take_reports_retry_after(self):
        from smsly_dispatch.rate_limit import BucketSpec, TakeStatus
        from smsly_dispatch.rate_limit.token_bucket import new_bucket, take

        spec = BucketSpec(rate=4.0, capacity=1.0)
        state = new_bucket(spec, now=0.0)

        assert take(state, spec, 0.0, "d", "m").status == TakeStatus.TAKEN
        result = take(state, spec, 0.0, "d", "m")

        assert result.status == TakeStatus.EMPTY
        assert result.retry_after == pytest.approx(0.25)
        assert state.tokens >= 0.0

    def test_reconfigure_keeps_accrued_tokens(self):
        """Tokens accrued at the old rate survive, clamped to the new capacity."""
        from smsly_dispatch.rate_limit import BucketSpec
        from smsly_dispatch.rate_limit.token_bucket import new_bucket, reconfigure

        state = new_bucket(BucketSpec(rate=10.0, capacity=10.0), now=0.0)
        reconfigure(state, BucketSpec(rate=2.0, capacity=2.0), now=0.0)

        assert state.tokens == 2.0
        assert state.rate == 2.0

    def test_caps_checked_before_tokens(self):
        from smsly_dispatch.rate_limit import BucketSpec, TakeStatus
        from smsly_dispatch.rate_limit.token_bucket import new_bucket, take

        spec = BucketSpec(rate=100.0, capacity=100.0, daily_cap=1)
        state = new_bucket(spec, now=0.0)

        assert take(state, spec, 0.0, "2026-06-15", "2026-06").taken
        blocked = take(state, spec, 0.0, "2026-06-15", "2026-06")
        assert blocked.status == TakeStatus.DAILY_CAP
        assert state.tokens == pytest.approx(99.0)

        # New day resets the daily counter
        assert take(state, spec, 0.0, "2026-06-16", "2026-06").taken


@pytest.fixture
def clock():
    return FakeClock(start=1_000.0)


@pytest.fixture
def scheduler_for(clock):
    from smsly_dispatch.audit import AuditLogger
    from smsly_dispatch.rate_limit import ThroughputScheduler

    def build(*campaigns, sleep=None):
        return ThroughputScheduler(
            InMemoryCampaignDirectory(*campaigns),
            audit=AuditLogger("test"),
            clock=clock,
            sleep=sleep or FakeSleep(clock),
        )

    return build


class TestThroughputScheduler:
    """Tests for admission against campaign buckets."""

    @pytest.mark.asyncio
    async def test_rate_two_five_concurrent_messages(self, clock, scheduler_for):
        """Two admit at once, the rest at 0.5s intervals."""
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=2.0))
        start = clock()

        async def admit_and_time():
            result = await scheduler.admit("c", timeout=5.0)
            return result, clock() - start

        outcomes = await asyncio.gather(*[admit_and_time() for _ in range(5)])

        assert all(result.admitted for result, _ in outcomes)
        times = sorted(at for _, at in outcomes)
        assert times == pytest.approx([0.0, 0.0, 0.5, 1.0, 1.5], abs=1e-6)

    @pytest.mark.asyncio
    async def test_timeout_consumes_nothing(self, clock, scheduler_for):
        """A rejected admission leaves the bucket as it found it."""
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=1.0))

        assert (await scheduler.admit("c")).admitted
        before = await scheduler.store.get("c")

        result = await scheduler.admit("c", timeout=0.0)

        assert result.admitted is False
        assert result.reason == ReasonCode.BACKPRESSURE
        after = await scheduler.store.get("c")
        assert after.tokens == before.tokens
        assert after.day_count == before.day_count

    @pytest.mark.asyncio
    async def test_waits_within_timeout(self, clock, scheduler_for):
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=1.0))

        await scheduler.admit("c")
        result = await scheduler.admit("c", timeout=2.0)

        assert result.admitted is True
        assert result.waited == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_cancelled_wait_consumes_nothing(self, clock):
        """Cancelling a waiting admission spends no token."""
        from smsly_dispatch.rate_limit import ThroughputScheduler

        gate = asyncio.Event()

        async def blocking_sleep(delay):
            await gate.wait()

        scheduler = ThroughputScheduler(
            InMemoryCampaignDirectory(Campaign(id="c", rate_per_second=1.0)),
            clock=clock,
            sleep=blocking_sleep,
        )
        await scheduler.admit("c")
        task = asyncio.create_task(scheduler.admit("c", timeout=10.0))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        state = await scheduler.store.get("c")
        assert state.day_count == 1

    @pytest.mark.asyncio
    async def test_inactive_campaign_rejected(self, scheduler_for):
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=1.0, status=CampaignStatus.PENDING))

        result = await scheduler.admit("c")
        assert result.reason == ReasonCode.CAMPAIGN_INACTIVE

        result = await scheduler.admit("missing")
        assert result.reason == ReasonCode.CAMPAIGN_INACTIVE

    @pytest.mark.asyncio
    async def test_daily_cap(self, scheduler_for):
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=100.0, daily_cap=2))

        assert (await scheduler.admit("c")).admitted
        assert (await scheduler.admit("c")).admitted
        result = await scheduler.admit("c", timeout=5.0)

        assert result.reason == ReasonCode.DAILY_CAP_REACHED
        assert result.reason.caller_retryable

    @pytest.mark.asyncio
    async def test_daily_cap_resets_at_campaign_midnight(self, clock, scheduler_for):
        """Period keys follow the campaign's timezone."""
        from datetime import datetime, timezone

        # 23:30 in New York
        clock.now = datetime(2026, 6, 16, 3, 30, tzinfo=timezone.utc).timestamp()
        scheduler = scheduler_for(Campaign(
            id="c", rate_per_second=100.0, daily_cap=1, timezone="America/New_York",
        ))

        assert (await scheduler.admit("c")).admitted
        assert (await scheduler.admit("c")).reason == ReasonCode.DAILY_CAP_REACHED

        clock.advance(3600)
        assert (await scheduler.admit("c")).admitted

    @pytest.mark.asyncio
    async def test_monthly_cap(self, scheduler_for):
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=100.0, monthly_cap=1))

        assert (await scheduler.admit("c")).admitted
        assert (await scheduler.admit("c")).reason == ReasonCode.MONTHLY_CAP_REACHED

    @pytest.mark.asyncio
    async def test_update_rate_applies_to_later_admissions(self, clock, scheduler_for):
        """After a downgrade the bucket refills at the new rate."""
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=10.0))
        await scheduler.activate(Campaign(id="c", rate_per_second=10.0))

        assert await scheduler.update_rate("c", 1.0) is True
        state = await scheduler.store.get("c")
        assert state.capacity == 1.0
        assert state.tokens == 1.0

        assert (await scheduler.admit("c")).admitted
        result = await scheduler.admit("c", timeout=5.0)
        assert result.waited == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_update_rate_survives_waiting_admission(self, clock):
        """A caller already waiting for a token does not undo a rate change."""
        from smsly_dispatch.rate_limit import ThroughputScheduler

        release = asyncio.Event()

        async def held_sleep(delay):
            await release.wait()
            clock.advance(delay)

        campaign = Campaign(id="c", rate_per_second=1.0)
        scheduler = ThroughputScheduler(
            InMemoryCampaignDirectory(campaign),
            clock=clock,
            sleep=held_sleep,
        )
        await scheduler.activate(campaign)
        assert (await scheduler.admit("c")).admitted

        waiter = asyncio.create_task(scheduler.admit("c", timeout=5.0))
        await asyncio.sleep(0)
        assert await scheduler.update_rate("c", 10.0) is True
        release.set()

        assert (await waiter).admitted
        state = await scheduler.store.get("c")
        assert state.rate == 10.0
        assert state.capacity == 10.0

    def test_take_keeps_stored_rate(self):
        from smsly_dispatch.rate_limit import BucketSpec
        from smsly_dispatch.rate_limit.token_bucket import new_bucket, reconfigure, take

        state = new_bucket(BucketSpec(rate=1.0, capacity=1.0), now=0.0)
        reconfigure(state, BucketSpec(rate=10.0, capacity=10.0), now=0.0)

        take(state, BucketSpec(rate=1.0, capacity=1.0), 1.0, "d", "m")

        assert state.rate == 10.0
        assert state.capacity == 10.0

    @pytest.mark.asyncio
    async def test_update_rate_unknown_campaign(self, scheduler_for):
        scheduler = scheduler_for()
        assert await scheduler.update_rate("missing", 5.0) is False

    @pytest.mark.asyncio
    async def test_deactivate_removes_bucket(self, scheduler_for):
        campaign = Campaign(id="c", rate_per_second=1.0)
        scheduler = scheduler_for(campaign)
        await scheduler.activate(campaign)

        await scheduler.deactivate("c")

        assert await scheduler.store.get("c") is None

    @pytest.mark.asyncio
    async def test_remove_shares_lock_with_queued_takes(self):
        """Takes queued behind a removal run one at a time on the same lock."""
        from smsly_dispatch.rate_limit import InMemoryBucketStore
        from smsly_dispatch.rate_limit.models import BucketSpec, TakeStatus

        store = InMemoryBucketStore()
        spec = BucketSpec(rate=1.0, capacity=1.0)
        await store.create("c", spec, 0.0)

        async with store._locks.hold("c"):
            removal = asyncio.create_task(store.remove("c"))
            takes = [
                asyncio.create_task(store.try_take("c", spec, 0.0, "d", "m"))
                for _ in range(3)
            ]
            await asyncio.sleep(0)
            assert len(store._locks) == 1

        await removal
        results = await asyncio.gather(*takes)

        assert [r.status for r in results] == [TakeStatus.TAKEN, TakeStatus.EMPTY, TakeStatus.EMPTY]
        assert (await store.get("c")).day_count == 1
        assert len(store._locks) == 0

    @pytest.mark.asyncio
    async def test_token_count_stays_in_bounds(self, clock, scheduler_for):
        scheduler = scheduler_for(Campaign(id="c", rate_per_second=3.0))

        for _ in range(20):
            await scheduler.admit("c", timeout=1.0)
            state = await scheduler.store.get("c")
            assert 0.0 <= state.tokens <= state.capacity


class TestRedisBucketStore:
    """Tests for the Redis store plumbing with a mocked client."""

    @pytest.mark.asyncio
    async def test_try_take_parses_script_reply(self):
        from smsly_dispatch.rate_limit import BucketSpec, RedisBucketStore, TakeStatus

        redis = AsyncMock()
        redis.script_load.return_value = "sha-take"
        redis.evalsha.return_value = [b"empty", b"0.25", b"0.375"]
        store = RedisBucketStore(redis, prefix="test:bucket")

        result = await store.try_take("c", BucketSpec(rate=2.0, capacity=2.0), 10.0, "d", "m")

        assert result.status == TakeStatus.EMPTY
        assert result.tokens == 0.25
        assert result.retry_after == 0.375
        args = redis.evalsha.call_args.args
        assert args[:3] == ("sha-take", 1, "test:bucket:c")
        assert args[-2:] == (-1, -1)

    @pytest.mark.asyncio
    async def test_scripts_loaded_once(self):
        from smsly_dispatch.rate_limit import BucketSpec, RedisBucketStore

        redis = AsyncMock()
        redis.script_load.return_value = "sha"
        redis.evalsha.return_value = [b"taken", b"1.0", b"-1"]
        store = RedisBucketStore(redis)
        spec = BucketSpec(rate=2.0, capacity=2.0)

        first = await store.try_take("c", spec, 1.0, "d", "m")
        await store.try_take("c", spec, 2.0, "d", "m")

        assert first.taken
        assert first.retry_after is None
        assert redis.script_load.await_count == 1

    @pytest.mark.asyncio
    async def test_get_decodes_hash(self):
        from smsly_dispatch.rate_limit import RedisBucketStore

        redis = AsyncMock()
        redis.hgetall.return_value = {
            b"rate": b"2", b"capacity": b"2", b"tokens": b"1.5", b"ts": b"10",
            b"dkey": b"2026-06-15", b"dcount": b"3",
        }
        state = await RedisBucketStore(redis).get("c")

        assert state.tokens == 1.5
        assert state.day_count == 3
        assert state.month_count == 0
