"""
Redis Bucket Store
==================
Shared bucket store using Lua scripts for atomic operations, so every
dispatch worker draws from the same per-campaign bucket.
"""

from typing import List, Optional

import structlog

from .models import BucketSpec, BucketState, TakeResult, TakeStatus
from .store import BucketStore

logger = structlog.get_logger(__name__)

# Mirrors token_bucket.take
TAKE_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local day_key = ARGV[4]
local month_key = ARGV[5]
local daily_cap = tonumber(ARGV[6])
local monthly_cap = tonumber(ARGV[7])

local b = redis.call('HMGET', key, 'rate', 'capacity', 'tokens', 'ts', 'dkey', 'dcount', 'mkey', 'mcount')
local s_rate = tonumber(b[1])
local s_capacity = tonumber(b[2])
local tokens = tonumber(b[3])
local ts = tonumber(b[4])
local dkey = b[5] or ''
local dcount = tonumber(b[6]) or 0
local mkey = b[7] or ''
local mcount = tonumber(b[8]) or 0

if s_rate == nil then
    s_rate = rate
    s_capacity = capacity
    tokens = capacity
    ts = now
end

local elapsed = math.max(0, now - ts)
tokens = math.min(s_capacity, tokens + elapsed * s_rate)
ts = math.max(ts, now)

if dkey ~= day_key then
    dkey = day_key
    dcount = 0
end
if mkey ~= month_key then
    mkey = month_key
    mcount = 0
end

local status = 'empty'
if daily_cap >= 0 and dcount >= daily_cap then
    status = 'daily_cap'
elseif monthly_cap >= 0 and mcount >= monthly_cap then
    status = 'monthly_cap'
elseif tokens >= 1 - 1e-9 then
    status = 'taken'
    tokens = math.max(0, tokens - 1)
    dcount = dcount + 1
    mcount = mcount + 1
end

redis.call('HSET', key, 'rate', s_rate, 'capacity', s_capacity, 'tokens', tostring(tokens),
    'ts', tostring(ts), 'dkey', dkey, 'dcount', dcount, 'mkey', mkey, 'mcount', mcount)

local retry_after = -1
if status == 'empty' and s_rate > 0 then
    retry_after = (1 - tokens) / s_rate
end

return {status, tostring(tokens), tostring(retry_after)}
"""

CREATE_SCRIPT = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 1 then
    return 0
end
redis.call('HSET', key, 'rate', ARGV[2], 'capacity', ARGV[3], 'tokens', ARGV[3], 'ts', ARGV[1])
return 1
"""

RECONFIGURE_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local b = redis.call('HMGET', key, 'rate', 'capacity', 'tokens', 'ts')
if b[1] == false then
    return 0
end
local tokens = tonumber(b[3])
local ts = tonumber(b[4])
tokens = math.min(tonumber(b[2]), tokens + math.max(0, now - ts) * tonumber(b[1]))
tokens = math.min(tokens, capacity)
redis.call('HSET', key, 'rate', rate, 'capacity', capacity, 'tokens', tostring(tokens),
    'ts', tostring(math.max(ts, now)))
return 1
"""


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class RedisBucketStore(BucketStore):
    """
    Redis-backed bucket store.

    Bucket state survives process restarts; all mutation happens inside Lua
    scripts, so concurrent workers never double-spend a token.
    """

    def __init__(self, redis_client, prefix: str = "smsly:dispatch:bucket"):
        """
        Args:
            redis_client: Async Redis client
            prefix: Key prefix for bucket hashes
        """
        self.redis = redis_client
        self.prefix = prefix
        self._script_shas: dict = {}

    def get_key(self, campaign_id: str) -> str:
        return f"{self.prefix}:{campaign_id}"

    async def _run(self, script: str, key: str, *args) -> List:
        sha = self._script_shas.get(script)
        if sha is None:
            sha = self._script_shas[script] = await self.redis.script_load(script)
        return await self.redis.evalsha(sha, 1, key, *args)

    async def create(self, campaign_id: str, spec: BucketSpec, now: float) -> None:
        await self._run(CREATE_SCRIPT, self.get_key(campaign_id), now, spec.rate, spec.capacity)

    async def reconfigure(self, campaign_id: str, spec: BucketSpec, now: float) -> bool:
        result = await self._run(
            RECONFIGURE_SCRIPT, self.get_key(campaign_id), now, spec.rate, spec.capacity
        )
        return bool(int(result))

    async def try_take(
        self,
        campaign_id: str,
        spec: BucketSpec,
        now: float,
        day_key: str,
        month_key: str,
    ) -> TakeResult:
        status, tokens, retry_after = await self._run(
            TAKE_SCRIPT,
            self.get_key(campaign_id),
            now,
            spec.rate,
            spec.capacity,
            day_key,
            month_key,
            -1 if spec.daily_cap is None else spec.daily_cap,
            -1 if spec.monthly_cap is None else spec.monthly_cap,
        )
        retry = float(retry_after)
        return TakeResult(
            status=TakeStatus(_text(status)),
            tokens=float(tokens),
            retry_after=retry if retry >= 0 else None,
        )

    async def remove(self, campaign_id: str) -> None:
        await self.redis.delete(self.get_key(campaign_id))

    async def get(self, campaign_id: str) -> Optional[BucketState]:
        raw = await self.redis.hgetall(self.get_key(campaign_id))
        if not raw:
            return None
        data = {_text(k): _text(v) for k, v in raw.items()}
        return BucketState(
            rate=float(data["rate"]),
            capacity=float(data["capacity"]),
            tokens=float(data["tokens"]),
            last_refill=float(data["ts"]),
            day_key=data.get("dkey", ""),
            day_count=int(data.get("dcount", 0)),
            month_key=data.get("mkey", ""),
            month_count=int(data.get("mcount", 0)),
        )
