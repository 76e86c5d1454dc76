"""
Token Bucket
============
Pure token bucket arithmetic shared by the bucket stores.

The Redis store runs the same steps in Lua; keep the two in sync.
"""

from typing import Optional

from .models import BucketSpec, BucketState, TakeResult, TakeStatus

# Float slack so a bucket refilled to 0.9999999 still yields its token
EPSILON = 1e-9


def new_bucket(spec: BucketSpec, now: float) -> BucketState:
    """A bucket starts full so a fresh campaign can burst immediately."""
    return BucketState(
        rate=spec.rate,
        capacity=spec.capacity,
        tokens=spec.capacity,
        last_refill=now,
    )


def refill(state: BucketState, now: float) -> None:
    """Accrue tokens for the time elapsed since the last refill."""
    elapsed = max(0.0, now - state.last_refill)
    state.tokens = min(state.capacity, state.tokens + elapsed * state.rate)
    state.last_refill = max(state.last_refill, now)


def reconfigure(state: BucketState, spec: BucketSpec, now: float) -> None:
    """
    Switch to a new rate and capacity.

    Tokens accrued at the old rate up to ``now`` are kept; the new rate
    applies from this refill onwards. Tokens above the new capacity are
    clamped.
    """
    refill(state, now)
    state.rate = spec.rate
    state.capacity = spec.capacity
    state.tokens = min(state.tokens, state.capacity)


def take(
    state: BucketState,
    spec: BucketSpec,
    now: float,
    day_key: str,
    month_key: str,
) -> TakeResult:
    """
    Refill, roll period counters, then consume one token if one is available.

    Refills use the bucket's own rate and capacity, which only
    ``reconfigure`` changes; ``spec`` contributes the period caps. Period caps
    are checked before tokens and never consume one.
    """
    refill(state, now)

    if state.day_key != day_key:
        state.day_key, state.day_count = day_key, 0
    if state.month_key != month_key:
        state.month_key, state.month_count = month_key, 0

    if spec.daily_cap is not None and state.day_count >= spec.daily_cap:
        return TakeResult(TakeStatus.DAILY_CAP, state.tokens)
    if spec.monthly_cap is not None and state.month_count >= spec.monthly_cap:
        return TakeResult(TakeStatus.MONTHLY_CAP, state.tokens)

    if state.tokens >= 1.0 - EPSILON:
        state.tokens = max(0.0, state.tokens - 1.0)
        state.day_count += 1
        state.month_count += 1
        return TakeResult(TakeStatus.TAKEN, state.tokens)

    return TakeResult(
        TakeStatus.EMPTY,
        state.tokens,
        retry_after=_retry_after(state),
    )


def _retry_after(state: BucketState) -> Optional[float]:
    if state.rate <= 0:
        return None
    return (1.0 - state.tokens) / state.rate
