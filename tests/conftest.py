"""
Shared fixtures for smsly-dispatch tests.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import pytest

from smsly_dispatch.campaigns import Campaign, InMemoryCampaignDirectory
from smsly_dispatch.config import DispatchConfig
from smsly_dispatch.engine import DispatchEngine
from smsly_dispatch.errors import ProviderError
from smsly_dispatch.models import Message
from smsly_dispatch.providers import ProviderAck, ProviderClient
from smsly_dispatch.webhooks import compute_signature

# Monday 2026-06-15 12:00 in New York, inside the default sending window
NOON_EASTERN = datetime(2026, 6, 15, 16, 0, tzinfo=timezone.utc).timestamp()

WEBHOOK_SECRET = "whsec_test"
SENDER = "+15550001111"
RECIPIENT = "+12125550123"


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, start: float = NOON_EASTERN):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, timezone.utc)


class FakeSleep:
    """Sleep that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)


class FakeProvider(ProviderClient):
    """
    Provider double. Each send pops the next scripted outcome: an exception
    instance is raised, anything else is treated as success.
    """

    name = "fake"

    def __init__(self, outcomes: Optional[List[Union[Exception, str]]] = None):
        self.outcomes = list(outcomes or [])
        self.sent: List[Message] = []
        self.closed = False
        self._counter = 0

    async def send(self, message: Message) -> ProviderAck:
        self.sent.append(message)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        self._counter += 1
        return ProviderAck(correlation_id=f"prov-{self._counter}")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def campaign() -> Campaign:
    return Campaign(id="camp-1", rate_per_second=10.0)


@pytest.fixture
def directory(campaign) -> InMemoryCampaignDirectory:
    return InMemoryCampaignDirectory(campaign)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def config() -> DispatchConfig:
    return DispatchConfig(
        webhook_secret=WEBHOOK_SECRET,
        dispatch_base_delay=0.1,
        webhook_base_delay=0.1,
        admission_timeout=0.0,
        log_json=False,
    )


@pytest.fixture
def engine(provider, campaign, config, clock, fake_sleep) -> DispatchEngine:
    return DispatchEngine.in_memory(
        provider,
        campaign,
        config=config,
        clock=clock,
        sleep=fake_sleep,
    )


def signed(
    event: Dict[str, Any],
    timestamp: float,
    secret: str = WEBHOOK_SECRET,
):
    """Serialize an event and sign it; returns (body, signature, timestamp)."""
    body = json.dumps(event).encode()
    ts = str(int(timestamp))
    return body, compute_signature(secret, ts, body), ts


def receipt_event(
    event_id: str,
    correlation_id: str,
    status: str = "delivered",
    **payload: Any,
) -> Dict[str, Any]:
    return {
        "event_id": event_id,
        "event_type": "delivery_receipt",
        "occurred_at": "2026-06-15T16:00:05Z",
        "payload": {"provider_correlation_id": correlation_id, "status": status, **payload},
    }


def inbound_event(
    event_id: str,
    text: str,
    sender: str = RECIPIENT,
    recipient: str = SENDER,
) -> Dict[str, Any]:
    return {
        "event_id": event_id,
        "event_type": "inbound_message",
        "occurred_at": "2026-06-15T16:01:00Z",
        "payload": {
            "provider_correlation_id": f"in-{event_id}",
            "sender": sender,
            "recipient": recipient,
            "text": text,
        },
    }
