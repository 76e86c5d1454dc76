"""
End-to-end Tests for the Dispatch Engine
========================================
"""

import pytest

from smsly_dispatch.campaigns import Campaign
from smsly_dispatch.engine import DispatchEngine
from smsly_dispatch.errors import PermanentProviderError, ReasonCode
from smsly_dispatch.models import MessageStatus, OutboundRequest
from tests.conftest import (
    RECIPIENT,
    SENDER,
    FakeProvider,
    FakeSleep,
    inbound_event,
    receipt_event,
    signed,
)


def outbound(text="Your order shipped", campaign_id="camp-1", recipient=RECIPIENT):
    return OutboundRequest(campaign_id=campaign_id, recipient=recipient, sender=SENDER, text=text)


class TestSubmit:
    """Tests for the outbound pipeline."""

    @pytest.mark.asyncio
    async def test_submit_sends_and_prices(self, engine, provider):
        result = await engine.submit(outbound("a" * 200))

        assert result.accepted is True
        assert result.sent is True
        assert result.message.status == MessageStatus.SENT
        assert result.message.segments == 2
        assert str(result.message.cost) == "0.0158"
        assert result.estimate.segments == 2
        assert provider.sent[0].status == MessageStatus.QUEUED

    @pytest.mark.asyncio
    async def test_numbers_are_normalized(self, engine, provider):
        result = await engine.submit(outbound(recipient="(212) 555-0123"))

        assert result.message.recipient == RECIPIENT
        assert provider.sent[0].recipient == RECIPIENT

    @pytest.mark.asyncio
    async def test_compliance_rejection_creates_no_message(self, engine, provider):
        result = await engine.submit(outbound("Ammo sale this weekend"))

        assert result.accepted is False
        assert result.reason == ReasonCode.PROHIBITED_CONTENT
        assert result.message is None
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_backpressure_leaves_message_created(self, provider, config, clock, fake_sleep):
        """A throttled message stays CREATED and can be resubmitted."""
        engine = DispatchEngine.in_memory(
            provider,
            Campaign(id="camp-1", rate_per_second=1.0),
            config=config,
            clock=clock,
            sleep=fake_sleep,
        )
        assert (await engine.submit(outbound())).sent

        throttled = await engine.submit(outbound("Second"), timeout=0.0)

        assert throttled.accepted is False
        assert throttled.reason == ReasonCode.BACKPRESSURE
        assert throttled.message.status == MessageStatus.CREATED
        assert len(provider.sent) == 1

        clock.advance(1.0)
        retried = await engine.resubmit(throttled.message.id, timeout=0.0)

        assert retried.sent is True
        assert retried.message.id == throttled.message.id

    @pytest.mark.asyncio
    async def test_resubmit_rechecks_compliance(self, provider, config, clock, fake_sleep):
        engine = DispatchEngine.in_memory(
            provider,
            Campaign(id="camp-1", rate_per_second=1.0),
            config=config,
            clock=clock,
            sleep=fake_sleep,
        )
        await engine.submit(outbound())
        throttled = await engine.submit(outbound("Second"), timeout=0.0)
        await engine.registry.opt_out(RECIPIENT, "global")

        result = await engine.resubmit(throttled.message.id)

        assert result.reason == ReasonCode.OPTED_OUT
        assert (await engine.get_message(throttled.message.id)).status == MessageStatus.CREATED

    @pytest.mark.asyncio
    async def test_future_send_at_does_not_open_window(self, engine, provider, clock):
        """At 23:30 local nothing goes out, even when send_at names tomorrow noon."""
        from datetime import datetime, timezone

        clock.now = datetime(2026, 6, 16, 3, 30, tzinfo=timezone.utc).timestamp()
        tomorrow_noon = datetime(2026, 6, 16, 16, 0, tzinfo=timezone.utc)

        held = await engine.submit(OutboundRequest(
            campaign_id="camp-1",
            recipient=RECIPIENT,
            sender=SENDER,
            text="See you tomorrow",
            send_at=tomorrow_noon,
        ))

        assert held.accepted is False
        assert held.reason == ReasonCode.OUTSIDE_WINDOW
        assert held.message.status == MessageStatus.CREATED
        assert held.message.send_at == tomorrow_noon
        assert provider.sent == []

        clock.now = tomorrow_noon.timestamp()
        sent = await engine.resubmit(held.message.id)

        assert sent.sent is True
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_window_closing_during_admission_wait(self, provider, config, clock, fake_sleep):
        """A message admitted after 21:00 local is failed, not sent."""
        from datetime import datetime, timezone

        # 20:59 in New York
        clock.now = datetime(2026, 6, 16, 0, 59, tzinfo=timezone.utc).timestamp()
        engine = DispatchEngine.in_memory(
            provider,
            Campaign(id="camp-1", rate_per_second=0.001),
            config=config,
            clock=clock,
            sleep=fake_sleep,
        )
        assert (await engine.submit(outbound())).sent

        late = await engine.submit(outbound("Second"), timeout=2000.0)

        assert late.reason == ReasonCode.OUTSIDE_WINDOW
        assert late.message.status == MessageStatus.FAILED
        assert late.message.error_code == "OUTSIDE_WINDOW"
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_resubmit_rejects_dispatched_message(self, engine):
        result = await engine.submit(outbound())

        with pytest.raises(ValueError):
            await engine.resubmit(result.message.id)
        with pytest.raises(KeyError):
            await engine.resubmit("missing")

    @pytest.mark.asyncio
    async def test_stop_during_admission_wait_suppresses(self, provider, config, clock):
        """An opt-out that lands while a message waits for a token wins."""
        holder = {}

        async def sleep_with_stop(delay):
            await holder["engine"].registry.opt_out(RECIPIENT, "global")
            clock.advance(delay)

        engine = DispatchEngine.in_memory(
            provider,
            Campaign(id="camp-1", rate_per_second=1.0),
            config=config,
            clock=clock,
            sleep=sleep_with_stop,
        )
        holder["engine"] = engine
        await engine.submit(outbound())

        result = await engine.submit(outbound("Second"), timeout=5.0)

        assert result.reason == ReasonCode.OPTED_OUT
        assert result.message.status == MessageStatus.FAILED
        assert result.message.error_code == "OPTED_OUT"
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_is_terminal(self, config, clock, fake_sleep, campaign):
        provider = FakeProvider([PermanentProviderError("21211")])
        engine = DispatchEngine.in_memory(provider, campaign, config=config, clock=clock, sleep=fake_sleep)

        result = await engine.submit(outbound())

        assert result.accepted is True
        assert result.sent is False
        assert result.reason == ReasonCode.PROVIDER_PERMANENT
        assert result.message.status == MessageStatus.FAILED

    @pytest.mark.asyncio
    async def test_campaign_rate_override(self, config, clock, fake_sleep):
        """A campaign's own per-segment rate overrides the configured default."""
        from decimal import Decimal

        engine = DispatchEngine.in_memory(
            FakeProvider(),
            Campaign(id="camp-1", rate_per_second=5.0, cost_per_segment=Decimal("0.02")),
            config=config,
            clock=clock,
            sleep=fake_sleep,
        )

        result = await engine.submit(outbound())

        assert result.message.cost == Decimal("0.02")


class TestLifecycle:
    """Tests spanning outbound send, receipts and inbound replies."""

    @pytest.mark.asyncio
    async def test_full_conversation_and_audit_chain(self, engine, clock):
        from smsly_dispatch.audit import verify_chain_integrity

        sent = await engine.submit(outbound())
        body, sig, ts = signed(receipt_event("evt-1", sent.message.provider_correlation_id), clock())
        await engine.handle_webhook(body, sig, ts)
        body, sig, ts = signed(inbound_event("evt-2", "STOP"), clock())
        await engine.handle_webhook(body, sig, ts)
        blocked = await engine.submit(outbound("Last one"))

        assert (await engine.get_message(sent.message.id)).status == MessageStatus.DELIVERED
        assert blocked.reason == ReasonCode.OPTED_OUT

        events = engine.audit.pending
        valid, broken_at = verify_chain_integrity(events)
        assert valid is True
        assert broken_at is None
        types = {e.event_type for e in events}
        assert {"admission.accepted", "dispatch.attempt", "webhook.applied", "optout.created"} <= types

    @pytest.mark.asyncio
    async def test_start_reply_restores_sending(self, engine, clock):
        first = await engine.submit(outbound())
        body, sig, ts = signed(inbound_event("evt-1", "stop"), clock())
        await engine.handle_webhook(body, sig, ts)
        blocked = await engine.submit(outbound("Are you still there?"))

        body, sig, ts = signed(inbound_event("evt-2", "Start"), clock())
        await engine.handle_webhook(body, sig, ts)
        resumed = await engine.submit(outbound("Welcome back"))

        assert first.sent is True
        assert blocked.reason == ReasonCode.OPTED_OUT
        assert resumed.sent is True
        assert await engine.is_opted_out(RECIPIENT, "camp-1") is False

    @pytest.mark.asyncio
    async def test_start_and_close(self, engine, provider):
        await engine.start()
        await engine.close()

        assert provider.closed is True
