"""
Tests for the Compliance Gate
=============================
"""

from datetime import datetime, timezone

import pytest

from smsly_dispatch.campaigns import (
    Campaign,
    CampaignStatus,
    InMemoryCampaignDirectory,
    UseCase,
)
from smsly_dispatch.errors import ReasonCode
from smsly_dispatch.models import OutboundRequest

# 12:00 and 22:30 in New York (EDT, UTC-4)
NOON = datetime(2026, 6, 15, 16, 0, tzinfo=timezone.utc)
LATE = datetime(2026, 6, 16, 2, 30, tzinfo=timezone.utc)


def request(text="Your order shipped", campaign_id="camp-1", send_at=NOON, recipient="+12125550123"):
    return OutboundRequest(
        campaign_id=campaign_id,
        recipient=recipient,
        sender="+15550001111",
        text=text,
        send_at=send_at,
    )


@pytest.fixture
def gate_parts():
    from smsly_dispatch.audit import AuditLogger
    from smsly_dispatch.compliance import ComplianceGate
    from smsly_dispatch.optout import OptOutRegistry
    from smsly_dispatch.store import InMemoryOptOutStore

    directory = InMemoryCampaignDirectory(
        Campaign(id="camp-1", rate_per_second=1.0),
        Campaign(id="camp-2fa", rate_per_second=1.0, use_case=UseCase.TWO_FACTOR_AUTH),
        Campaign(id="camp-off", rate_per_second=1.0, status=CampaignStatus.SUSPENDED),
        Campaign(id="camp-bar", rate_per_second=1.0, authorized_categories=frozenset({"alcohol"})),
    )
    audit = AuditLogger("test")
    registry = OptOutRegistry(InMemoryOptOutStore())
    gate = ComplianceGate(directory, registry, audit=audit)
    return gate, registry, audit


class TestComplianceGate:
    """Tests for ordered admission checks."""

    @pytest.mark.asyncio
    async def test_accepts_clean_request(self, gate_parts):
        gate, _, _ = gate_parts

        decision = await gate.evaluate(request())

        assert decision.accepted is True
        assert decision.campaign.id == "camp-1"

    @pytest.mark.asyncio
    async def test_inactive_campaign(self, gate_parts):
        gate, _, _ = gate_parts

        decision = await gate.evaluate(request(campaign_id="camp-off"))
        assert decision.reason == ReasonCode.CAMPAIGN_INACTIVE

        decision = await gate.evaluate(request(campaign_id="nope"))
        assert decision.reason == ReasonCode.CAMPAIGN_INACTIVE

    @pytest.mark.asyncio
    async def test_opted_out_recipient(self, gate_parts):
        gate, registry, _ = gate_parts
        await registry.opt_out("+12125550123", "campaign:camp-1")

        decision = await gate.evaluate(request())

        assert decision.accepted is False
        assert decision.reason == ReasonCode.OPTED_OUT

    @pytest.mark.asyncio
    async def test_outside_window(self, gate_parts):
        gate, _, _ = gate_parts

        decision = await gate.evaluate(request(send_at=LATE))

        assert decision.reason == ReasonCode.OUTSIDE_WINDOW

    @pytest.mark.asyncio
    async def test_window_exempt_use_case(self, gate_parts):
        """Authentication traffic may be sent at any hour."""
        gate, _, _ = gate_parts

        decision = await gate.evaluate(request(campaign_id="camp-2fa", send_at=LATE))

        assert decision.accepted is True

    @pytest.mark.asyncio
    async def test_prohibited_content(self, gate_parts):
        gate, _, _ = gate_parts

        decision = await gate.evaluate(request(text="Happy hour: half-price beer tonight"))

        assert decision.reason == ReasonCode.PROHIBITED_CONTENT
        assert decision.detail == "alcohol"

    @pytest.mark.asyncio
    async def test_authorized_category_allowed(self, gate_parts):
        gate, _, _ = gate_parts

        decision = await gate.evaluate(
            request(campaign_id="camp-bar", text="Happy hour: half-price beer tonight")
        )

        assert decision.accepted is True

    @pytest.mark.asyncio
    async def test_checks_short_circuit_in_order(self, gate_parts):
        """Opt-out is reported before window and content problems."""
        gate, registry, _ = gate_parts
        await registry.opt_out("+12125550123", "global")

        decision = await gate.evaluate(request(text="cheap vodka", send_at=LATE))

        assert decision.reason == ReasonCode.OPTED_OUT

    @pytest.mark.asyncio
    async def test_decisions_are_audited(self, gate_parts):
        gate, _, audit = gate_parts

        await gate.evaluate(request())
        await gate.evaluate(request(send_at=LATE))

        events = audit.pending
        assert [e.event_type for e in events] == ["admission.accepted", "admission.rejected"]
        assert events[1].payload["reason"] == "OUTSIDE_WINDOW"


class TestQuietHours:
    """Tests for the local sending window."""

    def test_window_bounds(self):
        """08:00 is inside, 21:00 is outside."""
        from smsly_dispatch.compliance import QuietHoursPolicy

        policy = QuietHoursPolicy()
        # America/New_York in June is UTC-4
        assert policy.permits("+12125550123", datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc))
        assert not policy.permits("+12125550123", datetime(2026, 6, 15, 11, 59, tzinfo=timezone.utc))
        assert not policy.permits("+12125550123", datetime(2026, 6, 16, 1, 0, tzinfo=timezone.utc))

    def test_recipient_timezone_source(self):
        """With recipient resolution a Los Angeles number uses Pacific time."""
        from smsly_dispatch.compliance import QuietHoursPolicy, TimezoneResolver
        from smsly_dispatch.config import TimezoneSource

        policy = QuietHoursPolicy(resolver=TimezoneResolver(TimezoneSource.RECIPIENT))
        # 13:30 UTC is 09:30 in New York but 06:30 in Los Angeles
        at = datetime(2026, 6, 15, 13, 30, tzinfo=timezone.utc)

        assert policy.permits("+12125550123", at)
        assert not policy.permits("+13105550123", at)

    def test_unknown_area_code_falls_back_to_account(self):
        from smsly_dispatch.compliance import TimezoneResolver
        from smsly_dispatch.config import TimezoneSource

        resolver = TimezoneResolver(TimezoneSource.RECIPIENT, account_timezone="America/Chicago")

        assert str(resolver.resolve("+19995550123")) == "America/Chicago"
        assert str(resolver.resolve("+442079460958")) == "America/Chicago"


class TestContentClassifier:

    def test_classify_multiple_categories(self):
        from smsly_dispatch.compliance import ContentClassifier, ContentCategory

        found = ContentClassifier().classify("Cigars and whiskey night")

        assert ContentCategory.ALCOHOL in found
        assert ContentCategory.TOBACCO in found

    def test_clean_text(self):
        from smsly_dispatch.compliance import ContentClassifier

        assert ContentClassifier().classify("Your appointment is at 3pm") == []
