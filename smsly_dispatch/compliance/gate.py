"""
Compliance Gate
===============
Synchronous admission checks for outbound messages.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.campaigns import Campaign, CampaignDirectory
from smsly_dispatch.errors import ReasonCode
from smsly_dispatch.messaging import normalize_phone
from smsly_dispatch.models import OutboundRequest, utcnow
from smsly_dispatch.optout import OptOutRegistry

from .content import ContentClassifier
from .window import QuietHoursPolicy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    accepted: bool
    reason: Optional[ReasonCode] = None
    detail: Optional[str] = None
    campaign: Optional[Campaign] = None

    @classmethod
    def accept(cls, campaign: Campaign) -> "AdmissionDecision":
        return cls(accepted=True, campaign=campaign)

    @classmethod
    def reject(
        cls,
        reason: ReasonCode,
        detail: Optional[str] = None,
        campaign: Optional[Campaign] = None,
    ) -> "AdmissionDecision":
        return cls(accepted=False, reason=reason, detail=detail, campaign=campaign)


class ComplianceGate:
    """
    Admission checks, evaluated in order and short-circuiting:

    1. campaign is active                  -> CAMPAIGN_INACTIVE
    2. recipient has no active opt-out     -> OPTED_OUT
    3. send time inside the local window   -> OUTSIDE_WINDOW (exempt use cases skip)
    4. no unauthorized restricted content  -> PROHIBITED_CONTENT

    The only side effect is the audit record of the decision.
    """

    def __init__(
        self,
        directory: CampaignDirectory,
        registry: OptOutRegistry,
        quiet_hours: Optional[QuietHoursPolicy] = None,
        classifier: Optional[ContentClassifier] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._directory = directory
        self._registry = registry
        self._quiet_hours = quiet_hours or QuietHoursPolicy()
        self._classifier = classifier or ContentClassifier()
        self._audit = audit
        self._clock = clock

    async def evaluate(self, request: OutboundRequest) -> AdmissionDecision:
        decision = await self._evaluate(request)
        self._record(request, decision)
        return decision

    async def _evaluate(self, request: OutboundRequest) -> AdmissionDecision:
        campaign = await self._directory.get(request.campaign_id)
        if campaign is None:
            return AdmissionDecision.reject(ReasonCode.CAMPAIGN_INACTIVE, "unknown campaign")
        if not campaign.is_active:
            return AdmissionDecision.reject(
                ReasonCode.CAMPAIGN_INACTIVE, campaign.status.value, campaign
            )

        recipient = normalize_phone(request.recipient)

        entry = await self._registry.find_blocking(recipient, campaign.id)
        if entry is not None:
            return AdmissionDecision.reject(ReasonCode.OPTED_OUT, entry.scope, campaign)

        send_at = request.send_at or self._clock()
        if not self.window_open(campaign, recipient, send_at):
            return AdmissionDecision.reject(
                ReasonCode.OUTSIDE_WINDOW, send_at.isoformat(), campaign
            )

        category = self._classifier.first_unauthorized(
            request.text, campaign.authorized_categories
        )
        if category is not None:
            return AdmissionDecision.reject(
                ReasonCode.PROHIBITED_CONTENT, category.value, campaign
            )

        return AdmissionDecision.accept(campaign)

    def window_open(
        self,
        campaign: Campaign,
        recipient: str,
        at: Optional[datetime] = None,
    ) -> bool:
        """Whether a message to ``recipient`` may go out at ``at`` (default: now)."""
        if campaign.window_exempt:
            return True
        return self._quiet_hours.permits(normalize_phone(recipient), at or self._clock())

    def _record(self, request: OutboundRequest, decision: AdmissionDecision) -> None:
        if decision.accepted:
            logger.debug("admission_accepted", campaign_id=request.campaign_id)
        else:
            logger.info(
                "admission_rejected",
                campaign_id=request.campaign_id,
                reason=decision.reason.value,
                detail=decision.detail,
            )

        if self._audit is None:
            return
        self._audit.log(
            AuditEventType.ADMISSION_ACCEPTED if decision.accepted
            else AuditEventType.ADMISSION_REJECTED,
            action="compliance check",
            outcome="success" if decision.accepted else "rejected",
            resource_type="campaign",
            resource_id=request.campaign_id,
            payload={
                "recipient": normalize_phone(request.recipient),
                "reason": decision.reason.value if decision.reason else None,
                "detail": decision.detail,
            },
        )
