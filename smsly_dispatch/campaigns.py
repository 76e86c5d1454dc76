"""
Campaign Directory
==================
Read-only view of campaigns owned by the registration subsystem.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

import structlog

logger = structlog.get_logger(__name__)


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class UseCase(str, Enum):
    """Registered 10DLC use cases."""
    MARKETING = "marketing"
    MIXED = "mixed"
    CUSTOMER_CARE = "customer_care"
    ACCOUNT_NOTIFICATION = "account_notification"
    DELIVERY_NOTIFICATION = "delivery_notification"
    TWO_FACTOR_AUTH = "2fa"
    SECURITY_ALERT = "security_alert"
    FRAUD_ALERT = "fraud_alert"


# Sent on demand by the recipient, so not bound by quiet hours
WINDOW_EXEMPT_USE_CASES = frozenset({
    UseCase.TWO_FACTOR_AUTH,
    UseCase.SECURITY_ALERT,
    UseCase.FRAUD_ALERT,
})


class OptOutPolicy(str, Enum):
    """Scope a STOP reply applies to."""
    CAMPAIGN = "campaign"
    GLOBAL = "global"


@dataclass(frozen=True)
class Campaign:
    """A registered campaign and its trust-score-derived limits."""
    id: str
    rate_per_second: float
    status: CampaignStatus = CampaignStatus.ACTIVE
    use_case: UseCase = UseCase.MARKETING
    daily_cap: Optional[int] = None
    monthly_cap: Optional[int] = None
    authorized_categories: FrozenSet[str] = field(default_factory=frozenset)
    opt_out_policy: OptOutPolicy = OptOutPolicy.CAMPAIGN
    cost_per_segment: Optional[Decimal] = None  # falls back to the account rate
    timezone: str = "UTC"

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    @property
    def window_exempt(self) -> bool:
        return self.use_case in WINDOW_EXEMPT_USE_CASES


class CampaignDirectory(ABC):
    """Lookup boundary to the registration subsystem."""

    @abstractmethod
    async def get(self, campaign_id: str) -> Optional[Campaign]:
        """Return the campaign, or None if it is not registered."""


class InMemoryCampaignDirectory(CampaignDirectory):
    """Campaign directory backed by a dict, for development and testing."""

    def __init__(self, *campaigns: Campaign):
        self._campaigns: Dict[str, Campaign] = {c.id: c for c in campaigns}

    def put(self, campaign: Campaign) -> None:
        self._campaigns[campaign.id] = campaign
        logger.info(
            "campaign_registered",
            campaign_id=campaign.id,
            status=campaign.status.value,
            rate=campaign.rate_per_second,
        )

    def remove(self, campaign_id: str) -> None:
        self._campaigns.pop(campaign_id, None)

    async def get(self, campaign_id: str) -> Optional[Campaign]:
        return self._campaigns.get(campaign_id)
