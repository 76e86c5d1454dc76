"""
Opt-out Models
==============
Suppression entries keyed by (phone, scope).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from smsly_dispatch.models import utcnow

GLOBAL_SCOPE = "global"


def campaign_scope(campaign_id: str) -> str:
    """Scope key for a campaign-only opt-out."""
    return f"campaign:{campaign_id}"


class OptOutMethod(str, Enum):
    KEYWORD = "keyword"
    API = "api"
    IMPORT = "import"


@dataclass
class OptOutEntry:
    """A suppressed (phone, scope) pair."""
    phone: str
    scope: str
    method: OptOutMethod = OptOutMethod.KEYWORD
    keyword: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @property
    def is_global(self) -> bool:
        return self.scope == GLOBAL_SCOPE

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return (now or utcnow()) < self.expires_at
