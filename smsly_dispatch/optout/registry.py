"""
Opt-out Registry
================
Suppression list consulted by the compliance gate and updated by inbound
keyword processing.
"""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.campaigns import Campaign, OptOutPolicy
from smsly_dispatch.messaging import normalize_phone
from smsly_dispatch.models import utcnow

from .keywords import KeywordAction, KeywordMatch
from .models import GLOBAL_SCOPE, OptOutEntry, OptOutMethod, campaign_scope

if TYPE_CHECKING:
    from smsly_dispatch.store.base import OptOutStore

logger = structlog.get_logger(__name__)


def scopes_for(campaign_id: Optional[str]) -> List[str]:
    """Scopes that block a send under ``campaign_id``, narrowest first."""
    if campaign_id is None:
        return [GLOBAL_SCOPE]
    return [campaign_scope(campaign_id), GLOBAL_SCOPE]


class OptOutRegistry:
    """
    Durable set of suppressed (phone, scope) pairs.

    Writes go straight to the store and are complete when the coroutine
    returns, so any admission check started afterwards observes them.
    """

    def __init__(
        self,
        store: "OptOutStore",
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._audit = audit
        self._clock = clock

    async def find_blocking(self, phone: str, campaign_id: Optional[str]) -> Optional[OptOutEntry]:
        """Return the first active entry that suppresses ``phone`` for the campaign."""
        now = self._clock()
        entries = await self._store.find(normalize_phone(phone), scopes_for(campaign_id))
        for entry in entries:
            if entry.is_active(now):
                return entry
        return None

    async def is_opted_out(self, phone: str, campaign_id: Optional[str] = None) -> bool:
        """
        Whether ``phone`` is suppressed for ``campaign_id``.

        With no campaign only global opt-outs are considered.
        """
        return await self.find_blocking(phone, campaign_id) is not None

    async def opt_out(
        self,
        phone: str,
        scope: str,
        method: OptOutMethod = OptOutMethod.API,
        keyword: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> OptOutEntry:
        """Create or refresh the (phone, scope) entry."""
        now = self._clock()
        entry = OptOutEntry(
            phone=normalize_phone(phone),
            scope=scope,
            method=method,
            keyword=keyword,
            created_at=now,
            expires_at=now + ttl if ttl else None,
        )
        await self._store.upsert(entry)

        logger.info("opt_out_recorded", phone=entry.phone, scope=scope, method=method.value)
        if self._audit:
            self._audit.log(
                AuditEventType.OPT_OUT_CREATED,
                action="opt-out recorded",
                resource_type="optout",
                resource_id=f"{entry.phone}|{scope}",
                payload={"method": method.value, "keyword": keyword},
            )
        return entry

    async def opt_in(self, phone: str, scope: str) -> bool:
        """Remove the (phone, scope) entry. Returns False if there was none."""
        normalized = normalize_phone(phone)
        removed = await self._store.delete(normalized, scope)

        logger.info("opt_in_recorded", phone=normalized, scope=scope, removed=removed)
        if removed and self._audit:
            self._audit.log(
                AuditEventType.OPT_OUT_REMOVED,
                action="opt-out removed",
                resource_type="optout",
                resource_id=f"{normalized}|{scope}",
            )
        return removed

    async def apply_keyword(
        self,
        phone: str,
        match: KeywordMatch,
        campaign: Optional[Campaign] = None,
    ) -> str:
        """
        Apply a keyword reply from ``phone``.

        The opt-out scope follows the campaign's opt-out policy; STOPALL and
        replies that cannot be tied to a campaign act globally. An opt-in
        clears every scope that would block the campaign, global included.

        Returns:
            The scope that was updated
        """
        scope = self._keyword_scope(match, campaign)

        if match.is_opt_out:
            await self.opt_out(phone, scope, method=OptOutMethod.KEYWORD, keyword=match.keyword)
            return scope

        for blocking in scopes_for(campaign.id if campaign else None):
            await self.opt_in(phone, blocking)
        return scope

    @staticmethod
    def _keyword_scope(match: KeywordMatch, campaign: Optional[Campaign]) -> str:
        if match.action == KeywordAction.OPT_OUT_ALL or campaign is None:
            return GLOBAL_SCOPE
        if campaign.opt_out_policy == OptOutPolicy.GLOBAL:
            return GLOBAL_SCOPE
        return campaign_scope(campaign.id)
