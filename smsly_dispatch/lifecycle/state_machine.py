"""
Delivery State Machine
======================
Per-message lifecycle:

    CREATED -> QUEUED -> SENT -> DELIVERED
                     \\       \\-> FAILED
                      \\-> FAILED

Inbound messages are stored directly as RECEIVED. Every transition is a
compare-and-set against the store, so a stale or duplicate writer can never
move a message backwards; such attempts are logged no-ops.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Optional

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.messaging import SegmentEstimate
from smsly_dispatch.models import (
    Message,
    MessageStatus,
    TERMINAL_STATUSES,
    utcnow,
)
from smsly_dispatch.store.base import MessageStore

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[MessageStatus, FrozenSet[MessageStatus]] = {
    MessageStatus.CREATED: frozenset({MessageStatus.QUEUED}),
    MessageStatus.QUEUED: frozenset({MessageStatus.SENT, MessageStatus.FAILED}),
    MessageStatus.SENT: frozenset({MessageStatus.DELIVERED, MessageStatus.FAILED}),
}

_TIMESTAMP_FIELDS = {
    MessageStatus.QUEUED: "queued_at",
    MessageStatus.SENT: "sent_at",
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.FAILED: "failed_at",
}


def sources_of(target: MessageStatus) -> FrozenSet[MessageStatus]:
    """States from which ``target`` may be entered."""
    return frozenset(
        source for source, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    )


@dataclass(frozen=True)
class TransitionResult:
    applied: bool
    message: Optional[Message] = None
    previous: Optional[MessageStatus] = None
    reason: Optional[str] = None


class DeliveryStateMachine:
    """Applies lifecycle transitions to stored messages."""

    def __init__(
        self,
        store: MessageStore,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._audit = audit
        self._clock = clock

    async def transition(
        self,
        message_id: str,
        target: MessageStatus,
        at: Optional[datetime] = None,
        **changes: Any,
    ) -> TransitionResult:
        """
        Move a message to ``target`` if its current state allows it.

        Never raises for an invalid transition; the result says whether it
        was applied.
        """
        current = await self._store.get(message_id)
        if current is None:
            return self._noop(message_id, target, None, "unknown_message")

        allowed = sources_of(target)
        if current.status not in allowed:
            reason = "terminal" if current.is_terminal else "not_allowed"
            return self._noop(message_id, target, current, reason)

        changes["status"] = target
        stamp = _TIMESTAMP_FIELDS.get(target)
        if stamp:
            changes[stamp] = at or self._clock()

        updated = await self._store.compare_and_set(message_id, allowed, changes)
        if updated is None:
            # Lost a race with another writer
            latest = await self._store.get(message_id)
            return self._noop(message_id, target, latest, "concurrent_update")

        logger.info(
            "message_transition",
            message_id=message_id,
            from_status=current.status.value,
            to_status=target.value,
        )
        if self._audit:
            self._audit.log(
                AuditEventType.MESSAGE_TRANSITION,
                action=f"{current.status.value} -> {target.value}",
                resource_type="message",
                resource_id=message_id,
                payload={
                    "from": current.status.value,
                    "to": target.value,
                    "error_code": updated.error_code,
                },
            )
        return TransitionResult(applied=True, message=updated, previous=current.status)

    async def mark_queued(self, message_id: str, estimate: SegmentEstimate) -> TransitionResult:
        return await self.transition(
            message_id,
            MessageStatus.QUEUED,
            encoding=estimate.encoding,
            segments=estimate.segments,
            cost=estimate.cost,
        )

    async def mark_sent(
        self,
        message_id: str,
        correlation_id: str,
        retry_count: int = 0,
    ) -> TransitionResult:
        return await self.transition(
            message_id,
            MessageStatus.SENT,
            provider_correlation_id=correlation_id,
            retry_count=retry_count,
        )

    async def mark_delivered(
        self,
        message_id: str,
        at: Optional[datetime] = None,
    ) -> TransitionResult:
        return await self.transition(message_id, MessageStatus.DELIVERED, at=at)

    async def mark_failed(
        self,
        message_id: str,
        error_code: str,
        at: Optional[datetime] = None,
        retry_count: Optional[int] = None,
    ) -> TransitionResult:
        changes: Dict[str, Any] = {"error_code": error_code}
        if retry_count is not None:
            changes["retry_count"] = retry_count
        return await self.transition(message_id, MessageStatus.FAILED, at=at, **changes)

    async def archive(self, message_id: str) -> bool:
        """Flag a terminal message as archived. Messages are never deleted."""
        updated = await self._store.compare_and_set(
            message_id, TERMINAL_STATUSES, {"archived": True}
        )
        if updated is None:
            logger.info("archive_skipped", message_id=message_id)
            return False
        if self._audit:
            self._audit.log(
                AuditEventType.MESSAGE_ARCHIVED,
                action="archived",
                resource_type="message",
                resource_id=message_id,
            )
        return True

    def _noop(
        self,
        message_id: str,
        target: MessageStatus,
        current: Optional[Message],
        reason: str,
    ) -> TransitionResult:
        logger.info(
            "transition_ignored",
            message_id=message_id,
            current_status=current.status.value if current else None,
            target_status=target.value,
            reason=reason,
        )
        return TransitionResult(
            applied=False,
            message=current,
            previous=current.status if current else None,
            reason=reason,
        )
