"""
Message Models
==============
Messages, their lifecycle states and dispatch attempt records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from smsly_dispatch.messaging import EncodingType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageStatus(str, Enum):
    """Delivery lifecycle states."""
    CREATED = "created"
    QUEUED = "queued"
    SENT = "sent"          # provider acknowledged, awaiting receipt
    DELIVERED = "delivered"
    FAILED = "failed"
    RECEIVED = "received"  # inbound, terminal on arrival


TERMINAL_STATUSES = frozenset({
    MessageStatus.DELIVERED,
    MessageStatus.FAILED,
    MessageStatus.RECEIVED,
})


class Direction(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


@dataclass
class OutboundRequest:
    """A candidate outbound message, as submitted by a caller."""
    campaign_id: str
    recipient: str
    sender: str
    text: str
    send_at: Optional[datetime] = None


@dataclass
class Message:
    """A single SMS, inbound or outbound."""
    campaign_id: Optional[str]
    direction: Direction
    sender: str
    recipient: str
    text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MessageStatus = MessageStatus.CREATED
    encoding: Optional[EncodingType] = None
    segments: Optional[int] = None
    cost: Optional[Decimal] = None
    provider_correlation_id: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    archived: bool = False
    send_at: Optional[datetime] = None  # requested by the caller
    created_at: datetime = field(default_factory=utcnow)
    queued_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def outbound(cls, request: OutboundRequest) -> "Message":
        return cls(
            campaign_id=request.campaign_id,
            direction=Direction.OUTBOUND,
            sender=request.sender,
            recipient=request.recipient,
            text=request.text,
            send_at=request.send_at,
        )

    @classmethod
    def inbound(
        cls,
        sender: str,
        recipient: str,
        text: str,
        correlation_id: str,
        campaign_id: Optional[str] = None,
        received_at: Optional[datetime] = None,
    ) -> "Message":
        return cls(
            campaign_id=campaign_id,
            direction=Direction.INBOUND,
            sender=sender,
            recipient=recipient,
            text=text,
            status=MessageStatus.RECEIVED,
            provider_correlation_id=correlation_id,
            delivered_at=received_at or utcnow(),
        )


class AttemptOutcome(str, Enum):
    ACCEPTED = "accepted"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass
class DispatchAttempt:
    """One call to the provider, successful or not."""
    message_id: str
    attempt: int
    outcome: AttemptOutcome
    error_code: Optional[str] = None
    provider_correlation_id: Optional[str] = None
    attempted_at: datetime = field(default_factory=utcnow)
