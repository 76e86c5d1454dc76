"""
Webhook Ingestion
=================
Signed provider callbacks: verification, typed parsing and idempotent
application.
"""

from .signature import (
    MAX_TIMESTAMP_SKEW_SECONDS,
    check_timestamp_skew,
    compute_signature,
    verify_signature,
)
from .events import (
    DeliveryReceiptEvent,
    InboundMessageEvent,
    InboundPayload,
    MalformedEvent,
    ReceiptPayload,
    parse_event,
)
from .processor import EventOutcome, IngestResult, WebhookIngestionProcessor

__all__ = [
    "MAX_TIMESTAMP_SKEW_SECONDS",
    "check_timestamp_skew",
    "compute_signature",
    "verify_signature",
    "DeliveryReceiptEvent",
    "InboundMessageEvent",
    "InboundPayload",
    "MalformedEvent",
    "ReceiptPayload",
    "parse_event",
    "EventOutcome",
    "IngestResult",
    "WebhookIngestionProcessor",
]
