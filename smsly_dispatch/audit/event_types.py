"""
Audit Event Types
=================
Event types recorded by the dispatch engine.
"""

from enum import Enum


class AuditEventType(str, Enum):
    # Compliance gate
    ADMISSION_ACCEPTED = "admission.accepted"
    ADMISSION_REJECTED = "admission.rejected"

    # Throughput scheduler
    THROTTLE_ADMITTED = "throttle.admitted"
    THROTTLE_REJECTED = "throttle.rejected"
    RATE_CHANGED = "throttle.rate_changed"

    # Dispatcher
    DISPATCH_ATTEMPT = "dispatch.attempt"

    # Delivery state machine
    MESSAGE_TRANSITION = "message.transition"
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_ARCHIVED = "message.archived"

    # Webhook ingestion
    WEBHOOK_APPLIED = "webhook.applied"
    WEBHOOK_REJECTED = "webhook.rejected"
    WEBHOOK_DEAD_LETTERED = "webhook.dead_lettered"

    # Opt-out registry
    OPT_OUT_CREATED = "optout.created"
    OPT_OUT_REMOVED = "optout.removed"
