"""
Audit Trail
===========
Append-only, hash-chained record of admission decisions, dispatch attempts,
state transitions, webhook outcomes and opt-out changes.
"""

from .event_types import AuditEventType
from .models import AuditEvent
from .hashing import compute_event_hash, verify_chain_integrity
from .logger import AuditLogger

__all__ = [
    "AuditEventType",
    "AuditEvent",
    "compute_event_hash",
    "verify_chain_integrity",
    "AuditLogger",
]
