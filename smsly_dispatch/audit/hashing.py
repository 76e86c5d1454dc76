"""
Audit Hashing
=============
Hash computation and chain verification for audit logs.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .models import AuditEvent

logger = structlog.get_logger(__name__)


def compute_event_hash(
    previous_hash: Optional[str],
    timestamp: datetime,
    service: str,
    event_type: str,
    resource_id: Optional[str],
    outcome: str,
    payload: Dict[str, Any],
) -> str:
    """
    Compute the SHA-256 hash for an audit event.

    Each hash covers the previous event's hash, so altering or removing any
    entry breaks every hash after it. Payload values that are not JSON
    native are hashed by their string form.
    """
    hash_input = json.dumps({
        "previous_hash": previous_hash,
        "timestamp": timestamp.isoformat(),
        "service": service,
        "event_type": event_type,
        "resource_id": resource_id,
        "outcome": outcome,
        "payload": payload,
    }, sort_keys=True, separators=(",", ":"), default=str)

    return hashlib.sha256(hash_input.encode()).hexdigest()


def _expected_hash(event: AuditEvent) -> str:
    return compute_event_hash(
        event.previous_hash,
        event.timestamp,
        event.service,
        event.event_type,
        event.resource_id,
        event.outcome,
        event.payload,
    )


def verify_chain_integrity(events: List[AuditEvent]) -> Tuple[bool, Optional[int]]:
    """
    Verify the integrity of an audit event chain.

    Args:
        events: Events in chronological order, starting at the chain head

    Returns:
        Tuple of (is_valid, first_invalid_index)
    """
    if not events:
        return True, None

    if events[0].previous_hash is not None:
        return False, 0

    for i, event in enumerate(events):
        if i > 0 and event.previous_hash != events[i - 1].hash:
            logger.warning("audit_chain_linkage_broken", event_id=event.id, index=i)
            return False, i

        expected = _expected_hash(event)
        if event.hash != expected:
            logger.warning(
                "audit_chain_integrity_violation",
                event_id=event.id,
                index=i,
                expected_hash=expected[:16],
                actual_hash=event.hash[:16],
            )
            return False, i

    return True, None
