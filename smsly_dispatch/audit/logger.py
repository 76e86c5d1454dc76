"""
Audit Logger
============
Records audit events and maintains the hash chain.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from .event_types import AuditEventType
from .models import AuditEvent
from .hashing import compute_event_hash

logger = structlog.get_logger(__name__)

AuditSink = Callable[[AuditEvent], None]


class AuditLogger:
    """
    Append-only audit log.

    Events are buffered until flushed; an optional sink receives each event
    as it is written (e.g. to ship it to durable storage).
    """

    def __init__(self, service_name: str, sink: Optional[AuditSink] = None):
        self.service_name = service_name
        self._sink = sink
        self._previous_hash: Optional[str] = None
        self._buffer: List[AuditEvent] = []

    def set_previous_hash(self, hash_value: str) -> None:
        """Resume an existing chain (e.g. from storage on startup)."""
        self._previous_hash = hash_value

    def log(
        self,
        event_type: AuditEventType,
        action: str,
        outcome: str = "success",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Append an audit event.

        Args:
            event_type: Type of event
            action: Short description of what happened
            outcome: "success", "failure", "rejected" or "noop"
            resource_type: "message", "campaign", "optout", "webhook"
            resource_id: ID of the affected resource
            payload: Additional event data

        Returns:
            The created AuditEvent
        """
        timestamp = datetime.now(timezone.utc)
        payload = payload or {}
        event_type_str = (
            event_type.value if isinstance(event_type, AuditEventType)
            else event_type
        )

        event_hash = compute_event_hash(
            self._previous_hash,
            timestamp,
            self.service_name,
            event_type_str,
            resource_id,
            outcome,
            payload,
        )

        event = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=timestamp,
            service=self.service_name,
            event_type=event_type_str,
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            outcome=outcome,
            payload=payload,
            hash=event_hash,
            previous_hash=self._previous_hash,
        )

        self._previous_hash = event_hash
        self._buffer.append(event)
        if self._sink is not None:
            self._sink(event)

        logger.debug(
            "audit_event_logged",
            event_type=event.event_type,
            resource_id=resource_id,
            outcome=outcome,
        )
        return event

    @property
    def pending(self) -> List[AuditEvent]:
        return list(self._buffer)

    def flush(self) -> List[AuditEvent]:
        """Return and clear buffered events."""
        events = self._buffer
        self._buffer = []
        return events
