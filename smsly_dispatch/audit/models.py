"""
Audit Models
============
Data models for audit log entries.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuditEvent:
    """An audit log entry with hash chain support."""
    id: str
    timestamp: datetime
    service: str
    event_type: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    action: str
    outcome: str  # "success", "failure", "rejected", "noop"
    payload: Dict[str, Any]
    hash: str
    previous_hash: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d
