"""
Store Interfaces
================
Abstract persistence boundaries. Implementations raise StoreError for
infrastructure failures so callers can retry them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from smsly_dispatch.models import DispatchAttempt, Message, MessageStatus, utcnow
from smsly_dispatch.optout.models import OptOutEntry


@dataclass
class ProcessedEvent:
    """Write-once record of an applied webhook event."""
    idempotency_key: str
    event_type: str
    outcome: str
    payload: str
    attempts: int = 1
    processed_at: datetime = field(default_factory=utcnow)


@dataclass
class DeadLetter:
    """An event held for manual review."""
    idempotency_key: str
    event_type: str
    payload: str
    reason: str
    attempts: int = 1
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


class MessageStore(ABC):

    @abstractmethod
    async def add(self, message: Message) -> None:
        ...

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    async def get_by_correlation_id(self, correlation_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    async def compare_and_set(
        self,
        message_id: str,
        expected: FrozenSet[MessageStatus],
        changes: Dict[str, Any],
    ) -> Optional[Message]:
        """
        Apply ``changes`` only if the message's current status is in
        ``expected``.

        Returns:
            The updated message, or None if the message is missing or its
            status no longer matches
        """

    @abstractmethod
    async def find_latest_outbound(self, recipient: str, sender: str) -> Optional[Message]:
        """Most recent outbound message sent from ``sender`` to ``recipient``."""

    @abstractmethod
    async def add_attempt(self, attempt: DispatchAttempt) -> None:
        ...

    @abstractmethod
    async def list_attempts(self, message_id: str) -> List[DispatchAttempt]:
        ...


class OptOutStore(ABC):

    @abstractmethod
    async def upsert(self, entry: OptOutEntry) -> OptOutEntry:
        """Create the (phone, scope) entry or refresh the existing one."""

    @abstractmethod
    async def delete(self, phone: str, scope: str) -> bool:
        ...

    @abstractmethod
    async def find(self, phone: str, scopes: Sequence[str]) -> List[OptOutEntry]:
        """All entries for ``phone`` in any of ``scopes``, expired or not."""


class WebhookEventStore(ABC):

    @abstractmethod
    async def is_processed(self, idempotency_key: str) -> bool:
        ...

    @abstractmethod
    async def mark_processed(self, record: ProcessedEvent) -> bool:
        """
        Record the key as processed.

        Returns:
            False if the key was already recorded
        """

    @abstractmethod
    async def add_dead_letter(self, letter: DeadLetter) -> None:
        ...

    @abstractmethod
    async def get_dead_letter(self, idempotency_key: str) -> Optional[DeadLetter]:
        ...

    @abstractmethod
    async def remove_dead_letter(self, idempotency_key: str) -> None:
        ...

    @abstractmethod
    async def list_dead_letters(self) -> List[DeadLetter]:
        ...
