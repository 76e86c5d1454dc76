"""
In-Memory Stores
================
Dict-backed stores for development and testing. Every operation completes
without awaiting, so each one is atomic with respect to other coroutines.
"""

import dataclasses
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from smsly_dispatch.models import Direction, DispatchAttempt, Message, MessageStatus
from smsly_dispatch.optout.models import OptOutEntry

from .base import DeadLetter, MessageStore, OptOutStore, ProcessedEvent, WebhookEventStore


class InMemoryMessageStore(MessageStore):
    """Message store backed by dicts. Returns copies, never live records."""

    def __init__(self):
        self._messages: Dict[str, Message] = {}
        self._by_correlation: Dict[str, str] = {}
        self._attempts: Dict[str, List[DispatchAttempt]] = {}

    async def add(self, message: Message) -> None:
        if message.id in self._messages:
            raise ValueError(f"Duplicate message id: {message.id}")
        self._messages[message.id] = dataclasses.replace(message)
        if message.provider_correlation_id:
            self._by_correlation[message.provider_correlation_id] = message.id

    async def get(self, message_id: str) -> Optional[Message]:
        message = self._messages.get(message_id)
        return dataclasses.replace(message) if message else None

    async def get_by_correlation_id(self, correlation_id: str) -> Optional[Message]:
        message_id = self._by_correlation.get(correlation_id)
        if message_id is None:
            return None
        return await self.get(message_id)

    async def compare_and_set(
        self,
        message_id: str,
        expected: FrozenSet[MessageStatus],
        changes: Dict[str, Any],
    ) -> Optional[Message]:
        current = self._messages.get(message_id)
        if current is None or current.status not in expected:
            return None

        updated = dataclasses.replace(current, **changes)
        self._messages[message_id] = updated
        if updated.provider_correlation_id:
            self._by_correlation[updated.provider_correlation_id] = message_id
        return dataclasses.replace(updated)

    async def find_latest_outbound(self, recipient: str, sender: str) -> Optional[Message]:
        candidates = [
            m for m in self._messages.values()
            if m.direction == Direction.OUTBOUND
            and m.recipient == recipient
            and m.sender == sender
        ]
        if not candidates:
            return None
        return dataclasses.replace(max(candidates, key=lambda m: m.created_at))

    async def add_attempt(self, attempt: DispatchAttempt) -> None:
        self._attempts.setdefault(attempt.message_id, []).append(attempt)

    async def list_attempts(self, message_id: str) -> List[DispatchAttempt]:
        return list(self._attempts.get(message_id, []))


class InMemoryOptOutStore(OptOutStore):

    def __init__(self):
        self._entries: Dict[Tuple[str, str], OptOutEntry] = {}

    async def upsert(self, entry: OptOutEntry) -> OptOutEntry:
        self._entries[(entry.phone, entry.scope)] = dataclasses.replace(entry)
        return entry

    async def delete(self, phone: str, scope: str) -> bool:
        return self._entries.pop((phone, scope), None) is not None

    async def find(self, phone: str, scopes: Sequence[str]) -> List[OptOutEntry]:
        return [
            dataclasses.replace(self._entries[(phone, scope)])
            for scope in scopes
            if (phone, scope) in self._entries
        ]


class InMemoryWebhookEventStore(WebhookEventStore):

    def __init__(self):
        self._processed: Dict[str, ProcessedEvent] = {}
        self._dead_letters: Dict[str, DeadLetter] = {}

    async def is_processed(self, idempotency_key: str) -> bool:
        return idempotency_key in self._processed

    async def mark_processed(self, record: ProcessedEvent) -> bool:
        if record.idempotency_key in self._processed:
            return False
        self._processed[record.idempotency_key] = record
        return True

    async def add_dead_letter(self, letter: DeadLetter) -> None:
        self._dead_letters[letter.idempotency_key] = letter

    async def get_dead_letter(self, idempotency_key: str) -> Optional[DeadLetter]:
        return self._dead_letters.get(idempotency_key)

    async def remove_dead_letter(self, idempotency_key: str) -> None:
        self._dead_letters.pop(idempotency_key, None)

    async def list_dead_letters(self) -> List[DeadLetter]:
        return sorted(self._dead_letters.values(), key=lambda d: d.created_at)
