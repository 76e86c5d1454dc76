"""
SQL Stores
==========
SQLAlchemy implementations of the store interfaces.

Status changes are single ``UPDATE ... WHERE status IN (...)`` statements, so
the database itself arbitrates concurrent writers. Infrastructure failures
surface as StoreError.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, List, Optional, Sequence

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smsly_dispatch.errors import StoreError
from smsly_dispatch.messaging import EncodingType
from smsly_dispatch.models import (
    AttemptOutcome,
    Direction,
    DispatchAttempt,
    Message,
    MessageStatus,
)
from smsly_dispatch.optout.models import OptOutEntry, OptOutMethod

from .base import DeadLetter, MessageStore, OptOutStore, ProcessedEvent, WebhookEventStore
from .tables import (
    DeadLetterRow,
    DispatchAttemptRow,
    MessageRow,
    OptOutRow,
    ProcessedEventRow,
)

logger = structlog.get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class _SqlStore:

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(str(e), operation=operation) from e


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------

def _message_from_row(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        campaign_id=row.campaign_id,
        direction=Direction(row.direction),
        sender=row.sender,
        recipient=row.recipient,
        text=row.text,
        status=MessageStatus(row.status),
        encoding=EncodingType(row.encoding) if row.encoding else None,
        segments=row.segments,
        cost=Decimal(row.cost) if row.cost is not None else None,
        provider_correlation_id=row.provider_correlation_id,
        error_code=row.error_code,
        retry_count=row.retry_count,
        archived=row.archived,
        send_at=_aware(row.send_at),
        created_at=_aware(row.created_at),
        queued_at=_aware(row.queued_at),
        sent_at=_aware(row.sent_at),
        delivered_at=_aware(row.delivered_at),
        failed_at=_aware(row.failed_at),
    )


def _row_from_message(message: Message) -> MessageRow:
    return MessageRow(
        id=message.id,
        campaign_id=message.campaign_id,
        direction=message.direction.value,
        sender=message.sender,
        recipient=message.recipient,
        text=message.text,
        status=message.status.value,
        encoding=_column_value(message.encoding),
        segments=message.segments,
        cost=message.cost,
        provider_correlation_id=message.provider_correlation_id,
        error_code=message.error_code,
        retry_count=message.retry_count,
        archived=message.archived,
        send_at=message.send_at,
        created_at=message.created_at,
        queued_at=message.queued_at,
        sent_at=message.sent_at,
        delivered_at=message.delivered_at,
        failed_at=message.failed_at,
    )


class SqlMessageStore(_SqlStore, MessageStore):

    async def add(self, message: Message) -> None:
        try:
            async with self._transaction("message.add") as session:
                session.add(_row_from_message(message))
        except IntegrityError as e:
            raise ValueError(f"Duplicate message id: {message.id}") from e

    async def get(self, message_id: str) -> Optional[Message]:
        async with self._transaction("message.get") as session:
            row = await session.get(MessageRow, message_id)
            return _message_from_row(row) if row else None

    async def get_by_correlation_id(self, correlation_id: str) -> Optional[Message]:
        async with self._transaction("message.get_by_correlation_id") as session:
            result = await session.execute(
                select(MessageRow)
                .where(MessageRow.provider_correlation_id == correlation_id)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _message_from_row(row) if row else None

    async def compare_and_set(
        self,
        message_id: str,
        expected: FrozenSet[MessageStatus],
        changes: Dict[str, Any],
    ) -> Optional[Message]:
        values = {name: _column_value(value) for name, value in changes.items()}
        async with self._transaction("message.compare_and_set") as session:
            result = await session.execute(
                update(MessageRow)
                .where(MessageRow.id == message_id)
                .where(MessageRow.status.in_([s.value for s in expected]))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            row = await session.get(MessageRow, message_id, populate_existing=True)
            return _message_from_row(row)

    async def find_latest_outbound(self, recipient: str, sender: str) -> Optional[Message]:
        async with self._transaction("message.find_latest_outbound") as session:
            result = await session.execute(
                select(MessageRow)
                .where(MessageRow.direction == Direction.OUTBOUND.value)
                .where(MessageRow.recipient == recipient)
                .where(MessageRow.sender == sender)
                .order_by(MessageRow.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _message_from_row(row) if row else None

    async def add_attempt(self, attempt: DispatchAttempt) -> None:
        async with self._transaction("message.add_attempt") as session:
            session.add(DispatchAttemptRow(
                message_id=attempt.message_id,
                attempt=attempt.attempt,
                outcome=attempt.outcome.value,
                error_code=attempt.error_code,
                provider_correlation_id=attempt.provider_correlation_id,
                attempted_at=attempt.attempted_at,
            ))

    async def list_attempts(self, message_id: str) -> List[DispatchAttempt]:
        async with self._transaction("message.list_attempts") as session:
            result = await session.execute(
                select(DispatchAttemptRow)
                .where(DispatchAttemptRow.message_id == message_id)
                .order_by(DispatchAttemptRow.attempt)
            )
            return [
                DispatchAttempt(
                    message_id=row.message_id,
                    attempt=row.attempt,
                    outcome=AttemptOutcome(row.outcome),
                    error_code=row.error_code,
                    provider_correlation_id=row.provider_correlation_id,
                    attempted_at=_aware(row.attempted_at),
                )
                for row in result.scalars()
            ]


# ----------------------------------------------------------------------
# Opt-outs
# ----------------------------------------------------------------------

def _entry_from_row(row: OptOutRow) -> OptOutEntry:
    return OptOutEntry(
        phone=row.phone,
        scope=row.scope,
        method=OptOutMethod(row.method),
        keyword=row.keyword,
        created_at=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
    )


class SqlOptOutStore(_SqlStore, OptOutStore):

    async def upsert(self, entry: OptOutEntry) -> OptOutEntry:
        try:
            await self._upsert(entry)
        except IntegrityError:
            # Concurrent insert for the same (phone, scope); refresh it instead
            await self._upsert(entry)
        return entry

    async def _upsert(self, entry: OptOutEntry) -> None:
        async with self._transaction("optout.upsert") as session:
            result = await session.execute(
                select(OptOutRow)
                .where(OptOutRow.phone == entry.phone)
                .where(OptOutRow.scope == entry.scope)
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(OptOutRow(
                    phone=entry.phone,
                    scope=entry.scope,
                    method=entry.method.value,
                    keyword=entry.keyword,
                    created_at=entry.created_at,
                    expires_at=entry.expires_at,
                ))
            else:
                row.method = entry.method.value
                row.keyword = entry.keyword
                row.created_at = entry.created_at
                row.expires_at = entry.expires_at

    async def delete(self, phone: str, scope: str) -> bool:
        async with self._transaction("optout.delete") as session:
            result = await session.execute(
                delete(OptOutRow)
                .where(OptOutRow.phone == phone)
                .where(OptOutRow.scope == scope)
            )
            return result.rowcount > 0

    async def find(self, phone: str, scopes: Sequence[str]) -> List[OptOutEntry]:
        async with self._transaction("optout.find") as session:
            result = await session.execute(
                select(OptOutRow)
                .where(OptOutRow.phone == phone)
                .where(OptOutRow.scope.in_(list(scopes)))
            )
            entries = [_entry_from_row(row) for row in result.scalars()]
        order = {scope: n for n, scope in enumerate(scopes)}
        return sorted(entries, key=lambda e: order[e.scope])


# ----------------------------------------------------------------------
# Webhook bookkeeping
# ----------------------------------------------------------------------

def _letter_from_row(row: DeadLetterRow) -> DeadLetter:
    return DeadLetter(
        idempotency_key=row.idempotency_key,
        event_type=row.event_type,
        payload=row.payload,
        reason=row.reason,
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=_aware(row.created_at),
    )


class SqlWebhookEventStore(_SqlStore, WebhookEventStore):

    async def is_processed(self, idempotency_key: str) -> bool:
        async with self._transaction("webhook.is_processed") as session:
            row = await session.get(ProcessedEventRow, idempotency_key)
            return row is not None

    async def mark_processed(self, record: ProcessedEvent) -> bool:
        try:
            async with self._transaction("webhook.mark_processed") as session:
                session.add(ProcessedEventRow(
                    idempotency_key=record.idempotency_key,
                    event_type=record.event_type,
                    outcome=record.outcome,
                    payload=record.payload,
                    attempts=record.attempts,
                    processed_at=record.processed_at,
                ))
        except IntegrityError:
            return False
        return True

    async def add_dead_letter(self, letter: DeadLetter) -> None:
        async with self._transaction("webhook.add_dead_letter") as session:
            await session.merge(DeadLetterRow(
                idempotency_key=letter.idempotency_key,
                event_type=letter.event_type,
                payload=letter.payload,
                reason=letter.reason,
                attempts=letter.attempts,
                last_error=letter.last_error,
                created_at=letter.created_at,
            ))

    async def get_dead_letter(self, idempotency_key: str) -> Optional[DeadLetter]:
        async with self._transaction("webhook.get_dead_letter") as session:
            row = await session.get(DeadLetterRow, idempotency_key)
            return _letter_from_row(row) if row else None

    async def remove_dead_letter(self, idempotency_key: str) -> None:
        async with self._transaction("webhook.remove_dead_letter") as session:
            await session.execute(
                delete(DeadLetterRow).where(DeadLetterRow.idempotency_key == idempotency_key)
            )

    async def list_dead_letters(self) -> List[DeadLetter]:
        async with self._transaction("webhook.list_dead_letters") as session:
            result = await session.execute(
                select(DeadLetterRow).order_by(DeadLetterRow.created_at)
            )
            return [_letter_from_row(row) for row in result.scalars()]
