"""
Webhook Ingestion Processor
===========================
Verifies, deduplicates and applies provider callbacks.

Events are applied inline on ingestion. A store failure while applying an
event hands it to a background retry queue; once the retry budget is spent
the event is moved to the dead-letter store for manual review.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set, Union

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.campaigns import Campaign, CampaignDirectory
from smsly_dispatch.errors import ReasonCode, StoreError
from smsly_dispatch.lifecycle import DeliveryStateMachine
from smsly_dispatch.locks import KeyedLock
from smsly_dispatch.messaging import SegmentEstimate, count_units, normalize_phone, reconcile
from smsly_dispatch.models import Message
from smsly_dispatch.optout import OptOutRegistry, extract_keyword
from smsly_dispatch.retry import compute_backoff
from smsly_dispatch.store.base import (
    DeadLetter,
    MessageStore,
    ProcessedEvent,
    WebhookEventStore,
)

from .events import (
    DeliveryReceiptEvent,
    InboundMessageEvent,
    MalformedEvent,
    parse_event,
)
from .signature import check_timestamp_skew, verify_signature

logger = structlog.get_logger(__name__)

Event = Union[DeliveryReceiptEvent, InboundMessageEvent]


class EventOutcome:
    APPLIED = "applied"
    NOOP = "noop"  # valid event whose transition no longer applies
    DUPLICATE = "duplicate"
    DEAD_LETTERED = "dead_lettered"
    DEFERRED = "deferred"
    REJECTED = "rejected"


@dataclass(frozen=True)
class IngestResult:
    """What happened to one callback. ``accepted`` maps to an HTTP 2xx."""
    accepted: bool
    outcome: str
    event_id: Optional[str] = None
    reason: Optional[ReasonCode] = None
    detail: Optional[str] = None


@dataclass
class _RetryItem:
    event: Event
    attempt: int
    last_error: str


class WebhookIngestionProcessor:
    """
    Applies provider events at most once per idempotency key.

    Events touching the same message (delivery receipts) or the same phone
    (inbound messages) are serialized through a keyed lock; unrelated events
    run concurrently.
    """

    def __init__(
        self,
        secret: str,
        messages: MessageStore,
        events: WebhookEventStore,
        state_machine: DeliveryStateMachine,
        registry: OptOutRegistry,
        directory: CampaignDirectory,
        audit: Optional[AuditLogger] = None,
        max_skew_seconds: int = 300,
        max_attempts: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        workers: int = 4,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._secret = secret
        self._messages = messages
        self._events = events
        self._state_machine = state_machine
        self._registry = registry
        self._directory = directory
        self._audit = audit
        self.max_skew_seconds = max_skew_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.worker_count = workers
        self._clock = clock
        self._sleep = sleep

        self._locks = KeyedLock()
        self._queue: "asyncio.Queue[_RetryItem]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._delayed: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(
        self,
        body: Union[bytes, str],
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> IngestResult:
        """
        Verify, parse and apply one raw callback.

        Args:
            body: Raw request body, exactly as signed
            signature: X-Provider-Signature header
            timestamp: X-Provider-Timestamp header

        Returns:
            IngestResult; never raises for bad input or store failures
        """
        if not check_timestamp_skew(timestamp, self.max_skew_seconds, now=self._clock()):
            return self._reject(ReasonCode.INVALID_SIGNATURE, "timestamp outside allowed skew")
        if not verify_signature(self._secret, timestamp, body, signature):
            return self._reject(ReasonCode.INVALID_SIGNATURE, "signature mismatch")

        try:
            event = parse_event(body)
        except MalformedEvent as e:
            return self._reject(ReasonCode.MALFORMED_EVENT, str(e))

        try:
            return await self.process(event)
        except StoreError as e:
            logger.warning("webhook_deferred", event_id=event.event_id, error=str(e))
            self._schedule_retry(_RetryItem(event=event, attempt=2, last_error=str(e)))
            return IngestResult(
                accepted=True,
                outcome=EventOutcome.DEFERRED,
                event_id=event.event_id,
            )

    async def process(self, event: Event) -> IngestResult:
        """
        Apply a parsed event.

        Raises:
            StoreError: If persistence failed; nothing was marked processed
        """
        key = event.event_id
        if await self._events.is_processed(key):
            return self._duplicate(event)

        async with self._locks.hold(self._lock_key(event)):
            # Another worker may have finished the same event while we waited
            if await self._events.is_processed(key):
                return self._duplicate(event)

            if isinstance(event, DeliveryReceiptEvent):
                outcome = await self._apply_receipt(event)
            else:
                outcome = await self._apply_inbound(event)

            if outcome == EventOutcome.DEAD_LETTERED:
                return IngestResult(
                    accepted=True,
                    outcome=outcome,
                    event_id=key,
                    reason=ReasonCode.UNKNOWN_MESSAGE_REF,
                )

            recorded = await self._events.mark_processed(ProcessedEvent(
                idempotency_key=key,
                event_type=event.event_type,
                outcome=outcome,
                payload=event.model_dump_json(),
            ))
            if not recorded:
                return self._duplicate(event)

        logger.info(
            "webhook_applied",
            event_id=key,
            event_type=event.event_type,
            outcome=outcome,
        )
        if self._audit:
            self._audit.log(
                AuditEventType.WEBHOOK_APPLIED,
                action=f"{event.event_type} processed",
                outcome="success" if outcome == EventOutcome.APPLIED else "noop",
                resource_type="webhook",
                resource_id=key,
                payload={"event_type": event.event_type, "outcome": outcome},
            )
        return IngestResult(accepted=True, outcome=outcome, event_id=key)

    @staticmethod
    def _lock_key(event: Event) -> str:
        if isinstance(event, DeliveryReceiptEvent):
            return f"message:{event.payload.provider_correlation_id}"
        return f"phone:{normalize_phone(event.payload.sender)}"

    async def _apply_receipt(self, event: DeliveryReceiptEvent) -> str:
        payload = event.payload
        message = await self._messages.get_by_correlation_id(payload.provider_correlation_id)
        if message is None:
            await self._dead_letter(
                event,
                ReasonCode.UNKNOWN_MESSAGE_REF.value,
                attempts=1,
                last_error=f"no message for {payload.provider_correlation_id}",
            )
            return EventOutcome.DEAD_LETTERED

        if payload.status == "delivered":
            result = await self._state_machine.mark_delivered(message.id, at=event.occurred_at)
        else:
            result = await self._state_machine.mark_failed(
                message.id,
                payload.error_code or "DELIVERY_FAILED",
                at=event.occurred_at,
            )

        self._reconcile(message, event)
        return EventOutcome.APPLIED if result.applied else EventOutcome.NOOP

    async def _apply_inbound(self, event: InboundMessageEvent) -> str:
        payload = event.payload
        phone = normalize_phone(payload.sender)
        own_number = normalize_phone(payload.recipient)

        # Most recent outbound conversation ties the reply to a campaign
        latest = await self._messages.find_latest_outbound(recipient=phone, sender=own_number)
        campaign: Optional[Campaign] = None
        if latest is not None and latest.campaign_id:
            campaign = await self._directory.get(latest.campaign_id)

        # A retried event may already have stored its message
        if await self._messages.get_by_correlation_id(payload.provider_correlation_id) is None:
            await self._messages.add(Message.inbound(
                sender=phone,
                recipient=own_number,
                text=payload.text,
                correlation_id=payload.provider_correlation_id,
                campaign_id=campaign.id if campaign else None,
                received_at=event.occurred_at,
            ))
            if self._audit:
                self._audit.log(
                    AuditEventType.MESSAGE_RECEIVED,
                    action="inbound message recorded",
                    resource_type="message",
                    resource_id=payload.provider_correlation_id,
                    payload={"sender": phone, "campaign_id": campaign.id if campaign else None},
                )

        match = extract_keyword(payload.text)
        if match is not None:
            scope = await self._registry.apply_keyword(phone, match, campaign)
            logger.info(
                "inbound_keyword_applied",
                phone=phone,
                keyword=match.keyword,
                action=match.action.value,
                scope=scope,
            )
        return EventOutcome.APPLIED

    def _reconcile(self, message: Message, event: DeliveryReceiptEvent) -> None:
        if message.segments is None or message.cost is None or message.encoding is None:
            return
        expected = SegmentEstimate(
            encoding=message.encoding,
            segments=message.segments,
            units=count_units(message.text, message.encoding),
            cost=message.cost,
        )
        mismatch = reconcile(
            expected,
            event.payload.segment_count_reported,
            event.payload.cost_reported,
        )
        if mismatch is not None:
            logger.warning(
                "billing_mismatch",
                message_id=message.id,
                expected_segments=mismatch.expected_segments,
                reported_segments=mismatch.reported_segments,
                expected_cost=str(mismatch.expected_cost),
                reported_cost=str(mismatch.reported_cost),
            )

    def _duplicate(self, event: Event) -> IngestResult:
        logger.info("webhook_duplicate", event_id=event.event_id)
        return IngestResult(
            accepted=True,
            outcome=EventOutcome.DUPLICATE,
            event_id=event.event_id,
            reason=ReasonCode.DUPLICATE_EVENT,
        )

    def _reject(self, reason: ReasonCode, detail: str) -> IngestResult:
        logger.warning("webhook_rejected", reason=reason.value, detail=detail)
        if self._audit:
            self._audit.log(
                AuditEventType.WEBHOOK_REJECTED,
                action="webhook verification",
                outcome="rejected",
                resource_type="webhook",
                payload={"reason": reason.value},
            )
        return IngestResult(
            accepted=False,
            outcome=EventOutcome.REJECTED,
            reason=reason,
            detail=detail,
        )

    async def _dead_letter(
        self,
        event: Event,
        reason: str,
        attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        await self._events.add_dead_letter(DeadLetter(
            idempotency_key=event.event_id,
            event_type=event.event_type,
            payload=event.model_dump_json(),
            reason=reason,
            attempts=attempts,
            last_error=last_error,
        ))
        logger.error(
            "webhook_dead_lettered",
            event_id=event.event_id,
            reason=reason,
            attempts=attempts,
        )
        if self._audit:
            self._audit.log(
                AuditEventType.WEBHOOK_DEAD_LETTERED,
                action="moved to dead letter",
                outcome="failure",
                resource_type="webhook",
                resource_id=event.event_id,
                payload={"reason": reason, "attempts": attempts, "last_error": last_error},
            )

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    async def dead_letters(self) -> List[DeadLetter]:
        return await self._events.list_dead_letters()

    async def redrive(self, idempotency_key: str) -> Optional[IngestResult]:
        """
        Replay a dead-lettered event.

        The letter is removed only once the replay has been applied; if the
        event is dead-lettered again its fresh letter replaces this one.

        Returns:
            The processing result, or None if no such dead letter exists

        Raises:
            StoreError: If persistence failed; the letter is kept
        """
        letter = await self._events.get_dead_letter(idempotency_key)
        if letter is None:
            return None

        event = parse_event(letter.payload)
        logger.info("webhook_redrive", event_id=idempotency_key, reason=letter.reason)
        result = await self.process(event)
        if result.outcome != EventOutcome.DEAD_LETTERED:
            await self._events.remove_dead_letter(idempotency_key)
        return result

    # ------------------------------------------------------------------
    # Background retries
    # ------------------------------------------------------------------

    @property
    def pending_retries(self) -> int:
        return self._queue.qsize() + len(self._delayed)

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"webhook-retry-{n}")
            for n in range(self.worker_count)
        ]
        logger.info("webhook_workers_started", workers=self.worker_count)

    async def stop(self) -> None:
        tasks = self._workers + list(self._delayed)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._delayed.clear()
        logger.info("webhook_workers_stopped", abandoned=self._queue.qsize())

    async def drain(self) -> None:
        """Run every pending retry to completion on the calling task."""
        while self._delayed or not self._queue.empty():
            if self._delayed:
                await asyncio.gather(*list(self._delayed))
            while not self._queue.empty():
                item = self._queue.get_nowait()
                try:
                    await self._retry(item)
                finally:
                    self._queue.task_done()

    def _schedule_retry(self, item: _RetryItem) -> None:
        delay = compute_backoff(item.attempt - 1, self.base_delay, self.max_delay)
        task = asyncio.create_task(self._enqueue_after(item, delay))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def _enqueue_after(self, item: _RetryItem, delay: float) -> None:
        await self._sleep(delay)
        await self._queue.put(item)

    async def _worker(self, n: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._retry(item)
            except Exception:
                logger.exception("webhook_retry_crashed", worker=n, event_id=item.event.event_id)
            finally:
                self._queue.task_done()

    async def _retry(self, item: _RetryItem) -> None:
        event = item.event
        try:
            await self.process(event)
        except StoreError as e:
            if item.attempt >= self.max_attempts:
                await self._dead_letter(
                    event, "RETRIES_EXHAUSTED", attempts=item.attempt, last_error=str(e)
                )
                return
            logger.warning(
                "webhook_retry_failed",
                event_id=event.event_id,
                attempt=item.attempt,
                error=str(e),
            )
            self._schedule_retry(
                _RetryItem(event=event, attempt=item.attempt + 1, last_error=str(e))
            )
