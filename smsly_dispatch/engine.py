"""
Dispatch Engine
===============
Wires the compliance gate, throughput scheduler, segmenter, dispatcher,
state machine and webhook processor into one outbound/inbound pipeline.

Usage:
    engine = DispatchEngine.in_memory(provider, campaign, config=config)
    result = await engine.submit(OutboundRequest(...), timeout=2.0)
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from datetime import datetime, time as dt_time, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Union

import structlog
from redis import asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine

from smsly_dispatch import database
from smsly_dispatch.audit import AuditLogger
from smsly_dispatch.campaigns import Campaign, CampaignDirectory, InMemoryCampaignDirectory
from smsly_dispatch.compliance import (
    ComplianceGate,
    QuietHoursPolicy,
    SendWindow,
    TimezoneResolver,
)
from smsly_dispatch.config import DispatchConfig
from smsly_dispatch.dispatch import DispatchResult, Dispatcher
from smsly_dispatch.errors import ReasonCode
from smsly_dispatch.lifecycle import DeliveryStateMachine
from smsly_dispatch.messaging import SegmentEstimate, estimate, normalize_phone
from smsly_dispatch.models import Message, MessageStatus, OutboundRequest
from smsly_dispatch.optout import OptOutRegistry
from smsly_dispatch.providers import HttpProviderClient, ProviderClient
from smsly_dispatch.rate_limit import BucketStore, RedisBucketStore, ThroughputScheduler
from smsly_dispatch.store import (
    InMemoryMessageStore,
    InMemoryOptOutStore,
    InMemoryWebhookEventStore,
    MessageStore,
    OptOutStore,
    SqlMessageStore,
    SqlOptOutStore,
    SqlWebhookEventStore,
    WebhookEventStore,
)
from smsly_dispatch.webhooks import IngestResult, WebhookIngestionProcessor

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one outbound submission."""
    accepted: bool
    message: Optional[Message] = None
    reason: Optional[ReasonCode] = None
    detail: Optional[str] = None
    estimate: Optional[SegmentEstimate] = None
    dispatch: Optional[DispatchResult] = None

    @property
    def sent(self) -> bool:
        return self.dispatch is not None and self.dispatch.sent


class DispatchEngine:
    """
    Outbound: gate -> persist CREATED -> admit -> QUEUED -> send.
    Inbound: provider callbacks through the webhook processor.

    A message throttled by the scheduler stays CREATED and can be retried
    with ``resubmit``, which re-runs the compliance gate first.
    """

    def __init__(
        self,
        directory: CampaignDirectory,
        provider: ProviderClient,
        messages: MessageStore,
        opt_outs: OptOutStore,
        events: WebhookEventStore,
        config: Optional[DispatchConfig] = None,
        bucket_store: Optional[BucketStore] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or DispatchConfig()
        self.directory = directory
        self.provider = provider
        self.messages = messages
        self.audit = audit or AuditLogger(self.config.service_name)
        self.db_engine: Optional[AsyncEngine] = None
        self.redis_client: Optional[aioredis.Redis] = None

        def now() -> datetime:
            return datetime.fromtimestamp(clock(), timezone.utc)

        cfg = self.config
        self.registry = OptOutRegistry(opt_outs, audit=self.audit, clock=now)
        self.gate = ComplianceGate(
            directory,
            self.registry,
            quiet_hours=QuietHoursPolicy(
                window=SendWindow(
                    start=dt_time(cfg.window_start_hour),
                    end=dt_time(cfg.window_end_hour),
                ),
                resolver=TimezoneResolver(cfg.window_timezone_source, cfg.account_timezone),
            ),
            audit=self.audit,
            clock=now,
        )
        self.scheduler = ThroughputScheduler(
            directory,
            store=bucket_store,
            burst_seconds=cfg.burst_seconds,
            audit=self.audit,
            clock=clock,
            sleep=sleep,
        )
        self.state_machine = DeliveryStateMachine(messages, audit=self.audit, clock=now)
        self.dispatcher = Dispatcher(
            provider,
            self.state_machine,
            messages,
            audit=self.audit,
            max_attempts=cfg.dispatch_max_attempts,
            base_delay=cfg.dispatch_base_delay,
            max_delay=cfg.dispatch_max_delay,
            send_timeout=cfg.provider_timeout,
            sleep=sleep,
        )
        self.webhooks = WebhookIngestionProcessor(
            cfg.webhook_secret,
            messages,
            events,
            self.state_machine,
            self.registry,
            directory,
            audit=self.audit,
            max_skew_seconds=cfg.webhook_max_skew_seconds,
            max_attempts=cfg.webhook_max_attempts,
            base_delay=cfg.webhook_base_delay,
            max_delay=cfg.webhook_max_delay,
            workers=cfg.webhook_workers,
            clock=clock,
            sleep=sleep,
        )

    @classmethod
    def in_memory(
        cls,
        provider: ProviderClient,
        *campaigns: Campaign,
        config: Optional[DispatchConfig] = None,
        **kwargs,
    ) -> "DispatchEngine":
        """Engine on in-memory stores, for development and testing."""
        return cls(
            InMemoryCampaignDirectory(*campaigns),
            provider,
            InMemoryMessageStore(),
            InMemoryOptOutStore(),
            InMemoryWebhookEventStore(),
            config=config,
            **kwargs,
        )

    @classmethod
    async def from_config(
        cls,
        config: DispatchConfig,
        directory: CampaignDirectory,
        provider: Optional[ProviderClient] = None,
        **kwargs,
    ) -> "DispatchEngine":
        """
        Engine on SQL stores, with Redis-backed buckets when a Redis URL is
        configured and the HTTP provider client unless one is given.
        """
        db_engine = database.create_async_engine(config.database_url)
        await database.init_models(db_engine)
        sessions = database.get_session_factory()

        redis_client = None
        bucket_store = None
        if config.redis_url:
            redis_client = aioredis.from_url(config.redis_url)
            bucket_store = RedisBucketStore(redis_client)

        if provider is None:
            provider = HttpProviderClient(
                config.provider_base_url,
                config.provider_api_key,
                status_callback_url=config.provider_status_callback_url,
                timeout=config.provider_timeout,
            )

        engine = cls(
            directory,
            provider,
            SqlMessageStore(sessions),
            SqlOptOutStore(sessions),
            SqlWebhookEventStore(sessions),
            config=config,
            bucket_store=bucket_store,
            **kwargs,
        )
        engine.db_engine = db_engine
        engine.redis_client = redis_client
        return engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.provider.initialize()
        self.webhooks.start()
        logger.info("dispatch_engine_started")

    async def close(self) -> None:
        await self.webhooks.stop()
        await self.provider.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        if self.db_engine is not None:
            await database.close_engine()
        logger.info("dispatch_engine_stopped")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def submit(
        self,
        request: OutboundRequest,
        timeout: Optional[float] = None,
    ) -> SubmitResult:
        """
        Admit and send one outbound message.

        Args:
            request: The candidate message
            timeout: Seconds to wait for a throughput token; defaults to
                the configured admission timeout

        Returns:
            SubmitResult. Compliance rejections carry no message; throttled
            submissions carry the CREATED message for a later ``resubmit``.
        """
        request = dataclasses.replace(
            request,
            recipient=normalize_phone(request.recipient),
            sender=normalize_phone(request.sender),
        )

        decision = await self.gate.evaluate(request)
        if not decision.accepted:
            return SubmitResult(accepted=False, reason=decision.reason, detail=decision.detail)

        message = Message.outbound(request)
        await self.messages.add(message)
        return await self._admit_and_send(message, decision.campaign, timeout)

    async def resubmit(
        self,
        message_id: str,
        timeout: Optional[float] = None,
    ) -> SubmitResult:
        """Retry admission for a message left CREATED by backpressure or a cap."""
        message = await self.messages.get(message_id)
        if message is None:
            raise KeyError(message_id)
        if message.status != MessageStatus.CREATED:
            raise ValueError(f"Message {message_id} is already {message.status.value}")

        decision = await self.gate.evaluate(OutboundRequest(
            campaign_id=message.campaign_id,
            recipient=message.recipient,
            sender=message.sender,
            text=message.text,
            send_at=message.send_at,
        ))
        if not decision.accepted:
            return SubmitResult(
                accepted=False,
                message=message,
                reason=decision.reason,
                detail=decision.detail,
            )
        return await self._admit_and_send(message, decision.campaign, timeout)

    async def _admit_and_send(
        self,
        message: Message,
        campaign: Campaign,
        timeout: Optional[float],
    ) -> SubmitResult:
        if timeout is None:
            timeout = self.config.admission_timeout

        # Admitted messages go out immediately, whatever send_at asked for
        if not self.gate.window_open(campaign, message.recipient):
            logger.info("message_held_outside_window", message_id=message.id)
            return SubmitResult(
                accepted=False,
                message=message,
                reason=ReasonCode.OUTSIDE_WINDOW,
                detail="sending window closed",
            )

        admitted = await self.scheduler.admit(campaign.id, timeout=timeout)
        if not admitted.admitted:
            return SubmitResult(accepted=False, message=message, reason=admitted.reason)

        rate = campaign.cost_per_segment or self.config.default_cost_per_segment
        quote = estimate(message.text, Decimal(rate))
        queued = await self.state_machine.mark_queued(message.id, quote)
        if not queued.applied:
            return SubmitResult(
                accepted=False,
                message=queued.message,
                detail=queued.reason,
                estimate=quote,
            )

        # A STOP may have landed while this message waited for a token
        if await self.registry.is_opted_out(message.recipient, campaign.id):
            failed = await self.state_machine.mark_failed(message.id, ReasonCode.OPTED_OUT.value)
            logger.info("message_suppressed", message_id=message.id)
            return SubmitResult(
                accepted=False,
                message=failed.message,
                reason=ReasonCode.OPTED_OUT,
                estimate=quote,
            )

        # The admission wait may have run past the end of the window
        if not self.gate.window_open(campaign, message.recipient):
            failed = await self.state_machine.mark_failed(message.id, ReasonCode.OUTSIDE_WINDOW.value)
            logger.info("message_suppressed_outside_window", message_id=message.id)
            return SubmitResult(
                accepted=False,
                message=failed.message,
                reason=ReasonCode.OUTSIDE_WINDOW,
                estimate=quote,
            )

        result = await self.dispatcher.send(queued.message)
        return SubmitResult(
            accepted=True,
            message=result.message,
            reason=result.reason,
            detail=result.error_code,
            estimate=quote,
            dispatch=result,
        )

    # ------------------------------------------------------------------
    # Inbound and queries
    # ------------------------------------------------------------------

    async def handle_webhook(
        self,
        body: Union[bytes, str],
        signature: Optional[str],
        timestamp: Optional[str],
    ) -> IngestResult:
        return await self.webhooks.ingest(body, signature, timestamp)

    async def get_message(self, message_id: str) -> Optional[Message]:
        return await self.messages.get(message_id)

    async def is_opted_out(self, phone: str, campaign_id: Optional[str] = None) -> bool:
        return await self.registry.is_opted_out(phone, campaign_id)
