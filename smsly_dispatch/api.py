"""
HTTP API
========
FastAPI surface of the dispatch engine: message submission, provider
callbacks and opt-out lookups.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from smsly_dispatch.engine import DispatchEngine, SubmitResult
from smsly_dispatch.errors import COMPLIANCE_REASONS, ReasonCode
from smsly_dispatch.health import ComponentHealth, create_health_router
from smsly_dispatch.messaging import normalize_phone, validate_e164
from smsly_dispatch.models import Message, OutboundRequest

logger = structlog.get_logger(__name__)

_WEBHOOK_STATUS = {
    ReasonCode.INVALID_SIGNATURE: 401,
    ReasonCode.MALFORMED_EVENT: 422,
}


class SubmitMessageRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    recipient: str = Field(min_length=1)
    sender: str = Field(min_length=1)
    text: str
    send_at: Optional[datetime] = None
    timeout: Optional[float] = Field(default=None, ge=0)


class MessageView(BaseModel):
    id: str
    campaign_id: Optional[str]
    direction: str
    status: str
    sender: str
    recipient: str
    encoding: Optional[str] = None
    segments: Optional[int] = None
    cost: Optional[Decimal] = None
    provider_correlation_id: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0

    @classmethod
    def of(cls, message: Message) -> "MessageView":
        return cls(
            id=message.id,
            campaign_id=message.campaign_id,
            direction=message.direction.value,
            status=message.status.value,
            sender=message.sender,
            recipient=message.recipient,
            encoding=message.encoding.value if message.encoding else None,
            segments=message.segments,
            cost=message.cost,
            provider_correlation_id=message.provider_correlation_id,
            error_code=message.error_code,
            retry_count=message.retry_count,
        )


class SubmitMessageResponse(BaseModel):
    message: MessageView
    sent: bool
    reason: Optional[str] = None


class OptOutStatus(BaseModel):
    phone: str
    campaign_id: Optional[str] = None
    opted_out: bool


def dispatch_error(reason: ReasonCode, detail: Optional[str], status_code: int) -> HTTPException:
    """HTTPException carrying a reason code the caller can act on."""
    logger.info("request_rejected", reason=reason.value, status_code=status_code)
    return HTTPException(
        status_code=status_code,
        detail={"code": reason.value, "detail": detail, "retryable": reason.caller_retryable},
    )


def create_router(engine: DispatchEngine) -> APIRouter:
    router = APIRouter(prefix="/v1", tags=["Dispatch"])

    @router.post("/messages", status_code=202, response_model=SubmitMessageResponse)
    async def submit_message(body: SubmitMessageRequest) -> SubmitMessageResponse:
        if not validate_e164(normalize_phone(body.recipient)):
            raise HTTPException(status_code=422, detail={"code": "INVALID_RECIPIENT"})

        result: SubmitResult = await engine.submit(
            OutboundRequest(
                campaign_id=body.campaign_id,
                recipient=body.recipient,
                sender=body.sender,
                text=body.text,
                send_at=body.send_at,
            ),
            timeout=body.timeout,
        )

        if result.reason in COMPLIANCE_REASONS and not result.accepted:
            raise dispatch_error(result.reason, result.detail, 422)
        if result.reason is not None and result.reason.caller_retryable:
            raise dispatch_error(result.reason, result.detail, 429)

        return SubmitMessageResponse(
            message=MessageView.of(result.message),
            sent=result.sent,
            reason=result.reason.value if result.reason else None,
        )

    @router.get("/messages/{message_id}", response_model=MessageView)
    async def get_message(message_id: str) -> MessageView:
        message = await engine.get_message(message_id)
        if message is None:
            raise HTTPException(status_code=404, detail={"code": "MESSAGE_NOT_FOUND"})
        return MessageView.of(message)

    @router.post("/webhooks/provider")
    async def provider_webhook(request: Request) -> Dict[str, Any]:
        body = await request.body()
        result = await engine.handle_webhook(
            body,
            request.headers.get("X-Provider-Signature"),
            request.headers.get("X-Provider-Timestamp"),
        )
        if not result.accepted:
            raise dispatch_error(result.reason, result.detail, _WEBHOOK_STATUS[result.reason])
        return {
            "status": result.outcome,
            "event_id": result.event_id,
            "reason": result.reason.value if result.reason else None,
        }

    @router.get("/opt-outs/{phone}", response_model=OptOutStatus)
    async def opt_out_status(
        phone: str,
        campaign_id: Optional[str] = Query(default=None),
    ) -> OptOutStatus:
        normalized = normalize_phone(phone)
        return OptOutStatus(
            phone=normalized,
            campaign_id=campaign_id,
            opted_out=await engine.is_opted_out(normalized, campaign_id),
        )

    return router


def create_app(engine: DispatchEngine, version: str = "0.1.0") -> FastAPI:
    """
    Build the service application around an engine.

    The engine's background workers run for the lifetime of the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        try:
            yield
        finally:
            await engine.close()

    async def webhook_backlog() -> ComponentHealth:
        dead_letters = await engine.webhooks.dead_letters()
        return ComponentHealth(
            status="ok",
            detail={
                "pending_retries": engine.webhooks.pending_retries,
                "dead_letters": len(dead_letters),
            },
        )

    app = FastAPI(title="SMSLY Dispatch", version=version, lifespan=lifespan)
    app.include_router(create_router(engine))
    app.include_router(create_health_router(
        engine.config.service_name,
        version=version,
        engine=engine.db_engine,
        redis_client=engine.redis_client,
        custom_checks={"webhooks": webhook_backlog},
    ))
    return app
