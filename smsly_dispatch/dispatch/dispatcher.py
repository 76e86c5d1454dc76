"""
Dispatcher
==========
Hands QUEUED messages to the provider and records the provisional outcome.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from smsly_dispatch.audit import AuditEventType, AuditLogger
from smsly_dispatch.errors import (
    PermanentProviderError,
    ProviderError,
    ReasonCode,
    TransientProviderError,
)
from smsly_dispatch.lifecycle import DeliveryStateMachine
from smsly_dispatch.models import (
    AttemptOutcome,
    DispatchAttempt,
    Message,
    MessageStatus,
)
from smsly_dispatch.providers import ProviderAck, ProviderClient
from smsly_dispatch.retry import RetryExhausted, retry_with_backoff
from smsly_dispatch.store.base import MessageStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    sent: bool
    message: Optional[Message]
    attempts: int
    correlation_id: Optional[str] = None
    reason: Optional[ReasonCode] = None
    error_code: Optional[str] = None


class Dispatcher:
    """
    Sends a message and drives QUEUED -> SENT or QUEUED -> FAILED.

    Transient failures (including provider timeouts) are retried with
    exponential backoff up to ``max_attempts``; permanent failures fail the
    message immediately, as does any unclassified exception raised by the
    provider client. Every attempt is persisted and audited.
    """

    def __init__(
        self,
        provider: ProviderClient,
        state_machine: DeliveryStateMachine,
        store: MessageStore,
        audit: Optional[AuditLogger] = None,
        max_attempts: int = 4,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        send_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._provider = provider
        self._state_machine = state_machine
        self._store = store
        self._audit = audit
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.send_timeout = send_timeout
        self._sleep = sleep

    async def send(self, message: Message) -> DispatchResult:
        if message.status != MessageStatus.QUEUED:
            raise ValueError(
                f"Message {message.id} is {message.status.value}, expected queued"
            )

        attempts = 0

        async def attempt() -> ProviderAck:
            nonlocal attempts
            attempts += 1
            try:
                ack = await asyncio.wait_for(
                    self._provider.send(message), timeout=self.send_timeout
                )
            except asyncio.TimeoutError:
                error: ProviderError = TransientProviderError(
                    "TIMEOUT", f"no acknowledgment within {self.send_timeout}s"
                )
                await self._record(message, attempts, error=error)
                raise error
            except ProviderError as e:
                await self._record(message, attempts, error=e)
                raise
            except Exception as e:
                # Unclassified failures are terminal; the send may have gone out
                logger.exception("provider_send_crashed", message_id=message.id, attempt=attempts)
                error = PermanentProviderError("UNEXPECTED_ERROR", str(e))
                await self._record(message, attempts, error=error)
                raise error from e
            await self._record(message, attempts, ack=ack)
            return ack

        try:
            ack = await retry_with_backoff(
                attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                retryable_exceptions={TransientProviderError},
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            last = e.last_exception
            code = last.code if isinstance(last, ProviderError) else None
            return await self._fail(
                message, attempts, ReasonCode.PROVIDER_TRANSIENT_EXHAUSTED, code
            )
        except PermanentProviderError as e:
            return await self._fail(message, attempts, ReasonCode.PROVIDER_PERMANENT, e.code)

        result = await self._state_machine.mark_sent(
            message.id, ack.correlation_id, retry_count=attempts - 1
        )
        logger.info(
            "message_sent",
            message_id=message.id,
            correlation_id=ack.correlation_id,
            attempts=attempts,
        )
        return DispatchResult(
            sent=True,
            message=result.message,
            attempts=attempts,
            correlation_id=ack.correlation_id,
        )

    async def _fail(
        self,
        message: Message,
        attempts: int,
        reason: ReasonCode,
        provider_code: Optional[str],
    ) -> DispatchResult:
        result = await self._state_machine.mark_failed(
            message.id, reason.value, retry_count=attempts - 1
        )
        logger.warning(
            "message_dispatch_failed",
            message_id=message.id,
            reason=reason.value,
            provider_code=provider_code,
            attempts=attempts,
        )
        return DispatchResult(
            sent=False,
            message=result.message,
            attempts=attempts,
            reason=reason,
            error_code=provider_code,
        )

    async def _record(
        self,
        message: Message,
        number: int,
        ack: Optional[ProviderAck] = None,
        error: Optional[ProviderError] = None,
    ) -> None:
        if error is None:
            outcome = AttemptOutcome.ACCEPTED
        elif isinstance(error, TransientProviderError):
            outcome = AttemptOutcome.TRANSIENT
        else:
            outcome = AttemptOutcome.PERMANENT

        await self._store.add_attempt(DispatchAttempt(
            message_id=message.id,
            attempt=number,
            outcome=outcome,
            error_code=error.code if error else None,
            provider_correlation_id=ack.correlation_id if ack else None,
        ))

        if self._audit:
            self._audit.log(
                AuditEventType.DISPATCH_ATTEMPT,
                action=f"provider send attempt {number}",
                outcome="success" if error is None else "failure",
                resource_type="message",
                resource_id=message.id,
                payload={
                    "attempt": number,
                    "outcome": outcome.value,
                    "error_code": error.code if error else None,
                    "correlation_id": ack.correlation_id if ack else None,
                },
            )
