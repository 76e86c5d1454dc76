"""
Reason Codes and Errors
=======================
Outcome taxonomy shared by every dispatch component.

Admission, scheduling and ingestion decisions are returned as values carrying
a ReasonCode. Exceptions are reserved for provider and storage failures,
which the retry layers catch and classify.
"""

from typing import Optional
from enum import Enum


class ReasonCode(str, Enum):
    """Why a message or event did not take the happy path."""
    # Compliance gate (caller must remediate)
    CAMPAIGN_INACTIVE = "CAMPAIGN_INACTIVE"
    OPTED_OUT = "OPTED_OUT"
    OUTSIDE_WINDOW = "OUTSIDE_WINDOW"
    PROHIBITED_CONTENT = "PROHIBITED_CONTENT"

    # Throughput scheduler
    BACKPRESSURE = "BACKPRESSURE"
    DAILY_CAP_REACHED = "DAILY_CAP_REACHED"
    MONTHLY_CAP_REACHED = "MONTHLY_CAP_REACHED"

    # Dispatcher
    PROVIDER_TRANSIENT = "PROVIDER_TRANSIENT"
    PROVIDER_TRANSIENT_EXHAUSTED = "PROVIDER_TRANSIENT_EXHAUSTED"
    PROVIDER_PERMANENT = "PROVIDER_PERMANENT"

    # Webhook ingestion
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    UNKNOWN_MESSAGE_REF = "UNKNOWN_MESSAGE_REF"
    MALFORMED_EVENT = "MALFORMED_EVENT"

    @property
    def caller_retryable(self) -> bool:
        return self in (
            ReasonCode.BACKPRESSURE,
            ReasonCode.DAILY_CAP_REACHED,
            ReasonCode.MONTHLY_CAP_REACHED,
        )


COMPLIANCE_REASONS = frozenset({
    ReasonCode.CAMPAIGN_INACTIVE,
    ReasonCode.OPTED_OUT,
    ReasonCode.OUTSIDE_WINDOW,
    ReasonCode.PROHIBITED_CONTENT,
})


class ProviderErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ProviderError(Exception):
    """Classified failure returned by a messaging provider."""

    kind: ProviderErrorKind = ProviderErrorKind.PERMANENT

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or code
        super().__init__(f"[{self.kind.value}] {code}: {self.message}")


class TransientProviderError(ProviderError):
    """Network errors, timeouts, throttling and provider 5xx responses."""
    kind = ProviderErrorKind.TRANSIENT


class PermanentProviderError(ProviderError):
    """Authentication failures, bad destinations and provider rejections."""
    kind = ProviderErrorKind.PERMANENT


class StoreError(Exception):
    """Raised by a store when persistence is temporarily unavailable."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)
