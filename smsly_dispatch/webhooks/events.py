"""
Provider Events
===============
Typed provider callbacks. The set of event types is closed; anything else
fails validation and is treated as malformed.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class ReceiptPayload(BaseModel):
    provider_correlation_id: str
    status: Literal["delivered", "failed"]
    error_code: Optional[str] = None
    cost_reported: Optional[Decimal] = None
    segment_count_reported: Optional[int] = Field(default=None, ge=1)


class InboundPayload(BaseModel):
    provider_correlation_id: str
    sender: str
    recipient: str
    text: str = ""


class DeliveryReceiptEvent(BaseModel):
    event_id: str = Field(min_length=1)
    event_type: Literal["delivery_receipt"]
    occurred_at: datetime
    payload: ReceiptPayload


class InboundMessageEvent(BaseModel):
    event_id: str = Field(min_length=1)
    event_type: Literal["inbound_message"]
    occurred_at: datetime
    payload: InboundPayload


ProviderEvent = Annotated[
    Union[DeliveryReceiptEvent, InboundMessageEvent],
    Field(discriminator="event_type"),
]

_adapter: TypeAdapter = TypeAdapter(ProviderEvent)


class MalformedEvent(ValueError):
    """Raised when a callback body is not a valid provider event."""


def parse_event(body: Union[bytes, str]) -> Union[DeliveryReceiptEvent, InboundMessageEvent]:
    """Parse a raw JSON callback body into its event variant."""
    try:
        return _adapter.validate_json(body)
    except ValidationError as e:
        raise MalformedEvent(str(e)) from e
