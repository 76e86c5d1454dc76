"""
SMSLY Dispatch
==============
Message dispatch and compliance engine for SMSLY messaging services.

Usage:
    from smsly_dispatch import DispatchEngine, OutboundRequest

    engine = DispatchEngine.in_memory(provider, campaign)
    result = await engine.submit(OutboundRequest(...))
"""

__version__ = "0.1.0"

from .campaigns import Campaign, CampaignStatus, InMemoryCampaignDirectory, OptOutPolicy, UseCase
from .config import DispatchConfig, TimezoneSource
from .engine import DispatchEngine, SubmitResult
from .errors import (
    PermanentProviderError,
    ProviderError,
    ReasonCode,
    StoreError,
    TransientProviderError,
)
from .logging_config import setup_logging
from .models import Direction, Message, MessageStatus, OutboundRequest

__all__ = [
    "__version__",
    "Campaign",
    "CampaignStatus",
    "InMemoryCampaignDirectory",
    "OptOutPolicy",
    "UseCase",
    "DispatchConfig",
    "TimezoneSource",
    "DispatchEngine",
    "SubmitResult",
    "PermanentProviderError",
    "ProviderError",
    "ReasonCode",
    "StoreError",
    "TransientProviderError",
    "setup_logging",
    "Direction",
    "Message",
    "MessageStatus",
    "OutboundRequest",
]
