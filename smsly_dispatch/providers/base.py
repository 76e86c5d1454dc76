"""
Provider Client Interface
=========================
Base class for provider integrations used by the dispatcher.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from smsly_dispatch.models import Message

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderAck:
    """Synchronous acknowledgment of an accepted send."""
    correlation_id: str
    segments: Optional[int] = None
    raw_response: Optional[Dict[str, Any]] = None


class ProviderClient(ABC):
    """
    Abstract provider client.

    ``send`` returns a ProviderAck or raises TransientProviderError /
    PermanentProviderError; any other exception is a bug in the client.
    """

    name: str = "base"

    async def initialize(self) -> None:
        logger.info("provider_initialized", provider=self.name)

    async def close(self) -> None:
        logger.info("provider_closed", provider=self.name)

    @abstractmethod
    async def send(self, message: Message) -> ProviderAck:
        """Hand a queued message to the provider."""
