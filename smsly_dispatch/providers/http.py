"""
HTTP Provider Client
====================
JSON-over-HTTPS provider integration with response classification.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from smsly_dispatch.errors import PermanentProviderError, TransientProviderError
from smsly_dispatch.models import Message

from .base import ProviderAck, ProviderClient

logger = structlog.get_logger(__name__)

# Statuses worth retrying; every other 4xx is the request's fault
_TRANSIENT_STATUSES = {408, 425, 429}


class HttpProviderClient(ProviderClient):
    """
    Provider client for a JSON messages API.

    POST {base_url}/messages with {"to", "from", "text", "reference"} and a
    bearer token; a 2xx response carries the provider's message id.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        status_callback_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.status_callback_url = status_callback_url
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
                "User-Agent": "SMSLY-Dispatch",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()
        await super().close()

    async def send(self, message: Message) -> ProviderAck:
        payload: Dict[str, Any] = {
            "to": message.recipient,
            "from": message.sender,
            "text": message.text,
            "reference": message.id,
        }
        if self.status_callback_url:
            payload["status_callback"] = self.status_callback_url

        try:
            response = await self._client.post("/messages", json=payload)
        except httpx.TimeoutException as e:
            raise TransientProviderError("TIMEOUT", str(e)) from e
        except httpx.TransportError as e:
            raise TransientProviderError("NETWORK_ERROR", str(e)) from e

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> ProviderAck:
        status = response.status_code
        data = _json_or_empty(response)

        if 200 <= status < 300:
            correlation_id = data.get("id") or data.get("message_id")
            if not correlation_id:
                # The provider took the message; a resend would deliver it twice
                raise PermanentProviderError("MISSING_ID", "acknowledgment without message id")
            return ProviderAck(
                correlation_id=str(correlation_id),
                segments=_segments(data.get("segments")),
                raw_response=data,
            )

        code = str(data.get("code") or f"HTTP_{status}")
        detail = data.get("message") or response.reason_phrase

        logger.warning("provider_rejected", status=status, code=code)

        if status in (401, 403):
            raise PermanentProviderError("AUTH_FAILED", detail)
        if status >= 500 or status in _TRANSIENT_STATUSES:
            raise TransientProviderError(code, detail)
        raise PermanentProviderError(code, detail)


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _segments(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        logger.warning("provider_segments_unparseable", segments=repr(value))
        return None
