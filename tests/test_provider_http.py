"""
Tests for the HTTP Provider Client
==================================
Responses are served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from smsly_dispatch.errors import PermanentProviderError, TransientProviderError
from smsly_dispatch.models import Message, OutboundRequest
from tests.conftest import RECIPIENT, SENDER


def make_client(handler, **kwargs):
    from smsly_dispatch.providers import HttpProviderClient

    return HttpProviderClient(
        "https://api.provider.example/v1/",
        "sk_test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def make_message() -> Message:
    return Message.outbound(OutboundRequest("camp-1", RECIPIENT, SENDER, "Hello"))


def respond(status_code, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body if body is not None else {})
    return handler


class TestHttpProviderClient:

    @pytest.mark.asyncio
    async def test_accepted(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "SM123", "segments": 1})

        client = make_client(handler, status_callback_url="https://dispatch.example/v1/webhooks/provider")
        message = make_message()

        ack = await client.send(message)
        await client.close()

        assert ack.correlation_id == "SM123"
        assert ack.segments == 1
        request = seen[0]
        assert request.url == "https://api.provider.example/v1/messages"
        assert request.headers["Authorization"] == "Bearer sk_test"
        assert json.loads(request.content) == {
            "to": RECIPIENT,
            "from": SENDER,
            "text": "Hello",
            "reference": message.id,
            "status_callback": "https://dispatch.example/v1/webhooks/provider",
        }

    @pytest.mark.asyncio
    async def test_message_id_field(self):
        client = make_client(respond(200, {"message_id": 42}))

        ack = await client.send(make_message())

        assert ack.correlation_id == "42"
        assert ack.segments is None

    @pytest.mark.asyncio
    async def test_missing_id_is_permanent(self):
        """A 2xx without an id was still accepted, so it is never resent."""
        client = make_client(respond(200, {"status": "queued"}))

        with pytest.raises(PermanentProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "MISSING_ID"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("segments", ["two", [1], {"n": 1}])
    async def test_unparseable_segments_ignored(self, segments):
        client = make_client(respond(200, {"id": "SM123", "segments": segments}))

        ack = await client.send(make_message())

        assert ack.correlation_id == "SM123"
        assert ack.segments is None

    @pytest.mark.asyncio
    async def test_numeric_string_segments(self):
        client = make_client(respond(200, {"id": "SM123", "segments": "3"}))

        ack = await client.send(make_message())

        assert ack.segments == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure_is_permanent(self, status_code):
        client = make_client(respond(status_code))

        with pytest.raises(PermanentProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "AUTH_FAILED"

    @pytest.mark.asyncio
    async def test_bad_request_is_permanent(self):
        client = make_client(respond(400, {"code": "21211", "message": "Invalid 'To' number"}))

        with pytest.raises(PermanentProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "21211"
        assert exc_info.value.message == "Invalid 'To' number"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_throttling_and_server_errors_are_transient(self, status_code):
        client = make_client(respond(status_code))

        with pytest.raises(TransientProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == f"HTTP_{status_code}"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        client = make_client(handler)

        with pytest.raises(TransientProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "HTTP_502"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(TransientProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(TransientProviderError) as exc_info:
            await client.send(make_message())

        assert exc_info.value.code == "NETWORK_ERROR"
