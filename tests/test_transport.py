"""Tests for lorechat.transport: HttpTransport and EchoTransport."""

import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from lorechat.providers import ProviderRequest
from lorechat.transport import (
    EchoTransport,
    GenerationCancelled,
    HttpTransport,
    TransportError,
)


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _request(**body) -> ProviderRequest:
    return ProviderRequest(
        url="https://api.openai.com/v1/chat/completions",
        headers={"Authorization": "Bearer sk"},
        body=body or {"messages": [{"role": "user", "content": "hi"}]},
    )


OPENAI_OK = {"choices": [{"message": {"content": "Hello there."}, "finish_reason": "stop"}]}


# ---------------------------------------------------------------------------
# EchoTransport
# ---------------------------------------------------------------------------

class TestEchoTransport:
    async def test_returns_last_user_message(self) -> None:
        request = _request(messages=[
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ])
        reply = await EchoTransport().send("openai", request)
        assert reply.text == "second"

    async def test_google_contents(self) -> None:
        request = _request(contents=[{"role": "user", "parts": [{"text": "hola"}]}])
        reply = await EchoTransport().send("google", request)
        assert reply.text == "hola"

    async def test_respects_cancel(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(GenerationCancelled):
            await EchoTransport().send("openai", _request(), cancel)


# ---------------------------------------------------------------------------
# HttpTransport
# ---------------------------------------------------------------------------

class TestHttpTransport:
    @pytest.fixture
    def transport(self) -> HttpTransport:
        return HttpTransport(timeout=5.0)

    async def test_happy_path(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response(OPENAI_OK))
        with patch("httpx.AsyncClient.post", mock_post):
            reply = await transport.send("openai", _request())
        assert reply.text == "Hello there."

    async def test_posts_request_fields(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response(OPENAI_OK))
        request = _request()
        with patch("httpx.AsyncClient.post", mock_post):
            await transport.send("openai", request)
        assert mock_post.call_args[0][0] == request.url
        assert mock_post.call_args.kwargs["json"] == request.body
        assert mock_post.call_args.kwargs["headers"] == request.headers

    async def test_connect_error(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Cannot connect"):
                await transport.send("openai", _request())

    async def test_http_error(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=401))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="HTTP 401"):
                await transport.send("openai", _request())

    async def test_timeout(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="timed out"):
                await transport.send("openai", _request())

    async def test_non_json_body(self, transport: HttpTransport) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(TransportError, match="non-JSON"):
                await transport.send("openai", _request())

    async def test_malformed_reply(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": True}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(TransportError, match="Unexpected response format"):
                await transport.send("openai", _request())

    async def test_cancel_before_send(self, transport: HttpTransport) -> None:
        cancel = asyncio.Event()
        cancel.set()
        mock_post = AsyncMock(return_value=_mock_response(OPENAI_OK))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationCancelled):
                await transport.send("openai", _request(), cancel)
        mock_post.assert_not_called()

    async def test_cancel_in_flight(self, transport: HttpTransport) -> None:
        cancel = asyncio.Event()

        async def slow_post(*args, **kwargs):
            await asyncio.sleep(10)
            return _mock_response(OPENAI_OK)

        async def abort_soon() -> None:
            await asyncio.sleep(0.01)
            cancel.set()

        with patch("httpx.AsyncClient.post", AsyncMock(side_effect=slow_post)):
            aborter = asyncio.ensure_future(abort_soon())
            with pytest.raises(GenerationCancelled):
                await transport.send("openai", _request(), cancel)
            await aborter

    async def test_cancel_not_a_transport_error(self) -> None:
        assert not issubclass(GenerationCancelled, TransportError)

    async def test_unset_cancel_event_still_returns(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response(OPENAI_OK))
        with patch("httpx.AsyncClient.post", mock_post):
            reply = await transport.send("openai", _request(), asyncio.Event())
        assert reply.text == "Hello there."

    async def test_check_connection(self, transport: HttpTransport) -> None:
        mock_post = AsyncMock(return_value=_mock_response(OPENAI_OK))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await transport.check_connection("openai", "sk", "gpt-3.5-turbo") is True
        assert mock_post.call_args.kwargs["json"]["max_tokens"] == 5
