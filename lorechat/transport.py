"""Transport: sends a built ProviderRequest and parses the reply.

Assembly and formatting are pure; this module is the only place that does
network I/O. Callers depend on the protocol:

    async def send(provider, request, cancel=None) -> Reply: ...

`cancel` is an asyncio.Event. Setting it aborts the in-flight call and
raises GenerationCancelled. It is not a TransportError, so a user abort
never marks a turn as failed.

Two implementations are provided:

    HttpTransport:  real HTTP client (httpx).
    EchoTransport:  replies with the last user content. Useful for wiring
                    checks without a provider account.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from lorechat.providers import (
    ProviderRequest,
    Reply,
    connection_check_request,
    get_provider,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every transport must match this signature
# ---------------------------------------------------------------------------

class Transport(Protocol):
    async def send(
        self,
        provider: str,
        request: ProviderRequest,
        cancel: asyncio.Event | None = None,
    ) -> Reply: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TransportError(RuntimeError):
    """Raised when the provider cannot be reached or returns an error."""


class GenerationCancelled(Exception):
    """Raised when the caller aborted the request through its cancel event."""


# ---------------------------------------------------------------------------
# HttpTransport
# ---------------------------------------------------------------------------

class HttpTransport:
    """Async HTTP transport for every registered provider.

    Args:
        timeout: HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(self, timeout: float = 120.0) -> None:
        self._timeout = timeout

    async def _post(self, provider: str, request: ProviderRequest) -> dict[str, Any]:
        logger.debug("transport call provider=%s url=%s", provider, request.url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    request.url,
                    json=request.body,
                    headers=request.headers,
                    params=request.params,
                )
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TransportError(f"Cannot connect to {provider} at {request.url}") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{provider} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"{provider} timed out after {self._timeout}s") from e

        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{provider} returned a non-JSON body") from e

    async def _call(self, provider: str, request: ProviderRequest) -> Reply:
        handler = get_provider(provider)
        data = await self._post(provider, request)
        try:
            reply = handler.parse_response(data)
        except ValueError as e:
            raise TransportError(str(e)) from e
        logger.debug(
            "transport reply provider=%s len=%d truncated=%s",
            provider, len(reply.text), reply.truncated,
        )
        return reply

    async def send(
        self,
        provider: str,
        request: ProviderRequest,
        cancel: asyncio.Event | None = None,
    ) -> Reply:
        if cancel is None:
            return await self._call(provider, request)
        if cancel.is_set():
            raise GenerationCancelled(f"{provider} request cancelled before sending")

        call = asyncio.ensure_future(self._call(provider, request))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()

        if call.done():
            return call.result()

        call.cancel()
        try:
            await call
        except asyncio.CancelledError:
            pass
        logger.info("transport call provider=%s cancelled", provider)
        raise GenerationCancelled(f"{provider} request cancelled")

    async def check_connection(self, provider: str, api_key: str, model: str) -> bool:
        """Send a minimal request; raise TransportError if it fails."""
        request = connection_check_request(provider, api_key, model)
        await self._post(provider, request)
        return True


# ---------------------------------------------------------------------------
# EchoTransport: no network calls
# ---------------------------------------------------------------------------

class EchoTransport:
    """Replies with the content of the last user turn in the request body."""

    async def send(
        self,
        provider: str,
        request: ProviderRequest,
        cancel: asyncio.Event | None = None,
    ) -> Reply:
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled(f"{provider} request cancelled before sending")
        logger.debug("EchoTransport provider=%s", provider)
        return Reply(text=_last_user_text(request.body))


def _last_user_text(body: dict[str, Any]) -> str:
    if "contents" in body:
        for item in reversed(body["contents"]):
            if item.get("role") == "user":
                return item["parts"][0]["text"]
        return ""
    for item in reversed(body.get("messages", [])):
        if item.get("role") == "user":
            return item["content"]
    return ""
