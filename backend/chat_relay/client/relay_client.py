"""
Async HTTP client for the gateway.
"""
import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
import pydantic

from chat_relay.client.decoder import FrameDecoder
from chat_relay.errors import TransportError, UpstreamError
from chat_relay.models.chat import ChatRequest, ChatResult
from chat_relay.models.events import Failed, RelayEvent

log = logging.getLogger("client")

_EOF = object()


def _error_from_response(response: httpx.Response) -> str:
    try:
        body = response.json()
        return body["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"Gateway returned HTTP {response.status_code}"


def _request_body(request: ChatRequest, stream: bool) -> dict:
    body = request.model_dump(exclude_none=True)
    body["stream"] = stream
    return body


class RelayStream:
    """
    One streaming exchange, consumed with ``async for``.

    Yields Delta events followed by exactly one Completed or Failed, unless
    ``cancel()`` is called, in which case iteration simply stops.
    """

    def __init__(self, http: httpx.AsyncClient, request: ChatRequest):
        self._http = http
        self._request = request
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __aiter__(self) -> AsyncIterator[RelayEvent]:
        return self._events()

    async def _next_chunk(self, chunks: AsyncIterator[bytes]):
        """Wait for the next read or for cancellation, whichever comes first."""
        read = asyncio.ensure_future(chunks.__anext__())
        stop = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not read.done():
                read.cancel()
                await asyncio.gather(read, return_exceptions=True)
        if self.cancelled:
            if read.done() and not read.cancelled():
                read.exception()
            return None
        try:
            return read.result()
        except StopAsyncIteration:
            return _EOF

    async def _events(self) -> AsyncIterator[RelayEvent]:
        if self.cancelled:
            return
        decoder = FrameDecoder()
        try:
            async with self._http.stream(
                "POST",
                "/api/chat/stream",
                json=_request_body(self._request, stream=True),
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    yield Failed(_error_from_response(response))
                    return

                chunks = response.aiter_bytes()
                while not decoder.finished:
                    chunk = await self._next_chunk(chunks)
                    if chunk is None:
                        log.info("Stream cancelled by caller")
                        return
                    if chunk is _EOF:
                        break
                    for event in decoder.feed(chunk):
                        yield event
                        if self.cancelled:
                            return
        except httpx.TransportError as e:
            if self.cancelled or decoder.finished:
                return
            log.warning("Stream transport error: %s", e)
            yield Failed(f"Connection lost: {e}")
            return

        for event in decoder.close():
            yield event


class RelayClient:
    """Client for ``/api/chat`` and ``/api/chat/stream``."""

    def __init__(
        self,
        base_url: str = "http://localhost:5050",
        *,
        http: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout or 10.0, read=timeout),
        )

    async def close(self):
        if self._owns_http:
            await self.http.aclose()

    async def complete(self, request: ChatRequest) -> ChatResult:
        try:
            response = await self.http.post("/api/chat", json=_request_body(request, stream=False))
        except httpx.TransportError as e:
            raise TransportError(f"Request error: {e}") from e
        if response.status_code != 200:
            raise UpstreamError(_error_from_response(response), status=response.status_code)
        try:
            return ChatResult.model_validate(response.json())
        except (ValueError, pydantic.ValidationError) as e:
            log.warning("Malformed completion from gateway: %s", e)
            raise UpstreamError("Gateway returned a malformed completion", status=response.status_code) from e

    def stream(self, request: ChatRequest) -> RelayStream:
        return RelayStream(self.http, request)
