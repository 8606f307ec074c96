"""
Relay encoder: turns the adapter's fragment sequence into SSE frames.

Wire format, one frame per event, written back to back:

    data: {"delta":"<text>"}\\n\\n           Delta
    data: {"done":true}\\n\\n                Completed (last frame on success)
    data: {"error":{"message":"..."}}\\n\\n  Failed (last frame on failure)
    : keepalive\\n\\n                       non-semantic, ignored by decoders
"""
import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from chat_relay.errors import RelayError, TransportError
from chat_relay.models.chat import ErrorBody
from chat_relay.models.events import Completed, Delta, Failed, RelayEvent

log = logging.getLogger("relay")

DATA_MARKER = "data:"
FRAME_TERMINATOR = "\n\n"
KEEPALIVE_FRAME = f": keepalive{FRAME_TERMINATOR}".encode("utf-8")


def event_payload(event: RelayEvent) -> dict:
    if isinstance(event, Delta):
        return {"delta": event.text}
    if isinstance(event, Completed):
        return {"done": True}
    return ErrorBody.of(event.message).model_dump()


def encode_event(event: RelayEvent) -> bytes:
    """Serialize one event as a complete frame."""
    data = json.dumps(event_payload(event), ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_MARKER} {data}{FRAME_TERMINATOR}".encode("utf-8")


class StreamTimeout(TransportError):
    def __init__(self, seconds: float):
        super().__init__(f"Stream exceeded {seconds:g} seconds")


class RelayEncoder:
    """
    Drives one streaming exchange.

    Frames are yielded one at a time so the HTTP layer can flush each as it
    is produced. The encoder stops pulling from the adapter (and closes it)
    on any terminal frame, on client disconnect, and on cancellation.
    """

    def __init__(self, max_duration: float = 300.0, keepalive_interval: Optional[float] = 15.0):
        self.max_duration = max_duration
        self.keepalive_interval = keepalive_interval

    async def frames(
        self,
        fragments: AsyncIterator[str],
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_duration
        pending: Optional[asyncio.Future] = None
        deltas = 0
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    log.info("Client disconnected after %d deltas; abandoning upstream", deltas)
                    return
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise StreamTimeout(self.max_duration)
                if pending is None:
                    pending = asyncio.ensure_future(fragments.__anext__())
                wait_for = remaining
                if self.keepalive_interval:
                    wait_for = min(wait_for, self.keepalive_interval)
                done, _ = await asyncio.wait({pending}, timeout=wait_for)
                if not done:
                    if deadline - loop.time() > 0:
                        yield KEEPALIVE_FRAME
                    continue
                task, pending = pending, None
                try:
                    fragment = task.result()
                except StopAsyncIteration:
                    break
                if fragment:
                    deltas += 1
                    yield encode_event(Delta(fragment))
        except RelayError as e:
            log.warning("Stream failed after %d deltas: %s", deltas, e.message)
            yield encode_event(Failed(e.message))
            return
        except Exception:
            log.exception("Unexpected error while relaying stream")
            yield encode_event(Failed("Stream failed"))
            return
        finally:
            if pending is not None:
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

        log.info("Stream completed with %d deltas", deltas)
        yield encode_event(Completed())

    async def error_frames(self, message: str) -> AsyncIterator[bytes]:
        """A stream that fails before it starts: one Failed frame, nothing else."""
        yield encode_event(Failed(message))
