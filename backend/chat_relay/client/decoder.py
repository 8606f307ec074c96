"""
Relay decoder: rebuilds RelayEvents from an arbitrarily chunked byte stream.

Reads from the network rarely line up with frame boundaries, so incoming
text is accumulated and only complete frames (terminated by a blank line)
are parsed. Whatever follows the last terminator is kept for the next read.
"""
import codecs
import json
import logging
from typing import List, Optional

from chat_relay.models.events import Completed, Delta, Failed, RelayEvent, is_terminal
from chat_relay.services.relay import DATA_MARKER, FRAME_TERMINATOR

log = logging.getLogger("client")

CLOSED_EARLY_MESSAGE = "Stream closed before completion"


def _error_message(value) -> str:
    if isinstance(value, dict) and isinstance(value.get("message"), str):
        return value["message"]
    if isinstance(value, str) and value:
        return value
    return "Stream failed"


def parse_frame(frame: str) -> List[RelayEvent]:
    """
    Classify one complete frame.

    Frames without a data line, with invalid JSON, or with an unknown payload
    are keepalives or noise and produce no events.
    """
    event_name = None
    data_lines = []
    for line in frame.split("\n"):
        if line.startswith(DATA_MARKER):
            data_lines.append(line[len(DATA_MARKER):].strip())
        elif line.startswith("event:"):
            event_name = line[len("event:"):].strip()
    if not data_lines:
        return []
    try:
        payload = json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, dict):
        return []

    # Older gateways sent failures as "event: error" with {"message": ...}
    if event_name == "error":
        return [Failed(_error_message(payload))]
    if "error" in payload:
        return [Failed(_error_message(payload["error"]))]

    events: List[RelayEvent] = []
    delta = payload.get("delta")
    if isinstance(delta, str) and delta:
        events.append(Delta(delta))
    if payload.get("done") is True:
        events.append(Completed())
    return events


class FrameDecoder:
    """Incremental decoder for one stream; feed bytes, collect events."""

    def __init__(self):
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.terminal: Optional[RelayEvent] = None

    @property
    def finished(self) -> bool:
        return self.terminal is not None

    def _emit(self, events: List[RelayEvent], out: List[RelayEvent]) -> None:
        for event in events:
            if self.finished:
                return
            out.append(event)
            if is_terminal(event):
                self.terminal = event

    def feed(self, chunk: bytes) -> List[RelayEvent]:
        if self.finished:
            return []
        self._buffer += self._text.decode(chunk)
        if "\r" in self._buffer:
            # a lone trailing \r may still be followed by \n in the next read
            head, tail = (self._buffer[:-1], "\r") if self._buffer.endswith("\r") else (self._buffer, "")
            self._buffer = head.replace("\r\n", "\n") + tail

        out: List[RelayEvent] = []
        while not self.finished:
            end = self._buffer.find(FRAME_TERMINATOR)
            if end < 0:
                break
            frame = self._buffer[:end]
            self._buffer = self._buffer[end + len(FRAME_TERMINATOR):]
            self._emit(parse_frame(frame), out)
        return out

    def close(self) -> List[RelayEvent]:
        """End of input: an unterminated stream becomes a Failed event."""
        self._buffer += self._text.decode(b"", final=True)
        if self.finished:
            return []
        if self._buffer.strip():
            log.debug("Discarding %d bytes of incomplete frame", len(self._buffer))
        self._buffer = ""
        self.terminal = Failed(CLOSED_EARLY_MESSAGE)
        return [self.terminal]
