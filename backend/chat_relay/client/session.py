"""
Session controller: owns one conversation and drives one exchange at a time.
"""
import logging
from contextlib import aclosing
from dataclasses import dataclass, replace
from typing import Callable, List, Literal, Optional, Tuple

from chat_relay.client.relay_client import RelayClient, RelayStream
from chat_relay.config import DEFAULT_TEMPERATURE
from chat_relay.errors import BusyError, UpstreamError, ValidationError
from chat_relay.models.chat import ChatMessage, Role, Usage
from chat_relay.models.events import Completed, Delta, Failed
from chat_relay.services.validator import validate_chat_request

log = logging.getLogger("session")

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

EntryStatus = Literal["complete", "pending", "incomplete"]


@dataclass(frozen=True)
class ConversationEntry:
    role: Role
    content: str
    status: EntryStatus = "complete"

    @property
    def incomplete(self) -> bool:
        return self.status != "complete"


UpdateCallback = Callable[[Tuple[ConversationEntry, ...]], None]


class ChatSession:
    """
    A single chat conversation backed by a RelayClient.

    In "stream" mode replies are merged delta by delta into a trailing
    assistant entry; in "complete" mode the whole reply is appended at once.
    A reply interrupted by a failure or a cancel keeps its partial text and
    is marked incomplete.
    """

    def __init__(
        self,
        client: RelayClient,
        *,
        mode: Literal["stream", "complete"] = "stream",
        system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.client = client
        self.mode = mode
        self.model = model
        self.temperature = temperature
        self.last_usage: Optional[Usage] = None
        self._entries: List[ConversationEntry] = []
        if system_prompt:
            self._entries.append(ConversationEntry(role="system", content=system_prompt))
        self._pending = False
        self._stream: Optional[RelayStream] = None

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def messages(self) -> Tuple[ConversationEntry, ...]:
        return tuple(self._entries)

    @property
    def visible_messages(self) -> Tuple[ConversationEntry, ...]:
        return tuple(e for e in self._entries if e.role != "system")

    def cancel(self) -> None:
        """Abort the in-flight stream, if any."""
        if self._stream is not None:
            self._stream.cancel()

    def _build_request(self, *pending: ConversationEntry):
        return validate_chat_request({
            "messages": [
                ChatMessage(role=e.role, content=e.content).model_dump()
                for e in (*self._entries, *pending)
                if e.content
            ],
            "model": self.model,
            "temperature": self.temperature,
        })

    async def submit(self, text: str, on_update: Optional[UpdateCallback] = None) -> Optional[ConversationEntry]:
        """
        Send one user message and merge the reply into the conversation.

        Returns the assistant entry (None when the reply was empty or the
        stream was cancelled before any text). Raises BusyError while another
        exchange is pending and UpstreamError when the exchange fails.
        """
        if self._pending:
            raise BusyError()
        content = (text or "").strip()
        if not content:
            raise ValidationError("content", "message must not be empty")

        user_entry = ConversationEntry(role="user", content=content)
        request = self._build_request(user_entry)

        self._pending = True
        try:
            self._entries.append(user_entry)
            if self.mode == "complete":
                return await self._complete(request)
            return await self._stream_reply(request, on_update)
        finally:
            self._pending = False
            self._stream = None

    async def _complete(self, request) -> Optional[ConversationEntry]:
        self.last_usage = None
        result = await self.client.complete(request)
        self.last_usage = result.usage
        if not result.content:
            return None
        self._entries.append(ConversationEntry(role="assistant", content=result.content))
        return self._entries[-1]

    def _merge_delta(self, index: Optional[int], text: str) -> int:
        if index is None:
            self._entries.append(ConversationEntry(role="assistant", content=text, status="pending"))
            return len(self._entries) - 1
        current = self._entries[index]
        self._entries[index] = replace(current, content=current.content + text)
        return index

    def _settle(self, index: Optional[int], status: EntryStatus) -> Optional[ConversationEntry]:
        if index is None:
            return None
        self._entries[index] = replace(self._entries[index], status=status)
        return self._entries[index]

    async def _stream_reply(self, request, on_update: Optional[UpdateCallback]) -> Optional[ConversationEntry]:
        self.last_usage = None
        stream = self.client.stream(request)
        self._stream = stream
        index: Optional[int] = None
        async with aclosing(aiter(stream)) as events:
            async for event in events:
                if isinstance(event, Delta):
                    index = self._merge_delta(index, event.text)
                    if on_update is not None:
                        on_update(self.messages)
                elif isinstance(event, Completed):
                    return self._settle(index, "complete")
                elif isinstance(event, Failed):
                    self._settle(index, "incomplete")
                    log.warning("Exchange failed: %s", event.message)
                    raise UpstreamError(event.message)

        # iteration ended without a terminal event: cancelled by the caller
        log.info("Exchange cancelled")
        return self._settle(index, "incomplete")
