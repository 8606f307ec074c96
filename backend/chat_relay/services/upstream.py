"""
Upstream client adapter around the OpenAI chat-completions API.

The adapter is the only place that holds the provider credential and the
only place that knows about provider SDK exceptions; callers see
UpstreamError and TransportError.
"""
import logging
import time
from typing import AsyncIterator, List, Optional

import httpx
import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from chat_relay.config import DEFAULT_TEMPERATURE, Settings, get_settings
from chat_relay.errors import RelayError, TransportError, UpstreamError
from chat_relay.models.chat import ChatMessage, ChatRequest, ChatResult, Usage

log = logging.getLogger("upstream")


def to_langchain_messages(messages: List[ChatMessage]) -> List[AnyMessage]:
    converted: List[AnyMessage] = []
    for msg in messages:
        if msg.role == "system":
            converted.append(SystemMessage(content=msg.content))
        elif msg.role == "user":
            converted.append(HumanMessage(content=msg.content))
        else:
            converted.append(AIMessage(content=msg.content))
    return converted


def translate_error(exc: Exception) -> RelayError:
    """Map provider SDK and network exceptions onto the relay taxonomy."""
    if isinstance(exc, RelayError):
        return exc
    if isinstance(exc, openai.APIStatusError):
        body = exc.body
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]
        else:
            message = exc.message or f"Provider returned HTTP {exc.status_code}"
        return UpstreamError(message, status=exc.status_code)
    # APITimeoutError is a subclass of APIConnectionError
    if isinstance(exc, openai.APIConnectionError):
        return TransportError(str(exc) or "Connection to provider failed")
    if isinstance(exc, httpx.TransportError):
        return TransportError(f"Connection to provider lost: {exc}")
    if isinstance(exc, openai.OpenAIError):
        return UpstreamError(str(exc))
    return UpstreamError(str(exc) or exc.__class__.__name__)


class UpstreamClient:
    """
    Chat-completion adapter.

    ``complete`` returns one ChatResult; ``stream_complete`` yields the
    non-empty text fragments of the reply in order and always ends either
    normally or by raising UpstreamError/TransportError.
    """

    def __init__(self, llm: BaseChatModel, default_model: str):
        self.llm = llm
        self.default_model = default_model

    @classmethod
    def from_settings(cls, settings: Settings) -> "UpstreamClient":
        if not settings.openai_api_key:
            raise UpstreamError(
                "OPENAI_API_KEY is missing. Please check your .env file.",
                status=500,
            )
        llm = ChatOpenAI(
            model=settings.default_model,
            temperature=DEFAULT_TEMPERATURE,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.upstream_timeout_seconds,
            max_retries=0,
        )
        return cls(llm, settings.default_model)

    def _bound(self, request: ChatRequest):
        model = request.model or self.default_model
        temperature = DEFAULT_TEMPERATURE if request.temperature is None else request.temperature
        return self.llm.bind(model=model, temperature=temperature), model

    async def complete(self, request: ChatRequest) -> ChatResult:
        runnable, model = self._bound(request)
        try:
            message = await runnable.ainvoke(to_langchain_messages(request.messages))
        except Exception as e:
            err = translate_error(e)
            log.error("Completion failed: %s", err.message)
            raise err from e

        metadata = message.response_metadata or {}
        usage = None
        token_usage = metadata.get("token_usage")
        if token_usage:
            usage = Usage(
                prompt_tokens=token_usage.get("prompt_tokens"),
                completion_tokens=token_usage.get("completion_tokens"),
                total_tokens=token_usage.get("total_tokens"),
            )
        elif message.usage_metadata:
            usage = Usage(
                prompt_tokens=message.usage_metadata.get("input_tokens"),
                completion_tokens=message.usage_metadata.get("output_tokens"),
                total_tokens=message.usage_metadata.get("total_tokens"),
            )

        content = message.content if isinstance(message.content, str) else ""
        return ChatResult(
            id=metadata.get("id") or message.id or "",
            created=metadata.get("created") or int(time.time()),
            model=metadata.get("model_name") or model,
            content=content,
            usage=usage,
        )

    async def stream_complete(self, request: ChatRequest) -> AsyncIterator[str]:
        runnable, _ = self._bound(request)
        chunks = runnable.astream(to_langchain_messages(request.messages))
        try:
            async for chunk in chunks:
                text = chunk.content if isinstance(chunk.content, str) else ""
                if text:
                    yield text
        except Exception as e:
            err = translate_error(e)
            log.error("Stream from provider failed: %s", err.message)
            raise err from e
        finally:
            await chunks.aclose()


_upstream_instance: Optional[UpstreamClient] = None


def get_upstream() -> UpstreamClient:
    """Lazily build the process-wide adapter (FastAPI dependency)."""
    global _upstream_instance
    if _upstream_instance is None:
        _upstream_instance = UpstreamClient.from_settings(get_settings())
    return _upstream_instance
