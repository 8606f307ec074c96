"""
Shared fixtures for the test suite.

Key design decisions:
- A deterministic stub stands in for the provider adapter in route and
  relay tests (no real HTTP to OpenAI).
- Adapter tests use respx to mock the OpenAI chat-completions endpoint.
- Rate-limit state is reset between tests.
"""
import json
from typing import AsyncIterator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_relay.config import Settings
from chat_relay.errors import TransportError, UpstreamError
from chat_relay.models.chat import ChatRequest, ChatResult, Usage

OPENAI_BASE = "https://api.openai.com/v1"


# ── Stub upstream ──


class StubUpstream:
    """
    Deterministic adapter: streams ``fragments`` in order, then either ends
    or raises ``fail_with`` after ``fail_after`` fragments.
    """

    default_model = "stub-model"

    def __init__(
        self,
        fragments: List[str],
        fail_after: Optional[int] = None,
        fail_with: Optional[Exception] = None,
    ):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.fail_with = fail_with or UpstreamError("provider exploded", status=500)
        self.requests: List[ChatRequest] = []
        self.closed = False
        self.yielded = 0

    async def complete(self, request: ChatRequest) -> ChatResult:
        self.requests.append(request)
        if self.fail_after is not None:
            raise self.fail_with
        content = "".join(self.fragments)
        return ChatResult(
            id="chatcmpl-stub",
            created=1700000000,
            model=getattr(request, "model", None) or self.default_model,
            content=content,
            usage=Usage(prompt_tokens=3, completion_tokens=len(self.fragments), total_tokens=3 + len(self.fragments)),
        )

    async def stream_complete(self, request: ChatRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise self.fail_with
                self.yielded += 1
                yield fragment
            if self.fail_after is not None and self.fail_after >= len(self.fragments):
                raise self.fail_with
        finally:
            self.closed = True


@pytest.fixture
def stub_upstream():
    return StubUpstream(["Hel", "lo"])


@pytest.fixture
def failing_upstream():
    return StubUpstream(["Hel", "lo"], fail_after=1, fail_with=TransportError("connection reset"))


# ── Gateway app ──


@pytest.fixture
def gateway_settings():
    return Settings(
        openai_api_key="sk-test",
        stream_max_seconds=5.0,
        stream_keepalive_seconds=1.0,
        max_body_bytes=4096,
    )


@pytest.fixture(autouse=True)
def reset_rate_limit():
    from chat_relay.main import rate_limiter

    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def make_client(monkeypatch, gateway_settings):
    """Build a TestClient whose routes talk to the given upstream."""
    from chat_relay.config import get_settings
    from chat_relay.main import app
    import chat_relay.routes.chat as routes_mod

    def _make(upstream) -> TestClient:
        monkeypatch.setattr(routes_mod, "get_upstream", lambda: upstream)
        app.dependency_overrides[get_settings] = lambda: gateway_settings
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


# ── OpenAI wire fixtures ──


def openai_completion(content: str, model: str = "gpt-4o-mini") -> dict:
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }


def openai_stream_body(fragments: List[str], model: str = "gpt-4o-mini") -> bytes:
    def chunk(delta: dict, finish_reason=None) -> str:
        payload = {
            "id": "chatcmpl-123",
            "object": "chat.completion.chunk",
            "created": 1700000000,
            "model": model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
        return f"data: {json.dumps(payload)}\n\n"

    parts = [chunk({"role": "assistant", "content": ""})]
    parts += [chunk({"content": f}) for f in fragments]
    parts.append(chunk({}, finish_reason="stop"))
    parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")


def sse_response(body: bytes) -> httpx.Response:
    return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
