"""
HTTP-level tests for the gateway routes (TestClient + stub upstream).
"""
import json

from chat_relay.client.decoder import FrameDecoder
from chat_relay.errors import UpstreamError
from chat_relay.models.events import Completed, Delta, Failed

from conftest import StubUpstream

HI = {"messages": [{"role": "user", "content": "hi"}]}


def _events(body: bytes):
    decoder = FrameDecoder()
    return decoder.feed(body) + decoder.close()


class TestHealth:

    def test_health(self, make_client, stub_upstream):
        response = make_client(stub_upstream).get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestChatEndpoint:

    def test_success(self, make_client, stub_upstream):
        response = make_client(stub_upstream).post("/api/chat", json=HI)
        assert response.status_code == 200
        body = response.json()
        assert body["content"] == "Hello"
        assert body["id"] == "chatcmpl-stub"
        assert body["usage"] == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
        assert stub_upstream.requests[0].messages[0].content == "hi"

    def test_validation_error_makes_no_upstream_call(self, make_client, stub_upstream):
        client = make_client(stub_upstream)
        for bad in (
            {"messages": []},
            {"messages": [{"role": "user", "content": ""}]},
            {"messages": [{"role": "user", "content": "hi"}], "temperature": 3},
            {"messages": [{"role": "robot", "content": "hi"}]},
        ):
            response = client.post("/api/chat", json=bad)
            assert response.status_code == 400
            assert "message" in response.json()["error"]
        assert stub_upstream.requests == []

    def test_malformed_json(self, make_client, stub_upstream):
        response = make_client(stub_upstream).post(
            "/api/chat", content=b"{oops", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"]["message"].startswith("body:")

    def test_body_too_large(self, make_client, stub_upstream):
        huge = {"messages": [{"role": "user", "content": "x" * 5000}]}
        response = make_client(stub_upstream).post("/api/chat", json=huge)
        assert response.status_code == 400
        assert "too large" in response.json()["error"]["message"]

    def test_upstream_error(self, make_client):
        upstream = StubUpstream([], fail_after=0, fail_with=UpstreamError("Incorrect API key", status=401))
        response = make_client(upstream).post("/api/chat", json=HI)
        assert response.status_code == 400
        assert response.json() == {"error": {"message": "Incorrect API key"}}

    def test_unexpected_error_is_reported_generically(self, make_client):
        upstream = StubUpstream([], fail_after=0, fail_with=RuntimeError("secret internals"))
        response = make_client(upstream).post("/api/chat", json=HI)
        assert response.status_code == 400
        assert response.json() == {"error": {"message": "Request failed"}}


class TestChatStreamEndpoint:

    def test_headers(self, make_client, stub_upstream):
        response = make_client(stub_upstream).post("/api/chat/stream", json=HI)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["connection"] == "keep-alive"

    def test_scenario_hello(self, make_client, stub_upstream):
        response = make_client(stub_upstream).post("/api/chat/stream", json=HI)
        assert response.content == (
            b'data: {"delta":"Hel"}\n\n'
            b'data: {"delta":"lo"}\n\n'
            b'data: {"done":true}\n\n'
        )
        assert _events(response.content) == [Delta("Hel"), Delta("lo"), Completed()]

    def test_failure_mid_stream(self, make_client, failing_upstream):
        response = make_client(failing_upstream).post("/api/chat/stream", json=HI)
        assert response.status_code == 200
        assert _events(response.content) == [Delta("Hel"), Failed("connection reset")]

    def test_validation_error_is_single_error_frame(self, make_client, stub_upstream):
        response = make_client(stub_upstream).post("/api/chat/stream", json={"messages": []})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frame = response.content
        assert frame.count(b"\n\n") == 1
        payload = json.loads(frame[len(b"data: "):])
        assert payload["error"]["message"].startswith("messages")
        assert stub_upstream.requests == []

    def test_upstream_rejects_before_first_fragment(self, make_client):
        upstream = StubUpstream(["x"], fail_after=0, fail_with=UpstreamError("model not found", status=404))
        response = make_client(upstream).post("/api/chat/stream", json=HI)
        assert response.status_code == 200
        assert _events(response.content) == [Failed("model not found")]

    def test_unexpected_setup_error_is_single_error_frame(self, make_client, stub_upstream, monkeypatch):
        import chat_relay.routes.chat as routes_mod

        client = make_client(stub_upstream)

        def broken_upstream():
            raise RuntimeError("bad OPENAI_BASE_URL")

        monkeypatch.setattr(routes_mod, "get_upstream", broken_upstream)
        response = client.post("/api/chat/stream", json=HI)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert _events(response.content) == [Failed("Stream failed")]
        assert b"OPENAI_BASE_URL" not in response.content

    def test_stream_matches_complete(self, make_client):
        upstream = StubUpstream(["Once ", "upon ", "a ", "time"])
        client = make_client(upstream)
        content = client.post("/api/chat", json=HI).json()["content"]
        events = _events(client.post("/api/chat/stream", json=HI).content)
        assert "".join(e.text for e in events if isinstance(e, Delta)) == content

    def test_request_options_reach_upstream(self, make_client, stub_upstream):
        body = dict(HI, model="gpt-4o", temperature=1.2)
        make_client(stub_upstream).post("/api/chat/stream", json=body)
        request = stub_upstream.requests[0]
        assert request.model == "gpt-4o"
        assert request.temperature == 1.2


class TestRateLimit:

    def test_rejects_after_limit(self, make_client, stub_upstream, monkeypatch):
        from chat_relay.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "limit", 2)
        client = make_client(stub_upstream)
        assert client.post("/api/chat", json=HI).status_code == 200
        assert client.post("/api/chat", json=HI).status_code == 200
        response = client.post("/api/chat", json=HI)
        assert response.status_code == 429
        assert "error" in response.json()
        assert int(response.headers["retry-after"]) >= 1

    def test_health_is_exempt(self, make_client, stub_upstream, monkeypatch):
        from chat_relay.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "limit", 1)
        client = make_client(stub_upstream)
        for _ in range(3):
            assert client.get("/health").status_code == 200
