"""End-to-end tests of the proxy app against an in-process fake backend."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from nimproxy.core.exceptions import UpstreamError
from nimproxy.core.router import ProxyRouter
from nimproxy.main import create_app
from nimproxy.testing import UpstreamResponse

from conftest import TEST_API_KEY, make_settings, parse_sse

CHAT = {"model": "gpt-4o", "messages": [{"role": "user", "content": "Hello"}]}


def _client_with_handler(handler) -> TestClient:
    app = create_app(make_settings(), lore_sources=[], transport=httpx.MockTransport(handler))
    return TestClient(app)


class TestInfoEndpoints:
    def test_health_reports_flags(self, make_client, greyhaven):
        client = make_client(lore_sources=[greyhaven], show_reasoning=True, enable_lorebook=True)
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "service": "OpenAI to NVIDIA NIM Proxy",
            "reasoning_display": True,
            "thinking_mode": True,
            "lorebook_enabled": True,
            "lorebooks_loaded": 1,
            "total_entries": 2,
            "lorebook_titles": ["Greyhaven"],
        }

    def test_models_lists_aliases(self, make_client):
        response = make_client().get("/v1/models")
        assert response.status_code == 200
        payload = response.json()
        assert payload["object"] == "list"
        ids = [model["id"] for model in payload["data"]]
        assert ids == [
            "gpt-3.5-turbo",
            "gpt-4",
            "gpt-4-turbo",
            "gpt-4o",
            "claude-3-opus",
            "claude-3-sonnet",
            "gemini-pro",
        ]
        assert {model["owned_by"] for model in payload["data"]} == {"nvidia-nim-proxy"}
        assert {model["object"] for model in payload["data"]} == {"model"}

    def test_unknown_route_returns_envelope(self, make_client):
        response = make_client().get("/v2/unknown")
        assert response.status_code == 404
        assert response.json() == {
            "error": {
                "message": "Endpoint /v2/unknown not found",
                "type": "invalid_request_error",
                "code": 404,
            }
        }

    def test_wrong_method_returns_envelope(self, make_client):
        response = make_client().get("/v1/chat/completions")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == 404


class TestNonStreaming:
    def test_request_mapping(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("Hi there")
        client = make_client()

        response = client.post(
            "/v1/chat/completions",
            json=CHAT,
            headers={"Authorization": "Bearer client-key"},
        )

        assert response.status_code == 200
        sent = fake_upstream.received[0]
        assert sent["path"] == "/v1/chat/completions"
        assert sent["headers"]["authorization"] == f"Bearer {TEST_API_KEY}"
        assert sent["json"] == {
            "model": "deepseek-ai/deepseek-v3.1",
            "messages": CHAT["messages"],
            "temperature": 0.6,
            "max_tokens": 9024,
            "stream": False,
            "chat_template_kwargs": {"thinking": True},
        }

    def test_response_envelope(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response(
            "Hi there",
            reasoning="thinking",
            usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
        )
        response = make_client().post("/v1/chat/completions", json=CHAT)

        body = response.json()
        assert body["object"] == "chat.completion"
        assert body["id"].startswith("chatcmpl-")
        assert body["model"] == "gpt-4o"
        assert body["choices"] == [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hi there"},
                "finish_reason": "stop",
            }
        ]
        assert body["usage"] == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}

    def test_reasoning_display_wraps_reasoning(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("Answer", reasoning="Because")
        response = make_client(show_reasoning=True).post("/v1/chat/completions", json=CHAT)
        content = response.json()["choices"][0]["message"]["content"]
        assert content == "<think>\nBecause\n</think>\n\nAnswer"

    def test_caller_values_override_defaults(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("ok")
        payload = dict(CHAT, temperature=0, max_tokens=50)
        make_client(enable_thinking_mode=False).post("/v1/chat/completions", json=payload)

        sent = fake_upstream.received[0]["json"]
        assert sent["temperature"] == 0
        assert sent["max_tokens"] == 50
        assert "chat_template_kwargs" not in sent

    def test_proxy_route_ignores_caller_key(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("ok")
        response = make_client().post(
            "/proxy/v1/chat/completions",
            json=CHAT,
            headers={"Authorization": "Bearer janitor-key", "X-Api-Key": "other"},
        )
        assert response.status_code == 200
        headers = fake_upstream.received[0]["headers"]
        assert headers["authorization"] == f"Bearer {TEST_API_KEY}"
        assert "x-api-key" not in headers

    def test_caller_headers_are_not_forwarded(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("ok")
        response = make_client().post(
            "/v1/chat/completions",
            content=json.dumps(CHAT),
            headers={"Content-Type": "text/plain", "X-Custom-Trace": "abc"},
        )
        assert response.status_code == 200
        headers = fake_upstream.received[0]["headers"]
        assert headers["content-type"] == "application/json"
        assert "x-custom-trace" not in headers
        assert fake_upstream.received[0]["json"]["model"] == "deepseek-ai/deepseek-v3.1"

    def test_response_echoes_caller_model_verbatim(self, make_client, fake_upstream):
        fake_upstream.enqueue_chat_response("ok")
        response = make_client().post(
            "/v1/chat/completions", json=dict(CHAT, model="openai/gpt-4o")
        )
        assert response.json()["model"] == "openai/gpt-4o"
        assert fake_upstream.received[0]["json"]["model"] == "deepseek-ai/deepseek-v3.1"


class TestStreaming:
    def test_fragmented_stream_is_reshaped(self, make_client, fake_upstream):
        fake_upstream.enqueue_stream(
            [
                {"role": "assistant", "content": ""},
                {"reasoning_content": "Let me think ✓"},
                {"content": "Done 🙂"},
            ],
            chunk_sizes=[7, 13, 1, 1, 50, 3],
        )
        client = make_client(show_reasoning=True)

        response = client.post("/v1/chat/completions", json=dict(CHAT, stream=True))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = parse_sse(response.text)
        assert events[-1] == "[DONE]"
        contents = [event["choices"][0]["delta"]["content"] for event in events[:-1]]
        assert contents == ["", "<think>\nLet me think ✓", "</think>\n\nDone 🙂"]
        assert fake_upstream.received[0]["json"]["stream"] is True

    def test_reasoning_hidden_by_default(self, make_client, fake_upstream):
        fake_upstream.enqueue_stream([{"reasoning_content": "secret"}, {"content": "visible"}])

        response = make_client().post("/v1/chat/completions", json=dict(CHAT, stream=True))

        assert "secret" not in response.text
        events = parse_sse(response.text)
        assert [event["choices"][0]["delta"]["content"] for event in events[:-1]] == ["", "visible"]

    def test_stream_error_status_returns_envelope(self, make_client, fake_upstream):
        fake_upstream.enqueue_error_response(429, "Too many requests")
        response = make_client().post("/v1/chat/completions", json=dict(CHAT, stream=True))
        assert response.status_code == 429
        assert response.json() == {
            "error": {
                "message": "Too many requests",
                "type": "invalid_request_error",
                "code": 429,
            }
        }


class TestErrors:
    @pytest.mark.parametrize("status", [400, 429, 503])
    def test_upstream_error_status_is_relayed(self, make_client, fake_upstream, status):
        fake_upstream.enqueue_error_response(status, "backend says no")
        response = make_client().post("/v1/chat/completions", json=CHAT)
        assert response.status_code == status
        assert response.json()["error"] == {
            "message": "backend says no",
            "type": "invalid_request_error",
            "code": status,
        }

    def test_invalid_json_body(self, make_client, fake_upstream):
        response = make_client().post(
            "/v1/chat/completions",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {
            "error": {
                "message": "Invalid JSON payload",
                "type": "invalid_request_error",
                "code": 400,
            }
        }
        assert fake_upstream.received == []

    @pytest.mark.parametrize("payload", [{"model": "gpt-4"}, {"model": "gpt-4", "messages": "hi"}])
    def test_missing_messages(self, make_client, fake_upstream, payload):
        response = make_client().post("/v1/chat/completions", json=payload)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == 400
        assert response.json()["error"]["message"] == "You must provide a messages array"
        assert fake_upstream.received == []

    def test_non_object_body(self, make_client):
        response = make_client().post("/v1/chat/completions", json=["not", "an", "object"])
        assert response.status_code == 400
        assert response.json()["error"]["code"] == 400

    @pytest.mark.parametrize("item", ["harbor", 3, None, ["nested"]])
    def test_non_object_message_is_rejected(self, make_client, fake_upstream, greyhaven, item):
        client = make_client(lore_sources=[greyhaven], enable_lorebook=True)
        response = client.post(
            "/v1/chat/completions",
            json={"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}, item]},
        )
        assert response.status_code == 400
        assert response.json()["error"] == {
            "message": "Each message must be a JSON object",
            "type": "invalid_request_error",
            "code": 400,
        }
        assert fake_upstream.received == []

    def test_connection_failure_returns_500(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        response = _client_with_handler(handler).post("/v1/chat/completions", json=CHAT)
        assert response.status_code == 500
        assert response.json()["error"]["code"] == 500
        assert "connection refused" in response.json()["error"]["message"]

    def test_timeout_returns_504(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        response = _client_with_handler(handler).post("/v1/chat/completions", json=CHAT)
        assert response.status_code == 504

    def test_invalid_upstream_body_returns_502(self, make_client, fake_upstream):
        fake_upstream.enqueue(UpstreamResponse(body=b"<html>oops</html>"))
        response = make_client().post("/v1/chat/completions", json=CHAT)
        assert response.status_code == 502
        assert response.json()["error"]["code"] == 502


class TestLorebook:
    def test_context_injected_once(self, make_client, fake_upstream, greyhaven):
        fake_upstream.enqueue_chat_response("ok")
        client = make_client(lore_sources=[greyhaven], enable_lorebook=True)
        payload = {
            "model": "gpt-4",
            "messages": [
                {"role": "system", "content": "Narrate."},
                {"role": "user", "content": "Mara walks to the harbor."},
            ],
        }

        client.post("/v1/chat/completions", json=payload)

        sent = fake_upstream.received[0]["json"]["messages"]
        assert sent[0]["content"] == (
            "Narrate.\n\n[Lorebook Context]\nMara runs the docks.\n\nThe harbor is fogbound."
        )
        assert sent[0]["content"].count("[Lorebook Context]") == 1
        assert sent[1] == payload["messages"][1]

    def test_streaming_request_is_injected(self, make_client, fake_upstream, greyhaven):
        fake_upstream.enqueue_stream([{"content": "ok"}])
        client = make_client(lore_sources=[greyhaven], enable_lorebook=True)
        payload = {"model": "gpt-4", "stream": True, "messages": [{"role": "user", "content": "harbor"}]}

        client.post("/v1/chat/completions", json=payload)

        sent = fake_upstream.received[0]["json"]["messages"]
        assert sent[0] == {"role": "system", "content": "[Lorebook Context]\nThe harbor is fogbound."}

    def test_disabled_lorebook_leaves_messages(self, make_client, fake_upstream, greyhaven):
        fake_upstream.enqueue_chat_response("ok")
        client = make_client(lore_sources=[greyhaven], enable_lorebook=False)
        payload = {"model": "gpt-4", "messages": [{"role": "user", "content": "harbor"}]}

        client.post("/v1/chat/completions", json=payload)

        assert fake_upstream.received[0]["json"]["messages"] == payload["messages"]

    def test_relative_lorebook_dir_is_taken_from_project_root(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        settings = make_settings(enable_lorebook=True, lorebook_dir=Path("lorebooks"))

        client = TestClient(create_app(settings))
        health = client.get("/health").json()

        assert health["lorebook_titles"] == ["Greyhaven"]
        assert health["total_entries"] == 2


class TestRouterErrors:
    @pytest.mark.asyncio
    async def test_upstream_error_keeps_parsed_body(self, fake_upstream):
        fake_upstream.enqueue_error_response(429, "slow down")
        router = ProxyRouter(make_settings(), transport=fake_upstream.transport())

        with pytest.raises(UpstreamError) as excinfo:
            await router.forward_request(CHAT)

        assert excinfo.value.status_code == 429
        assert excinfo.value.body == {"error": {"message": "slow down", "type": "upstream_error"}}

    @pytest.mark.asyncio
    async def test_streaming_upstream_error_keeps_parsed_body(self, fake_upstream):
        fake_upstream.enqueue_error_response(503, "overloaded")
        router = ProxyRouter(make_settings(), transport=fake_upstream.transport())

        with pytest.raises(UpstreamError) as excinfo:
            await router.forward_request(dict(CHAT, stream=True))

        assert excinfo.value.status_code == 503
        assert excinfo.value.body["error"]["message"] == "overloaded"

    @pytest.mark.asyncio
    async def test_non_json_error_body_is_none(self, fake_upstream):
        fake_upstream.enqueue(UpstreamResponse(status_code=502, body=b"bad gateway"))
        router = ProxyRouter(make_settings(), transport=fake_upstream.transport())

        with pytest.raises(UpstreamError) as excinfo:
            await router.forward_request(CHAT)

        assert excinfo.value.body is None
        assert excinfo.value.message == "Upstream returned status 502: bad gateway"
