"""Tests for the chat streaming API"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from mcp_chat_gateway.api.chat import watch_disconnect
from mcp_chat_gateway.main import app
from mcp_chat_gateway.services.config_manager import ConfigManager
from mcp_chat_gateway.services.error_handler import RATE_LIMIT_MESSAGE, RateLimitError
from mcp_chat_gateway.services.stream_executor import ResilientStreamExecutor
from tests.conftest import FakeProvider, no_sleep


def chat_body(**overrides):
    body = {
        "messages": [{"role": "user", "content": "What is the floor price of Doodles?"}],
        "chatId": "chat-42",
        "selectedModel": "claude-4-sonnet",
        "mcpServers": [],
    }
    body.update(overrides)
    return body


def parse_stream(text: str):
    parts = []
    for line in text.splitlines():
        code, _, payload = line.partition(":")
        parts.append((code, json.loads(payload)))
    return parts


class TestChatEndpoint:
    """POST /api/chat"""

    def test_streams_data_stream_parts(self, client, chat_store):
        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 200
        assert response.headers["x-chat-id"] == "chat-42"
        assert response.headers["x-vercel-ai-data-stream"] == "v1"
        parts = parse_stream(response.text)
        assert parts[0] == ("f", {"messageId": "msg_1"})
        assert "".join(value for code, value in parts if code == "0") == "Hello world"
        assert parts[-1] == ("d", {"finishReason": "stop", "usage": {"promptTokens": 3, "completionTokens": 2}})
        assert chat_store.get("chat-42") is not None

    def test_generates_chat_id_when_absent(self, client):
        body = chat_body()
        del body["chatId"]

        response = client.post("/api/chat", json=body)

        assert response.status_code == 200
        assert response.headers["x-chat-id"]

    def test_unknown_model_is_rejected(self, client):
        response = client.post("/api/chat", json=chat_body(selectedModel="not-a-model"))

        assert response.status_code == 400
        assert "Unknown model" in response.json()["detail"]

    def test_invalid_endpoint_is_rejected(self, client):
        response = client.post("/api/chat", json=chat_body(mcpServers=[{"url": "ftp://nope"}]))

        assert response.status_code == 422

    def test_unusable_gateway_config_is_a_server_error(self, client, tmp_path):
        path = tmp_path / "scalar.yaml"
        path.write_text("just a string\n")
        app.state.config_manager = ConfigManager(str(path))

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 500
        assert response.json()["detail"] == "Invalid gateway configuration"

    def test_rate_limit_exhaustion_streams_friendly_error(self, client):
        provider = FakeProvider([RateLimitError("429 Too Many Requests: raw provider body")])
        app.state.executor = ResilientStreamExecutor(provider, sleep=no_sleep)

        response = client.post("/api/chat", json=chat_body())

        assert response.status_code == 200
        assert parse_stream(response.text) == [("3", RATE_LIMIT_MESSAGE)]
        assert "raw provider body" not in response.text
        assert provider.calls == 3


class TestModelsEndpoint:
    """GET /api/models"""

    def test_lists_catalog(self, client):
        response = client.get("/api/models")

        assert response.status_code == 200
        models = response.json()["models"]
        assert models[0]["id"] == "claude-4-sonnet"
        assert models[0]["apiVersion"] == "claude-sonnet-4-20250514"


class TestWatchDisconnect:
    """Caller disconnect detection"""

    @pytest.mark.asyncio
    async def test_sets_cancel_signal_on_disconnect(self):
        request = AsyncMock()
        request.is_disconnected = AsyncMock(side_effect=[False, True])
        cancel = asyncio.Event()

        await watch_disconnect(request, cancel, interval=0)

        assert cancel.is_set()
        assert request.is_disconnected.await_count == 2

    @pytest.mark.asyncio
    async def test_stops_when_already_cancelled(self):
        request = AsyncMock()
        cancel = asyncio.Event()
        cancel.set()

        await watch_disconnect(request, cancel, interval=0)

        request.is_disconnected.assert_not_awaited()
