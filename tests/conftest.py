"""
Test configuration and shared fixtures for MCP Chat Gateway tests.

Fake connections, stream handles and providers stand in for live MCP
endpoints and the model API, so tests exercise the orchestration without I/O.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from mcp_chat_gateway.config import Settings, get_config
from mcp_chat_gateway.main import app
from mcp_chat_gateway.models.chat import ChatMessage, ChatRequest, Finish, StepStart, TextDelta
from mcp_chat_gateway.models.config import EndpointConfig
from mcp_chat_gateway.models.tool import ToolOutput, ToolSpec
from mcp_chat_gateway.services.chat_store import InMemoryChatStore
from mcp_chat_gateway.services.config_manager import ConfigManager
from mcp_chat_gateway.services.stream_executor import ResilientStreamExecutor


class FakeConnection:
    """In-memory stand-in for an MCPConnection."""

    def __init__(self, url: str, tools: Dict[str, Any], list_error: Optional[Exception] = None,
                 release_error: Optional[Exception] = None, release_delay: float = 0):
        self.url = url
        self._tools = tools
        self._list_error = list_error
        self._release_error = release_error
        self._release_delay = release_delay
        self.release_calls = 0
        self.invocations: List[tuple] = []

    async def list_tools(self) -> List[ToolSpec]:
        if self._list_error is not None:
            raise self._list_error
        return [
            ToolSpec(
                name=name,
                description=f"{name} from {self.url}",
                input_schema={"type": "object"},
                invoke=self._invoker(name),
                endpoint=self.url,
            )
            for name in self._tools
        ]

    def _invoker(self, name: str):
        async def invoke(arguments: Dict[str, Any]) -> ToolOutput:
            self.invocations.append((name, arguments))
            behaviour = self._tools[name]
            if isinstance(behaviour, Exception):
                raise behaviour
            if isinstance(behaviour, ToolOutput):
                return behaviour
            return ToolOutput.text_result(str(behaviour))
        return invoke

    async def release(self) -> None:
        if self._release_delay:
            # Counted only once the close has actually finished
            await asyncio.sleep(self._release_delay)
        self.release_calls += 1
        if self._release_error is not None:
            raise self._release_error


def make_connect(connections: Dict[str, Any]) -> Callable:
    """Connect function resolving endpoint URLs to fakes; exceptions are raised."""
    async def connect(endpoint: EndpointConfig) -> FakeConnection:
        target = connections[endpoint.url]
        if isinstance(target, Exception):
            raise target
        return target
    return connect


class FakeStreamHandle:
    """Replays a fixed list of events, optionally blocking before a given index."""

    def __init__(self, events: List[Any], block_at: Optional[int] = None):
        self.events = events
        self.block_at = block_at
        self.response_messages: List[Dict[str, Any]] = []
        self.reached_block = asyncio.Event()
        self.aclose_calls = 0

    def __aiter__(self):
        return self._run()

    async def _run(self):
        self.response_messages.append({"role": "assistant", "content": [{"type": "text", "text": "done"}]})
        for index, event in enumerate(self.events):
            if index == self.block_at:
                self.reached_block.set()
                await asyncio.Event().wait()
            yield event

    async def aclose(self) -> None:
        self.aclose_calls += 1


class FakeProvider:
    """Returns queued handles or raises queued errors from open_stream."""

    def __init__(self, outcomes: List[Any]):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.configs: List[Any] = []

    async def open_stream(self, config):
        self.calls += 1
        self.configs.append(config)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def settings():
    """Settings with a dummy key and smoothing disabled"""
    return Settings(anthropic_api_key="test-key", smooth_stream_delay_ms=0, config_path="does-not-exist.yaml")


@pytest.fixture
def simple_events():
    """A minimal successful turn"""
    return [
        StepStart(message_id="msg_1"),
        TextDelta(text="Hello "),
        TextDelta(text="world"),
        Finish(finish_reason="stop", usage={"promptTokens": 3, "completionTokens": 2}),
    ]


@pytest.fixture
def chat_request():
    """Chat request with one user message and no extra endpoints"""
    return ChatRequest(
        messages=[ChatMessage(role="user", content="What is the floor price of Doodles?")],
        chatId="chat-1",
        selectedModel="claude-4-sonnet",
    )


@pytest.fixture
def chat_store():
    return InMemoryChatStore()


@pytest.fixture
def client(settings, chat_store, simple_events, tmp_path):
    """FastAPI test client with app state wired to fakes"""
    provider = FakeProvider([FakeStreamHandle(simple_events)])
    app.state.provider = provider
    app.state.executor = ResilientStreamExecutor(provider, sleep=no_sleep)
    app.state.chat_store = chat_store
    app.state.config_manager = ConfigManager(str(tmp_path / "missing.yaml"))
    app.dependency_overrides[get_config] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()
    for name in ("provider", "executor", "chat_store", "config_manager"):
        if hasattr(app.state, name):
            delattr(app.state, name)
