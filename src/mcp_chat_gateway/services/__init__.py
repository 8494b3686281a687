# Services package
# Contains tool discovery, tool selection, model streaming and request lifecycle logic

from .chat_lifecycle import ChatLifecycle, CompletionGate
from .chat_store import InMemoryChatStore
from .config_manager import ConfigManager
from .llm_client import AnthropicStreamProvider
from .mcp_client_manager import MCPConnection, ToolRegistry
from .stream_executor import ResilientStreamExecutor
from .tool_selector import ToolSelector

__all__ = [
    "AnthropicStreamProvider",
    "ChatLifecycle",
    "CompletionGate",
    "ConfigManager",
    "InMemoryChatStore",
    "MCPConnection",
    "ResilientStreamExecutor",
    "ToolRegistry",
    "ToolSelector",
]
