"""Chat request models and the events streamed back to the caller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import EndpointConfig
from .tool import ToolOutput


class ChatMessage(BaseModel):
    """One conversation message as sent by the chat client."""
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    content: str = ""
    parts: Optional[List[Dict[str, Any]]] = None


class ChatRequest(BaseModel):
    """Inbound chat request."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage]
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    selected_model: Optional[str] = Field(default=None, alias="selectedModel")
    user_id: Optional[str] = Field(default=None, alias="userId")
    mcp_servers: List[EndpointConfig] = Field(default_factory=list, alias="mcpServers")

    def latest_user_message(self) -> str:
        """Content of the last user-authored message, or an empty string."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""


# Stream events, in provider-emitted order

@dataclass
class StepStart:
    message_id: str


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCall:
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    output: ToolOutput


@dataclass
class StreamError:
    """A failure reported on the stream rather than raised."""
    error: BaseException


@dataclass
class Finish:
    finish_reason: str
    usage: Dict[str, int] = field(default_factory=dict)


StreamEvent = Union[StepStart, TextDelta, ReasoningDelta, ToolCall, ToolResult, StreamError, Finish]
