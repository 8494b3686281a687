"""Streaming Anthropic Messages API client with a multi-step tool loop."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import httpx

from ..models.chat import (
    ChatMessage,
    Finish,
    ReasoningDelta,
    StepStart,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolResult,
)
from ..models.tool import ToolOutput, ToolSpec
from .error_handler import ConfigurationError, ProviderError, RateLimitError

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
}


@dataclass
class StreamConfig:
    """Everything needed for one model turn: model, messages, tools and generation parameters."""
    model: str
    messages: List[Dict[str, Any]]
    tools: Dict[str, ToolSpec] = field(default_factory=dict)
    system: Optional[str] = None
    max_tokens: int = 4096
    max_steps: int = 5
    temperature: Optional[float] = None
    thinking_budget: Optional[int] = None

    def payload(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Request body for one step of the turn."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if self.system:
            payload["system"] = self.system
        if self.tools:
            payload["tools"] = [spec.to_anthropic() for spec in self.tools.values()]
        if self.thinking_budget:
            payload["thinking"] = {"type": "enabled", "budget_tokens": self.thinking_budget}
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload


def to_provider_messages(messages: List[ChatMessage]) -> tuple[Optional[str], List[Dict[str, Any]]]:
    """Split chat messages into an Anthropic system prompt and message list."""
    system_parts = []
    converted = []
    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
        elif message.content:
            converted.append({"role": message.role, "content": message.content})
    return ("\n\n".join(system_parts) or None), converted


def error_from_response(status_code: int, headers: Mapping[str, str], body: bytes) -> ProviderError:
    """Build the typed error for a non-success provider response."""
    try:
        detail = json.loads(body).get("error", {}).get("message") or body.decode(errors="replace")
    except (ValueError, AttributeError):
        detail = body.decode(errors="replace")
    if status_code == 429:
        return RateLimitError(f"Rate limit exceeded: {detail}", 429, headers)
    return ProviderError(f"HTTP error {status_code} from Anthropic: {detail}", status_code, headers)


def error_from_event(error: Dict[str, Any]) -> ProviderError:
    """Build the typed error for an in-stream `error` event."""
    kind = error.get("type", "api_error")
    message = error.get("message", kind)
    if kind == "rate_limit_error":
        return RateLimitError(f"Rate limit exceeded: {message}")
    if kind == "overloaded_error":
        return ProviderError(f"Anthropic overloaded: {message}", 529)
    return ProviderError(f"Anthropic stream error ({kind}): {message}")


async def iter_sse(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """Yield the JSON payload of each `data:` line of a server-sent event stream."""
    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data or data == "[DONE]":
            continue
        try:
            yield json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream chunk: {data[:200]}")


class AnthropicStreamProvider:
    """Client for the Anthropic Messages API in streaming mode."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.anthropic.com/v1",
                 api_version: str = "2023-06-01", timeout: float = 120.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "MCP-Chat-Gateway/0.1.0"},
        )

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("Anthropic API key not configured")
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
            "accept": "text/event-stream",
        }

    async def send(self, payload: Dict[str, Any]) -> httpx.Response:
        """Open one streaming request; non-success statuses raise immediately."""
        request = self.client.build_request(
            "POST", f"{self.base_url}/messages", json=payload, headers=self._headers()
        )
        logger.debug(f"Making streaming request to Anthropic: {payload['model']}")
        response = await self.client.send(request, stream=True)
        if response.status_code >= 400:
            body = await response.aread()
            await response.aclose()
            raise error_from_response(response.status_code, response.headers, body)
        return response

    async def open_stream(self, config: StreamConfig) -> "StreamHandle":
        """Open the first step eagerly so its failures surface to the caller."""
        response = await self.send(config.payload(config.messages))
        return StreamHandle(self, config, response)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class StreamHandle:
    """Events of one model turn, continuing across tool-use steps.

    Failures after the first step are reported as StreamError events.
    """

    def __init__(self, provider: AnthropicStreamProvider, config: StreamConfig, response: httpx.Response):
        self.provider = provider
        self.config = config
        self.response_messages: List[Dict[str, Any]] = []
        self._response: Optional[httpx.Response] = response
        self._events: Optional[AsyncIterator[StreamEvent]] = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._events is None:
            self._events = self._run()
        return self._events

    async def aclose(self) -> None:
        """Stop the turn and close any open response."""
        if self._events is not None:
            await self._events.aclose()
        if self._response is not None:
            await self._response.aclose()
            self._response = None

    async def _run(self) -> AsyncIterator[StreamEvent]:
        messages = list(self.config.messages)
        usage = {"promptTokens": 0, "completionTokens": 0}
        finish_reason = "other"

        for step in range(self.config.max_steps):
            if self._response is None:
                try:
                    self._response = await self.provider.send(self.config.payload(messages))
                except Exception as e:
                    logger.error(f"Step {step + 1} request failed: {e}")
                    yield StreamError(e)
                    return

            blocks: Dict[int, Dict[str, Any]] = {}
            stop_reason = None
            try:
                async for data in iter_sse(self._response):
                    kind = data.get("type")
                    if kind == "message_start":
                        message = data.get("message", {})
                        usage["promptTokens"] += message.get("usage", {}).get("input_tokens", 0)
                        yield StepStart(message_id=message.get("id", ""))
                    elif kind == "content_block_start":
                        block = dict(data.get("content_block", {}))
                        if block.get("type") == "tool_use":
                            block["partial_json"] = ""
                        blocks[data.get("index", len(blocks))] = block
                    elif kind == "content_block_delta":
                        event = self._apply_delta(blocks.get(data.get("index")), data.get("delta", {}))
                        if event is not None:
                            yield event
                    elif kind == "content_block_stop":
                        block = blocks.get(data.get("index"))
                        if block is not None and block.get("type") == "tool_use":
                            raw = block.pop("partial_json", "")
                            block["input"] = json.loads(raw) if raw else block.get("input") or {}
                    elif kind == "message_delta":
                        stop_reason = data.get("delta", {}).get("stop_reason") or stop_reason
                        usage["completionTokens"] += data.get("usage", {}).get("output_tokens", 0)
                    elif kind == "error":
                        yield StreamError(error_from_event(data.get("error", {})))
                        return
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                yield StreamError(e)
                return
            finally:
                if self._response is not None:
                    await self._response.aclose()
                    self._response = None

            content = [blocks[index] for index in sorted(blocks)]
            if content:
                assistant = {"role": "assistant", "content": content}
                messages.append(assistant)
                self.response_messages.append(assistant)
            finish_reason = FINISH_REASONS.get(stop_reason or "", "other")

            tool_uses = [block for block in content if block.get("type") == "tool_use"]
            if stop_reason != "tool_use" or not tool_uses:
                break

            results = []
            for block in tool_uses:
                yield ToolCall(tool_call_id=block["id"], tool_name=block["name"], args=block["input"])
                output = await self._run_tool(block["name"], block["input"])
                yield ToolResult(tool_call_id=block["id"], tool_name=block["name"], output=output)
                results.append({
                    "type": "tool_result",
                    "tool_use_id": block["id"],
                    "content": output.as_text(),
                    "is_error": output.is_error,
                })
            tool_message = {"role": "user", "content": results}
            messages.append(tool_message)
            self.response_messages.append(tool_message)

        yield Finish(finish_reason=finish_reason, usage=usage)

    @staticmethod
    def _apply_delta(block: Optional[Dict[str, Any]], delta: Dict[str, Any]) -> Optional[StreamEvent]:
        if block is None:
            return None
        kind = delta.get("type")
        if kind == "text_delta":
            block["text"] = block.get("text", "") + delta.get("text", "")
            return TextDelta(text=delta.get("text", ""))
        if kind == "thinking_delta":
            block["thinking"] = block.get("thinking", "") + delta.get("thinking", "")
            return ReasoningDelta(text=delta.get("thinking", ""))
        if kind == "signature_delta":
            block["signature"] = delta.get("signature", "")
        elif kind == "input_json_delta":
            block["partial_json"] = block.get("partial_json", "") + delta.get("partial_json", "")
        return None

    async def _run_tool(self, name: str, arguments: Dict[str, Any]) -> ToolOutput:
        spec = self.config.tools.get(name)
        if spec is None:
            return ToolOutput.text_result(f"Tool {name} is not available", is_error=True)
        try:
            return await spec.invoke(arguments)
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return ToolOutput.text_result(f"Tool {name} failed: {e}", is_error=True)
