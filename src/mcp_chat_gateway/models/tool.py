# Tool domain models
# Tool specifications exposed to the model and normalized tool results

import json
from dataclasses import dataclass
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, Field

SCHEMA_WARNING_TEXT = (
    "Tool executed successfully but with schema validation warnings. "
    "Raw data may contain newer blockchain types not in the schema."
)


class TextPart(BaseModel):
    """Plain text content returned by a tool."""

    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """Base64 image content returned by a tool."""

    type: Literal["image"] = "image"
    data: str
    mime_type: str = "image/png"


class ResourcePart(BaseModel):
    """Embedded or linked resource returned by a tool."""

    type: Literal["resource"] = "resource"
    uri: str
    text: str | None = None


ContentPart = Annotated[Union[TextPart, ImagePart, ResourcePart], Field(discriminator="type")]


class ToolOutput(BaseModel):
    """Normalized result of a tool invocation, whatever the provider returned."""

    content: list[ContentPart] = Field(default_factory=list)
    structured: dict[str, Any] | None = None
    is_error: bool = False
    schema_warning: bool = False

    @classmethod
    def from_mcp(cls, result: Any) -> "ToolOutput":
        """Build from an MCP CallToolResult, skipping content kinds we do not model."""
        parts: list[TextPart | ImagePart | ResourcePart] = []
        for item in getattr(result, "content", None) or []:
            kind = getattr(item, "type", None)
            if kind == "text":
                parts.append(TextPart(text=item.text))
            elif kind == "image":
                parts.append(ImagePart(data=item.data, mime_type=getattr(item, "mimeType", "image/png")))
            elif kind == "resource":
                resource = item.resource
                parts.append(ResourcePart(uri=str(resource.uri), text=getattr(resource, "text", None)))
            elif kind == "resource_link":
                parts.append(ResourcePart(uri=str(item.uri)))
        return cls(
            content=parts,
            structured=getattr(result, "structuredContent", None),
            is_error=bool(getattr(result, "isError", False)),
        )

    @classmethod
    def text_result(cls, text: str, is_error: bool = False) -> "ToolOutput":
        return cls(content=[TextPart(text=text)], is_error=is_error)

    @classmethod
    def schema_placeholder(cls) -> "ToolOutput":
        """Successful stand-in for a result the provider failed to validate."""
        return cls(content=[TextPart(text=SCHEMA_WARNING_TEXT)], schema_warning=True)

    def as_text(self) -> str:
        """Render as text: text parts, then structured content, then resources, then images."""
        texts = [part.text for part in self.content if isinstance(part, TextPart)]
        if texts:
            return "\n".join(texts)
        if self.structured is not None:
            return json.dumps(self.structured, ensure_ascii=False)
        resources = [part.text or part.uri for part in self.content if isinstance(part, ResourcePart)]
        if resources:
            return "\n".join(resources)
        images = [part for part in self.content if isinstance(part, ImagePart)]
        if images:
            return f"[{len(images)} image(s) returned]"
        return ""


ToolInvoker = Callable[[dict[str, Any]], Awaitable[ToolOutput]]


@dataclass
class ToolSpec:
    """A callable tool as exposed to the model; owned by one connection."""

    name: str
    description: str
    input_schema: dict[str, Any]
    invoke: ToolInvoker
    endpoint: str = ""

    def to_anthropic(self) -> dict[str, Any]:
        """Tool definition in Anthropic Messages API format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema or {"type": "object"},
        }


@dataclass(frozen=True)
class ScoredTool:
    """Transient selection score of one registry tool."""

    name: str
    score: int
