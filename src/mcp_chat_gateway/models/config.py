"""Configuration models for the chat gateway: endpoints, tool selection and models."""

from __future__ import annotations
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class KeyValuePair(BaseModel):
    """A single header entry as sent by the chat client."""
    key: str = ""
    value: Optional[str] = None


class EndpointConfig(BaseModel):
    """Configuration for one MCP tool-provider endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    # "http" is the streamable-http request/response transport, "sse" the event-stream one
    type: Literal["http", "sse"] = "http"
    headers: List[KeyValuePair] = Field(default_factory=list)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure the endpoint URL is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint URL must be http(s): {v}")
        return v

    def header_map(self) -> Dict[str, str]:
        """Fold the header list into a mapping, dropping entries without a key."""
        headers: Dict[str, str] = {}
        for header in self.headers:
            if header.key:
                headers[header.key] = header.value or ""
        return headers


class KeywordRule(BaseModel):
    """Score bonus applied when a message keyword and a tool-name substring both match."""
    keyword: str
    name_substrings: List[str] = Field(alias="nameSubstrings")
    score: int = Field(ge=0)

    model_config = ConfigDict(populate_by_name=True)


class PriorityRule(BaseModel):
    """Static bonus for a known high-value tool name, independent of the message."""
    name: str
    score: int = Field(ge=0)
    case_sensitive: bool = Field(default=True, alias="caseSensitive")

    model_config = ConfigDict(populate_by_name=True)


DEFAULT_OFF_TOPIC_KEYWORDS = [
    "quantum computing",
    "physics",
    "cooking",
    "recipe",
    "weather",
    "movie",
    "book",
    "music",
    "write code",
    "debug code",
    "javascript",
    "python",
    "programming tutorial",
    "math problem",
    "science",
    "history",
    "geography",
    "literature",
]

DEFAULT_KEYWORD_RULES = [
    KeywordRule(keyword="floor", name_substrings=["floor"], score=1000),
    KeywordRule(keyword="collection", name_substrings=["collection"], score=900),
    KeywordRule(keyword="holder", name_substrings=["owner", "holder"], score=800),
    KeywordRule(keyword="search", name_substrings=["search"], score=700),
    KeywordRule(keyword="price", name_substrings=["price"], score=600),
    KeywordRule(keyword="stats", name_substrings=["stat"], score=500),
    KeywordRule(keyword="doodles", name_substrings=["collection", "floor"], score=800),
    KeywordRule(keyword="bayc", name_substrings=["collection", "floor"], score=800),
    KeywordRule(keyword="cryptopunk", name_substrings=["collection", "floor"], score=800),
]

DEFAULT_PRIORITY_RULES = [
    # Exact names as published by the Rarible MCP server
    PriorityRule(name="NFT-data-and-historical-statistics-get-floor-price", score=1000),
    PriorityRule(name="search-API-search-collection", score=900),
    PriorityRule(name="NFT-data-and-historical-statistics-get-collection-stats", score=800),
    PriorityRule(name="collection-statistics-get-owners", score=700),
    PriorityRule(name="NFT-collections-get-collection-by-id", score=700),
    PriorityRule(name="search-API-search-items", score=600),
    PriorityRule(name="NFT-items-get-items-by-collection", score=600),
    PriorityRule(name="collection-leader-board-get-collection-leaderboard", score=500),
    PriorityRule(name="NFT-items-get-items-by-owner", score=500),
    PriorityRule(name="charts-get-floor-price-chart", score=400),
    # Commonly needed tools, matched regardless of case
    PriorityRule(name="search-api-search-collection", score=400, case_sensitive=False),
    PriorityRule(name="nft-data-and-historical-statistics-get-floor-price", score=400, case_sensitive=False),
    PriorityRule(name="nft-data-and-historical-statistics-get-collection-stats", score=350, case_sensitive=False),
    PriorityRule(name="collection-statistics-get-owners", score=300, case_sensitive=False),
    PriorityRule(name="nft-collections-get-collection-by-id", score=300, case_sensitive=False),
    PriorityRule(name="search-api-search-items", score=250, case_sensitive=False),
    PriorityRule(name="nft-items-get-items-by-collection", score=250, case_sensitive=False),
    PriorityRule(name="collection-leader-board-get-collection-leaderboard", score=200, case_sensitive=False),
]

DEFAULT_ESSENTIAL_TOOLS = [
    "search-api-search-collection",
    "nft-data-and-historical-statistics-get-floor-price",
    "nft-data-and-historical-statistics-get-collection-stats",
    "collection-statistics-get-owners",
]


class ToolSelectionConfig(BaseModel):
    """Rule tables and budget driving per-request tool selection."""
    model_config = ConfigDict(populate_by_name=True)

    max_tools: int = Field(default=8, ge=1, alias="maxTools")
    off_topic_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_OFF_TOPIC_KEYWORDS), alias="offTopicKeywords"
    )
    off_topic_min_length: int = Field(default=20, ge=0, alias="offTopicMinLength")
    keyword_rules: List[KeywordRule] = Field(
        default_factory=lambda: list(DEFAULT_KEYWORD_RULES), alias="keywordRules"
    )
    priority_rules: List[PriorityRule] = Field(
        default_factory=lambda: list(DEFAULT_PRIORITY_RULES), alias="priorityRules"
    )
    essential_tools: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ESSENTIAL_TOOLS), alias="essentialTools"
    )


class GatewayConfig(BaseModel):
    """Root of the gateway configuration file."""
    model_config = ConfigDict(populate_by_name=True)

    default_endpoints: List[EndpointConfig] = Field(default_factory=list, alias="defaultEndpoints")
    tool_selection: ToolSelectionConfig = Field(default_factory=ToolSelectionConfig, alias="toolSelection")


class ModelInfo(BaseModel):
    """Public description of a selectable language model."""
    id: str
    provider: str
    name: str
    description: str
    api_version: str = Field(alias="apiVersion")
    capabilities: List[str] = Field(default_factory=list)
    thinking_budget: Optional[int] = Field(default=None, alias="thinkingBudget")

    model_config = ConfigDict(populate_by_name=True)


MODEL_CATALOG: Dict[str, ModelInfo] = {
    "claude-4-sonnet": ModelInfo(
        id="claude-4-sonnet",
        provider="Anthropic",
        name="Claude Sonnet 4",
        description=(
            "Anthropic's most advanced model with exceptional reasoning, coding, "
            "and creative capabilities. Optimized for Rarible MCP integration."
        ),
        api_version="claude-sonnet-4-20250514",
        capabilities=["Advanced", "Reasoning", "Coding", "Creative", "Agentic", "MCP"],
        thinking_budget=1500,
    ),
}
