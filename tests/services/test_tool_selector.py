"""Tests for rule-based tool selection"""

import pytest

from mcp_chat_gateway.models.config import EndpointConfig, KeywordRule, PriorityRule, ToolSelectionConfig
from mcp_chat_gateway.services.mcp_client_manager import ToolRegistry
from mcp_chat_gateway.services.tool_selector import ToolSelector
from tests.conftest import FakeConnection, make_connect

NFT_TOOLS = [
    "NFT-data-and-historical-statistics-get-floor-price",
    "search-API-search-collection",
    "NFT-data-and-historical-statistics-get-collection-stats",
    "collection-statistics-get-owners",
    "NFT-items-get-items-by-owner",
    "charts-get-floor-price-chart",
    "balances-get-balance",
    "orders-get-orders-by-ids",
    "activities-get-activities",
    "ownerships-get-ownership-by-id",
    "tokens-get-token-ids",
    "users-get-user-info",
]


async def build_registry(names):
    connection = FakeConnection("https://tools.example/mcp", {name: "ok" for name in names})
    return await ToolRegistry.build(
        [EndpointConfig(url=connection.url)], connect=make_connect({connection.url: connection})
    )


@pytest.fixture
def selector():
    return ToolSelector()


class TestOffTopic:
    """Off-topic detection"""

    def test_long_off_topic_message(self, selector):
        assert selector.is_off_topic("Explain quantum computing in simple terms") is True

    def test_short_message_is_never_off_topic(self, selector):
        """The length guard keeps short messages in scope"""
        assert selector.is_off_topic("physics") is False

    def test_case_insensitive_keyword(self, selector):
        assert selector.is_off_topic("Can you share a good RECIPE for pancakes?") is True

    def test_on_topic_message(self, selector):
        assert selector.is_off_topic("What is the floor price of Doodles right now?") is False


class TestScoring:
    """Per-tool scores"""

    def test_keyword_and_priority_rules_sum(self, selector):
        """Floor keyword plus exact and case-insensitive priority bonuses"""
        score = selector.score("NFT-data-and-historical-statistics-get-floor-price", "floor price of doodles")
        # floor 1000 + price 600 + doodles 800 + exact 1000 + case-insensitive 400
        assert score == 3800

    def test_unrelated_tool_scores_zero(self, selector):
        assert selector.score("users-get-user-info", "floor price of doodles") == 0

    def test_case_insensitive_priority_matches_any_case(self, selector):
        assert selector.score("SEARCH-API-SEARCH-ITEMS", "hello") == 250

    def test_custom_rules(self):
        config = ToolSelectionConfig(
            keyword_rules=[KeywordRule(keyword="weather", name_substrings=["forecast"], score=5)],
            priority_rules=[PriorityRule(name="Forecast", score=1)],
        )
        selector = ToolSelector(config)
        assert selector.score("Forecast", "weather today") == 6
        assert selector.score("forecast", "weather today") == 5


class TestSelect:
    """Full selection"""

    @pytest.mark.asyncio
    async def test_floor_price_question(self, selector):
        """Floor-price tools lead, the cap holds and only positive scores are chosen"""
        registry = await build_registry(NFT_TOOLS)

        selected = selector.select(registry, "What is the floor price of Doodles?")

        assert selected[0] == "NFT-data-and-historical-statistics-get-floor-price"
        assert "charts-get-floor-price-chart" in selected
        assert "users-get-user-info" not in selected
        assert len(selected) <= 8

    @pytest.mark.asyncio
    async def test_floor_price_question_with_short_tool_names(self, selector):
        registry = await build_registry(["search-collection", "get-floor-price", "get-weather"])

        selected = selector.select(registry, "what's the floor price of Doodles?")

        assert "get-floor-price" in selected
        assert "get-weather" not in selected

    @pytest.mark.asyncio
    async def test_quantum_computing_question_gets_no_tools(self, selector):
        """Off-topic exclusion applies whatever the registry holds"""
        for names in (NFT_TOOLS, ["search-collection", "get-floor-price", "get-weather"]):
            registry = await build_registry(names)

            assert selector.select(registry, "tell me about quantum computing") == []

    @pytest.mark.asyncio
    async def test_off_topic_question_gets_no_tools(self, selector):
        registry = await build_registry(NFT_TOOLS)

        assert selector.select(registry, "Explain quantum computing in simple terms") == []

    @pytest.mark.asyncio
    async def test_empty_registry(self, selector):
        registry = await build_registry([])

        assert selector.select(registry, "floor price") == []

    @pytest.mark.asyncio
    async def test_cap_is_respected(self):
        names = [f"search-tool-{index}" for index in range(12)]
        registry = await build_registry(names)

        selected = ToolSelector().select(registry, "search everything")

        assert len(selected) == 8
        # Equal scores keep registry order
        assert selected == names[:8]

    @pytest.mark.asyncio
    async def test_selection_is_subset_of_registry(self, selector):
        registry = await build_registry(NFT_TOOLS)

        selected = selector.select(registry, "who are the holders of bayc and what is the price")

        assert set(selected) <= set(registry.names())
        assert len(selected) == len(set(selected))

    @pytest.mark.asyncio
    async def test_fallback_to_essential_tools(self, selector):
        """With no positive score the essential tools present in the registry are used"""
        names = [
            "unrelated-tool",
            "search-api-search-collection",
            "collection-statistics-get-owners",
            "another-tool",
        ]
        registry = await build_registry(names)
        config = ToolSelectionConfig(priority_rules=[])

        selected = ToolSelector(config).select(registry, "hello there")

        assert selected == ["search-api-search-collection", "collection-statistics-get-owners"]

    @pytest.mark.asyncio
    async def test_fallback_can_be_empty(self, selector):
        registry = await build_registry(["unrelated-tool", "another-tool"])

        assert selector.select(registry, "hello there") == []

    @pytest.mark.asyncio
    async def test_selection_is_deterministic(self, selector):
        registry = await build_registry(NFT_TOOLS)
        message = "show me collection stats and floor price for cryptopunks"

        assert selector.select(registry, message) == selector.select(registry, message)
