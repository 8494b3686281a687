# Tool selection service
# Picks a small, budget-respecting subset of the registry for one model turn

import logging
from typing import List, Optional

from ..models.config import ToolSelectionConfig
from ..models.tool import ScoredTool
from .mcp_client_manager import ToolRegistry

logger = logging.getLogger(__name__)


class ToolSelector:
    """Rule-table driven tool selection; no I/O and no registry mutation."""

    def __init__(self, config: Optional[ToolSelectionConfig] = None) -> None:
        self.config = config or ToolSelectionConfig()

    def is_off_topic(self, message: str) -> bool:
        """Cheap check for requests unrelated to the tool domain."""
        lower_message = message.lower()
        mentions_off_topic = any(keyword in lower_message for keyword in self.config.off_topic_keywords)
        return mentions_off_topic and len(message) > self.config.off_topic_min_length

    def score(self, tool_name: str, message: str) -> int:
        """Sum every keyword rule and priority rule that fires for this tool."""
        lower_message = message.lower()
        lower_name = tool_name.lower()
        score = 0

        for rule in self.config.keyword_rules:
            if rule.keyword in lower_message and any(sub in lower_name for sub in rule.name_substrings):
                score += rule.score

        for rule in self.config.priority_rules:
            if rule.case_sensitive:
                if tool_name == rule.name:
                    score += rule.score
            elif lower_name == rule.name.lower():
                score += rule.score

        return score

    def rank(self, registry: ToolRegistry, message: str) -> List[ScoredTool]:
        """Score every tool, highest first; ties keep registry order."""
        scored = [ScoredTool(name=name, score=self.score(name, message)) for name in registry.names()]
        # sorted() is stable
        return sorted(scored, key=lambda tool: tool.score, reverse=True)

    def select(self, registry: ToolRegistry, latest_user_message: str) -> List[str]:
        """Return the names of the tools to expose to the model, in exposure order."""
        if len(registry) == 0:
            return []

        if self.is_off_topic(latest_user_message):
            logger.info("Off-topic question detected, filtering out tools to save tokens")
            return []

        selected: List[str] = []
        for tool in self.rank(registry, latest_user_message):
            if len(selected) >= self.config.max_tools or tool.score <= 0:
                break
            selected.append(tool.name)

        if not selected:
            logger.info("No tools matched criteria, including essential tools")
            essential = set(self.config.essential_tools)
            selected = [name for name in registry.names() if name in essential]

        logger.info(f"Filtered {len(registry)} tools down to {len(selected)}: {selected}")
        return selected
