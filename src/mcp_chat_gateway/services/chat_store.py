# Chat persistence boundary
# The gateway hands finished conversations to a store; storage itself lives elsewhere

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ChatStore(Protocol):
    """Sink for completed conversations."""

    async def save(self, conversation_id: str, messages: list[dict[str, Any]]) -> None: ...


class InMemoryChatStore:
    """Process-local store, used when no external persistence is wired in."""

    def __init__(self) -> None:
        self._chats: dict[str, list[dict[str, Any]]] = {}

    async def save(self, conversation_id: str, messages: list[dict[str, Any]]) -> None:
        self._chats[conversation_id] = list(messages)
        logger.debug(f"Saved {len(messages)} messages for chat {conversation_id}")

    def get(self, conversation_id: str) -> list[dict[str, Any]] | None:
        return self._chats.get(conversation_id)
