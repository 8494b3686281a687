"""Chat streaming API endpoints."""

import asyncio
import logging
import uuid
from typing import AsyncIterator, List

import anyio
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..config import Settings, get_config
from ..models.chat import ChatRequest
from ..models.config import MODEL_CATALOG, ModelInfo
from ..services.chat_lifecycle import ChatLifecycle
from ..services.chat_store import ChatStore
from ..services.config_manager import ConfigManager
from ..services.error_handler import ConfigurationError
from ..services.stream_executor import ResilientStreamExecutor
from ..services.stream_protocol import encode_event, smooth_stream
from ..services.tool_selector import ToolSelector

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger(__name__)

DISCONNECT_POLL_INTERVAL = 0.5


class ModelsResponse(BaseModel):
    """Available chat models"""
    models: List[ModelInfo]


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"Service not initialized: {name}")
    return value


def get_executor(request: Request) -> ResilientStreamExecutor:
    return _state(request, "executor")


def get_chat_store(request: Request) -> ChatStore:
    return _state(request, "chat_store")


def get_config_manager(request: Request) -> ConfigManager:
    return _state(request, "config_manager")


async def watch_disconnect(request: Request, cancel_signal: asyncio.Event,
                           interval: float = DISCONNECT_POLL_INTERVAL) -> None:
    """Set the cancellation signal once the caller goes away."""
    while not cancel_signal.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, signalling cancellation")
            cancel_signal.set()
            return
        await asyncio.sleep(interval)


@router.post("/chat", operation_id="chat")
async def chat(
    body: ChatRequest,
    request: Request,
    executor: ResilientStreamExecutor = Depends(get_executor),  # noqa: B008
    chat_store: ChatStore = Depends(get_chat_store),  # noqa: B008
    config_manager: ConfigManager = Depends(get_config_manager),  # noqa: B008
    settings: Settings = Depends(get_config),  # noqa: B008
) -> StreamingResponse:
    """Stream a chat turn back in the data-stream format."""
    chat_id = body.chat_id or str(uuid.uuid4())
    cancel_signal = asyncio.Event()

    try:
        default_endpoints = config_manager.get_default_endpoints()
        tool_selection = config_manager.get_tool_selection()
    except ValueError as e:
        logger.error(f"Failed to load gateway configuration: {e}")
        raise HTTPException(status_code=500, detail="Invalid gateway configuration")

    try:
        lifecycle = ChatLifecycle(
            body,
            executor,
            conversation_id=chat_id,
            selector=ToolSelector(tool_selection),
            chat_store=chat_store,
            default_endpoints=default_endpoints,
            cancel_signal=cancel_signal,
            settings=settings,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    logger.info(f"Chat {chat_id}: model={lifecycle.model.id}, endpoints={len(lifecycle.endpoints)}")

    async def stream_body() -> AsyncIterator[str]:
        watcher = asyncio.create_task(watch_disconnect(request, cancel_signal))
        events = lifecycle.stream()
        if settings.smooth_stream_delay_ms > 0:
            events = smooth_stream(events, delay_ms=settings.smooth_stream_delay_ms)
        try:
            async for event in events:
                line = encode_event(event)
                if line:
                    yield line
        finally:
            watcher.cancel()
            # Connections must be released even while the response task is cancelled
            with anyio.CancelScope(shield=True):
                await events.aclose()

    return StreamingResponse(
        stream_body(),
        media_type="text/plain; charset=utf-8",
        headers={"X-Chat-ID": chat_id, "x-vercel-ai-data-stream": "v1"},
    )


@router.get("/models", response_model=ModelsResponse, operation_id="list_models")
async def list_models() -> ModelsResponse:
    """List the chat models this gateway serves."""
    return ModelsResponse(models=list(MODEL_CATALOG.values()))
