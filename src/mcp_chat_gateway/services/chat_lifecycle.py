"""Per-request orchestration: tools, selection, streaming and exactly-once cleanup."""

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import anyio

from ..config import Settings, get_config
from ..models.chat import ChatRequest, Finish, StreamError, StreamEvent
from ..models.config import MODEL_CATALOG, EndpointConfig, ModelInfo
from ..models.tool import ToolSpec
from .chat_store import ChatStore, InMemoryChatStore
from .error_handler import ConfigurationError
from .llm_client import StreamConfig, StreamHandle, to_provider_messages
from .mcp_client_manager import ConnectFn, ToolRegistry
from .stream_executor import ResilientStreamExecutor
from .tool_selector import ToolSelector

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_PROMPT = """You are a helpful assistant with access to a variety of tools.

Today's date is {today}.

The tools are very powerful, and you can use them to answer the user's question.
So choose the tool that is most relevant to the user's question.

If tools are not available, say you don't know or if the user wants a tool they can add one from the server settings.

You can use multiple tools in a single response.
Always respond after using the tools for better user experience.
Make sure to use the right tool to respond to the user's question.

## Response Format
- Markdown is supported.
- Respond according to tool's response.
- If you don't know the answer, use the tools to find the answer or say you don't know.
"""


class LifecycleState(str, Enum):
    INITIALIZING = "initializing"
    TOOLS_READY = "tools_ready"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class CompletionGate:
    """Runs exactly one terminal action, whichever trigger arrives first.

    Later callers do not run their action; they wait until the winning action
    has finished, so they observe cleanup as already done. The action runs
    shielded, so cancelling the caller cannot interrupt it halfway.
    """

    def __init__(self) -> None:
        self._fired = False
        self._done = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._fired

    async def fire_once(self, action: Callable[[], Awaitable[None]]) -> bool:
        if self._fired:
            await self._done.wait()
            return False
        # No await between the check and the set
        self._fired = True
        try:
            with anyio.CancelScope(shield=True):
                await action()
        finally:
            self._done.set()
        return True


def resolve_model(model_id: str) -> ModelInfo:
    """Look up a public model id in the catalog."""
    model = MODEL_CATALOG.get(model_id)
    if model is None:
        raise ConfigurationError(f"Unknown model: {model_id}", {"available": list(MODEL_CATALOG)})
    return model


class ChatLifecycle:
    """Drives one chat request from tool discovery to connection release.

    States: initializing -> tools_ready -> streaming -> completed | aborted | failed.
    Completion and cancellation race; the CompletionGate makes sure connections
    are released exactly once.
    """

    def __init__(
        self,
        request: ChatRequest,
        executor: ResilientStreamExecutor,
        conversation_id: str,
        selector: Optional[ToolSelector] = None,
        chat_store: Optional[ChatStore] = None,
        default_endpoints: Optional[List[EndpointConfig]] = None,
        connect: Optional[ConnectFn] = None,
        cancel_signal: Optional[asyncio.Event] = None,
        settings: Optional[Settings] = None,
    ):
        self.request = request
        self.executor = executor
        self.conversation_id = conversation_id
        self.selector = selector or ToolSelector()
        self.chat_store = chat_store or InMemoryChatStore()
        self.settings = settings or get_config()
        self.model = resolve_model(request.selected_model or self.settings.default_model)
        self.endpoints = list(default_endpoints or []) + list(request.mcp_servers)
        self.cancel_signal = cancel_signal or asyncio.Event()
        self.state = LifecycleState.INITIALIZING
        self.registry: Optional[ToolRegistry] = None
        self.selected_tools: List[str] = []
        self.handle: Optional[StreamHandle] = None
        self.error: Optional[BaseException] = None
        self._connect = connect
        self._gate = CompletionGate()

    @property
    def finished(self) -> bool:
        return self._gate.fired

    def build_stream_config(self, tools: Dict[str, ToolSpec]) -> StreamConfig:
        system, messages = to_provider_messages(self.request.messages)
        prompt = SYSTEM_PROMPT.format(today=date.today().isoformat())
        return StreamConfig(
            model=self.model.api_version,
            messages=messages,
            tools=tools,
            system=f"{prompt}\n{system}" if system else prompt,
            max_tokens=self.settings.max_output_tokens,
            max_steps=self.settings.max_steps,
            thinking_budget=self.model.thinking_budget,
        )

    async def stream(self) -> AsyncIterator[StreamEvent]:
        """Run the request, yielding model events in provider order."""
        try:
            # Assigned before connecting so a cancelled build is still released
            self.registry = ToolRegistry()
            await self.registry.populate(
                self.endpoints,
                connect=self._connect,
                timeout=self.settings.connection_timeout,
                stop=self.cancel_signal,
            )
            if self.cancel_signal.is_set():
                logger.info("Request aborted while connecting, cleaning up resources")
                await self.abort()
                return
            self.state = LifecycleState.TOOLS_READY

            self.selected_tools = self.selector.select(self.registry, self.request.latest_user_message())
            config = self.build_stream_config(self.registry.subset(self.selected_tools))

            self.state = LifecycleState.STREAMING
            try:
                cancelled, self.handle = await self._unless_cancelled(self.executor.execute(config))
            except Exception as e:
                logger.error(f"Chat API error: {type(e).__name__}: {e}")
                await self.fail(e)
                yield StreamError(e)
                return
            if cancelled:
                logger.info("Request aborted while opening the model stream, cleaning up resources")
                await self.abort()
                return

            events = aiter(self.handle)
            while True:
                try:
                    cancelled, event = await self._unless_cancelled(self._next(events))
                except Exception as e:
                    cancelled, event = False, StreamError(e)
                if cancelled:
                    logger.info("Request aborted, cleaning up resources")
                    await self.abort()
                    return
                if event is None:
                    break

                if isinstance(event, StreamError):
                    logger.error(f"Chat API error: {type(event.error).__name__}: {event.error}")
                    await self.fail(event.error)
                    yield event
                    return
                if isinstance(event, Finish):
                    await self.complete()
                    yield event
                    return
                yield event

            # Stream ended without a finish event
            await self.complete()
        finally:
            if not self._gate.fired:
                await self.abort()

    async def _unless_cancelled(self, step: Awaitable[T]) -> Tuple[bool, Optional[T]]:
        """Run one step, giving up as soon as the cancellation signal fires.

        Returns ``(cancelled, result)``. A result that arrived together with the
        cancellation is still returned so the caller can close it.
        """
        task = asyncio.ensure_future(step)
        cancel_wait = asyncio.ensure_future(self.cancel_signal.wait())
        try:
            await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_wait.cancel()
            if not task.done():
                with anyio.CancelScope(shield=True):
                    await self._discard(task)

        if self.cancel_signal.is_set():
            if not task.cancelled() and task.exception() is None:
                return True, task.result()
            return True, None
        return False, task.result()

    @staticmethod
    async def _next(events: AsyncIterator[StreamEvent]) -> Optional[StreamEvent]:
        try:
            return await events.__anext__()
        except StopAsyncIteration:
            return None

    @staticmethod
    async def _discard(pending: "asyncio.Future[Any]") -> None:
        """Cancel an in-flight step; its failure after cancellation is not reported."""
        pending.cancel()
        try:
            await pending
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"In-flight step failed after cancellation: {e}")

    async def complete(self) -> bool:
        """Finish normally: save the conversation, then release connections."""
        return await self._gate.fire_once(self._on_complete)

    async def abort(self) -> bool:
        """Finish because the caller went away: release connections."""
        return await self._gate.fire_once(self._on_abort)

    async def fail(self, error: BaseException) -> bool:
        """Finish because of a fatal error: release connections."""
        async def on_fail() -> None:
            self.state = LifecycleState.FAILED
            self.error = error
            await self._release()
        return await self._gate.fire_once(on_fail)

    async def _on_complete(self) -> None:
        self.state = LifecycleState.COMPLETED
        try:
            await self.chat_store.save(self.conversation_id, self.all_messages())
        except Exception as e:
            logger.error(f"Error saving chat {self.conversation_id}: {e}")
        finally:
            await self._release()

    async def _on_abort(self) -> None:
        self.state = LifecycleState.ABORTED
        await self._release()

    async def _release(self) -> None:
        if self.handle is not None:
            try:
                await self.handle.aclose()
            except Exception as e:
                logger.debug(f"Error closing model stream: {e}")
        if self.registry is not None:
            await self.registry.release()

    def all_messages(self) -> List[Dict[str, Any]]:
        """Request messages followed by the messages produced in this turn."""
        messages = [message.model_dump(exclude_none=True) for message in self.request.messages]
        if self.handle is not None:
            messages.extend(self.handle.response_messages)
        return messages
