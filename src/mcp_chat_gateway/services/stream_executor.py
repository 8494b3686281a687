"""Retry-with-backoff around opening a model stream."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, Protocol

from .error_handler import is_rate_limit
from .llm_client import StreamConfig, StreamHandle

logger = logging.getLogger(__name__)

# Checked in order; the first present header wins
RESET_HEADERS = ("retry-after", "anthropic-ratelimit-input-tokens-reset")
MIN_RESET_WAIT_MS = 1000


class StreamProvider(Protocol):
    async def open_stream(self, config: StreamConfig) -> StreamHandle: ...


@dataclass
class RetryState:
    """Bookkeeping for one retry decision."""
    attempt: int
    wait_ms: int
    cause: str


def _parse_timestamp(value: str) -> Optional[float]:
    """Parse an ISO-8601 or HTTP-date reset time into epoch seconds."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None


def compute_wait_ms(error: BaseException, attempt: int, now: float) -> int:
    """Milliseconds to wait before retrying after a rate-limit failure.

    Absolute reset time: at least one second until the reset. Wait duration in
    seconds: that duration. Otherwise 2^attempt seconds, without jitter.
    """
    headers = getattr(error, "headers", None) or {}
    reset = next((headers[name] for name in RESET_HEADERS if headers.get(name)), None)
    if reset:
        value = str(reset).strip()
        try:
            return max(int(float(value) * 1000), 0)
        except (ValueError, OverflowError):
            timestamp = _parse_timestamp(value)
            if timestamp is not None:
                return max(int((timestamp - now) * 1000), MIN_RESET_WAIT_MS)
            logger.debug(f"Unparseable rate-limit reset header: {value}")
    return (2 ** attempt) * 1000


class ResilientStreamExecutor:
    """Opens model streams, retrying throttled attempts up to a fixed bound."""

    def __init__(self, provider: StreamProvider, max_attempts: int = 3,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.time):
        self.provider = provider
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock

    async def execute(self, config: StreamConfig) -> StreamHandle:
        """Open a stream for the given config.

        Non-rate-limit failures propagate immediately. When attempts run out the
        last rate-limit failure is re-raised unchanged; no other model is tried.
        """
        attempt = 1
        while True:
            try:
                return await self.provider.open_stream(config)
            except Exception as e:
                if not is_rate_limit(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(f"Rate limit persisted after {attempt} attempts, giving up")
                    raise
                state = RetryState(
                    attempt=attempt,
                    wait_ms=compute_wait_ms(e, attempt, self._clock()),
                    cause=getattr(e, "error_code", type(e).__name__),
                )
                logger.warning(
                    f"Rate limit hit ({state.cause}), retrying in {state.wait_ms}ms "
                    f"(attempt {state.attempt}/{self.max_attempts})"
                )
                await self._sleep(state.wait_ms / 1000)
                attempt += 1
