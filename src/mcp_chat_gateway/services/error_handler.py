"""Error taxonomy and caller-facing error messages for the chat gateway."""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = (
    "Rate limit exceeded. The system automatically retried but the model provider "
    "is still throttling requests. Please wait a moment and try again."
)
TIMEOUT_MESSAGE = "Request timeout. Please try a simpler question or try again later."
NETWORK_MESSAGE = "Network error. Please check your connection and try again."
GENERIC_MESSAGE = "An error occurred. Please try again."

# Substrings identifying a provider-side response schema validation failure
SCHEMA_VALIDATION_MARKERS = (
    "validation failed",
    "invalid structured content",
    "output validation error",
)


class GatewayError(Exception):
    """Base exception class for chat gateway errors."""
    def __init__(self, message: str, error_code: str = "GATEWAY_ERROR", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(GatewayError):
    """Exception for configuration-related errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class EndpointConnectionError(GatewayError):
    """Exception for tool-provider connection errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONNECTION_ERROR", details)


class ProviderError(GatewayError):
    """Non-success response from the model provider."""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        error_code: str = "PROVIDER_ERROR",
    ):
        self.status_code = status_code
        # Header names are case-insensitive; normalize once
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        super().__init__(message, error_code, {"status_code": status_code})


class RateLimitError(ProviderError):
    """Provider signalled throttling (HTTP 429 or a rate_limit_error event)."""
    def __init__(self, message: str, status_code: Optional[int] = 429, headers: Optional[Mapping[str, str]] = None):
        super().__init__(message, status_code, headers, "RATE_LIMIT")


def is_rate_limit(error: BaseException) -> bool:
    return isinstance(error, RateLimitError) or getattr(error, "status_code", None) == 429


def is_schema_validation_message(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in SCHEMA_VALIDATION_MARKERS)


def is_schema_validation_error(error: BaseException) -> bool:
    """Check whether a tool failure is a response-schema validation failure."""
    return is_schema_validation_message(str(error))


def user_facing_message(error: BaseException) -> str:
    """Map a fatal failure to a human-readable message instead of raw provider text."""
    message = str(error).lower()
    if is_rate_limit(error) or "rate limit" in message:
        return RATE_LIMIT_MESSAGE
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)) or "timeout" in message:
        return TIMEOUT_MESSAGE
    if isinstance(error, (httpx.NetworkError, OSError)) or "network" in message or "fetch" in message:
        return NETWORK_MESSAGE
    logger.error(f"Unclassified chat error: {type(error).__name__}: {error}")
    return GENERIC_MESSAGE
