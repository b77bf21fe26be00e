"""Streaming chat provider layer."""

from .types import (
    ChatMessage,
    TextDelta,
    ErrorKind,
    ProviderError,
    Completed,
    Failed,
    Cancelled,
    StreamOutcome,
)
from .cancellation import CancellationToken
from .error_classifier import classify_status, classify_exception, is_transient, user_message
from .retry import RetryPolicy, RetryState
from .parsers import SSEJSONParser, AnthropicEventParser, NDJSONParser
from .provider import ChatProvider, StreamingHTTPProvider, collect_completion
from .provider_factory import create_provider, get_provider, reset_provider
from .streaming_handler import TokenAggregator

__all__ = [
    "ChatMessage",
    "TextDelta",
    "ErrorKind",
    "ProviderError",
    "Completed",
    "Failed",
    "Cancelled",
    "StreamOutcome",
    "CancellationToken",
    "classify_status",
    "classify_exception",
    "is_transient",
    "user_message",
    "RetryPolicy",
    "RetryState",
    "SSEJSONParser",
    "AnthropicEventParser",
    "NDJSONParser",
    "ChatProvider",
    "StreamingHTTPProvider",
    "collect_completion",
    "create_provider",
    "get_provider",
    "reset_provider",
    "TokenAggregator",
]
