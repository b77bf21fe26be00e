"""
Streaming provider types, dataclasses, and exceptions.

WHAT: Standard type definitions shared by every chat provider
WHY: Ensure consistent contracts across all wire formats
HOW: TypedDict for payload entries, dataclasses for deltas/outcomes, one error type
"""

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict, Literal, Union


Role = Literal["system", "user", "assistant"]

# Wire-ready {role, content} pair; a ConversationPayload is a list of these
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Role, "content": str}
)


@dataclass(frozen=True)
class TextDelta:
    """Incremental fragment of assistant output, in arrival order."""
    text: str
    index: int


class ErrorKind(str, Enum):
    """Closed set of semantic failure kinds."""
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    BAD_REQUEST = "bad_request"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE_SHAPE = "invalid_response_shape"
    CANCELLED = "cancelled"


class ProviderError(Exception):
    """A provider request failed with a classified ErrorKind."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(self.description)

    @property
    def description(self) -> str:
        if self.kind is ErrorKind.INVALID_CREDENTIAL:
            return "Invalid or missing API key"
        if self.kind is ErrorKind.RATE_LIMITED:
            return "Rate limit exceeded. Please try again later"
        if self.kind is ErrorKind.BAD_REQUEST:
            return f"Invalid request: {self.detail or 'Bad request'}"
        if self.kind is ErrorKind.SERVER_ERROR:
            return f"Server error: {self.detail or 'unexpected response'}"
        if self.kind is ErrorKind.NETWORK_ERROR:
            return f"Network error: {self.detail or 'connection failed'}"
        if self.kind is ErrorKind.INVALID_RESPONSE_SHAPE:
            return "Invalid response from server"
        return "Request was cancelled"

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, detail={self.detail!r})"


@dataclass(frozen=True)
class Completed:
    """Stream finished normally."""
    full_text: str


@dataclass(frozen=True)
class Failed:
    """Stream failed with a terminal error."""
    error: ProviderError

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


@dataclass(frozen=True)
class Cancelled:
    """Stream was stopped by the caller; partial text was kept."""
    partial_text: str = ""


StreamOutcome = Union[Completed, Failed, Cancelled]
