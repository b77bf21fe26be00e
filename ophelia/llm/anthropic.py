"""
Anthropic provider implementation.

WHAT: Messages API streaming with typed server-sent events
WHY: Anthropic takes the system prompt as a top-level field, not a message
HOW: x-api-key/anthropic-version headers, system entries lifted out of the list
"""

from .parsers import AnthropicEventParser, StreamParser
from .provider import StreamingHTTPProvider
from .retry import RetryPolicy
from .types import ChatMessage
from ..core.config import settings
from ..utils.logger import get_logger, mask_api_key

logger = get_logger(__name__)


class AnthropicProvider(StreamingHTTPProvider):
    """Anthropic Messages API provider."""

    name = "anthropic"
    display_name = "Anthropic"
    system_prompt_placement = "separate"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        api_version: str | None = None,
        max_tokens: int | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ):
        super().__init__(
            api_key,
            base_url=base_url or settings.ANTHROPIC_BASE_URL,
            retry_policy=retry_policy,
            **kwargs,
        )
        self.api_version = api_version or settings.ANTHROPIC_VERSION
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        logger.info(f"Anthropic provider initialized ({self.base_url}, API key: {mask_api_key(self.api_key)})")

    def endpoint_url(self) -> str:
        return f"{self.base_url}/messages"

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def build_request_body(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None,
    ) -> dict:
        system_parts: list[str] = []
        if system_prompt:
            system_parts.append(system_prompt)

        anthropic_messages: list[ChatMessage] = []
        for message in messages:
            if message["role"] == "system":
                # No system role in the list; lift it into the top-level field
                system_parts.append(message["content"])
                continue
            role = "user" if message["role"] == "user" else "assistant"
            anthropic_messages.append({"role": role, "content": message["content"]})

        body = {
            "model": model,
            "messages": anthropic_messages,
            "stream": True,
            "max_tokens": self.max_tokens,
        }
        system = "\n\n".join(part for part in system_parts if part)
        if system:
            body["system"] = system
        return body

    def create_parser(self) -> StreamParser:
        return AnthropicEventParser()
