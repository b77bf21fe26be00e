"""
OpenAI provider implementation.

WHAT: Chat Completions streaming against api.openai.com (or any compatible server)
WHY: Primary cloud provider
HOW: Bearer auth, system prompt inlined as the first message, SSE-JSON parsing
"""

from .parsers import SSEJSONParser, StreamParser
from .provider import StreamingHTTPProvider
from .retry import RetryPolicy
from .types import ChatMessage
from ..core.config import settings
from ..utils.logger import get_logger, mask_api_key

logger = get_logger(__name__)


class OpenAIProvider(StreamingHTTPProvider):
    """OpenAI-compatible chat completions provider."""

    name = "openai"
    display_name = "OpenAI"
    system_prompt_placement = "inline"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ):
        super().__init__(
            api_key,
            base_url=base_url or settings.OPENAI_BASE_URL,
            retry_policy=retry_policy,
            **kwargs,
        )
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.temperature = temperature if temperature is not None else settings.OPENAI_TEMPERATURE
        logger.info(f"OpenAI provider initialized ({self.base_url}, API key: {mask_api_key(self.api_key)})")

    def endpoint_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def build_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def build_request_body(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None,
    ) -> dict:
        request_messages: list[ChatMessage] = []
        if system_prompt:
            request_messages.append({"role": "system", "content": system_prompt})
        request_messages.extend(
            {"role": m["role"], "content": m["content"]} for m in messages
        )
        return {
            "model": model,
            "messages": request_messages,
            "stream": True,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    def create_parser(self) -> StreamParser:
        return SSEJSONParser()
