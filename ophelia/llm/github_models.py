"""
GitHub Models provider implementation.

WHAT: Azure-hosted inference endpoint used by GitHub Models
WHY: Same SSE format as OpenAI but different auth header and delivery cadence
HOW: api-key header, system prompt inlined, coalescing SSE parser
"""

from .parsers import SSEJSONParser, StreamParser
from .provider import StreamingHTTPProvider
from .retry import RetryPolicy
from .types import ChatMessage
from ..core.config import settings
from ..utils.logger import get_logger, mask_api_key

logger = get_logger(__name__)

# Pending text is released once it exceeds this many characters
COALESCE_CHARS = 10


class GitHubModelsProvider(StreamingHTTPProvider):
    """GitHub Models / Azure AI inference chat provider."""

    name = "github_model"
    display_name = "GitHub Model"
    system_prompt_placement = "inline"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        max_tokens: int | None = None,
        api_version: str | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ):
        super().__init__(
            api_key,
            base_url=base_url or settings.GITHUB_MODELS_ENDPOINT,
            retry_policy=retry_policy,
            **kwargs,
        )
        self.max_tokens = max_tokens or settings.GITHUB_MODELS_MAX_TOKENS
        self.api_version = api_version
        logger.info(f"GitHub Models provider initialized ({self.base_url}, token: {mask_api_key(self.api_key)})")

    def endpoint_url(self) -> str:
        url = f"{self.base_url}/chat/completions"
        if self.api_version:
            # Azure OpenAI deployments require an explicit api-version
            url = f"{url}?api-version={self.api_version}"
        return url

    def build_headers(self) -> dict[str, str]:
        return {
            "api-key": self.api_key,
            "Content-Type": "application/json",
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
            "messages": request_messages,
            "stream": True,
            "max_tokens": self.max_tokens,
            "model": model,
        }

    def create_parser(self) -> StreamParser:
        return SSEJSONParser(coalesce_chars=COALESCE_CHARS)
