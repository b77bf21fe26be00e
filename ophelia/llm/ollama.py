"""
Ollama provider implementation.

WHAT: Local inference via an Ollama server's /api/chat endpoint
WHY: Credential-free local models; response shape varies across server versions
HOW: Normalized base URL, system prompt sent twice, NDJSON parsing
"""

import httpx

from .parsers import NDJSONParser, StreamParser
from .provider import StreamingHTTPProvider
from .retry import RetryPolicy
from .types import ChatMessage, ErrorKind, ProviderError
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def normalize_server_url(server_url: str | None) -> str:
    """
    Clean up a user-entered Ollama server URL.

    Collapses repeated schemes ("http://http://host"), forces http/https,
    adds http:// when no scheme is given, and strips trailing slashes.
    Falls back to localhost when nothing usable remains.
    """
    url = (server_url or "").strip()
    if not url:
        return DEFAULT_OLLAMA_URL

    if "://" in url:
        parts = url.split("://")
        scheme = parts[0].lower()
        host = parts[-1]
        if scheme not in ("http", "https"):
            scheme = "http"
        url = f"{scheme}://{host}"
    else:
        url = f"http://{url}"

    url = url.rstrip("/")

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        logger.warning(f"Could not parse Ollama URL {url!r}, falling back to {DEFAULT_OLLAMA_URL}")
        return DEFAULT_OLLAMA_URL
    if not parsed.host:
        logger.warning(f"Ollama URL {url!r} has no host, falling back to {DEFAULT_OLLAMA_URL}")
        return DEFAULT_OLLAMA_URL
    return url


class OllamaProvider(StreamingHTTPProvider):
    """Ollama chat provider (no credential required)."""

    name = "ollama"
    display_name = "Ollama"
    requires_credential = False
    system_prompt_placement = "separate"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ):
        self.server_url = (base_url or settings.OLLAMA_BASE_URL).strip()
        read_timeout = timeout or settings.OLLAMA_TIMEOUT
        kwargs.setdefault("timeout", httpx.Timeout(settings.LLM_CONNECT_TIMEOUT, read=read_timeout))
        super().__init__(
            "",
            base_url=normalize_server_url(self.server_url),
            retry_policy=retry_policy,
            **kwargs,
        )
        logger.info(f"Ollama provider initialized with base URL: {self.base_url}")

    def check_preconditions(self) -> None:
        if not self.base_url:
            raise ProviderError(ErrorKind.BAD_REQUEST, "Invalid Ollama server URL")

    def endpoint_url(self) -> str:
        return f"{self.base_url}/api/chat"

    def build_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_request_body(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None,
    ) -> dict:
        ollama_messages: list[ChatMessage] = []
        if system_prompt:
            ollama_messages.append({"role": "system", "content": system_prompt})

        for message in messages:
            if not message.get("content"):
                continue
            ollama_messages.append({
                "role": message.get("role") or "user",
                "content": message["content"],
            })

        body = {
            "model": model,
            "messages": ollama_messages,
            "stream": True,
        }
        # Also sent as options.system; older servers only honour one of the two
        if system_prompt:
            body["options"] = {"system": system_prompt}
        return body

    def classify_handshake(self, status_code: int, body: str) -> ProviderError | None:
        if status_code == 404:
            return ProviderError(
                ErrorKind.SERVER_ERROR,
                f"404 Not Found - Possibly Ollama is not running or incorrect URL: {self.server_url}",
            )
        return super().classify_handshake(status_code, body)

    def create_parser(self) -> StreamParser:
        return NDJSONParser()
