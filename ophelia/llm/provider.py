"""
Chat provider protocol and shared streaming implementation.

WHAT: Uniform streaming contract plus the HTTP plumbing every adapter shares
WHY: Decouple the turn pipeline from the four provider wire formats
HOW: Protocol for callers; base class owning handshake, retry, and read loop
"""

from contextlib import aclosing
from typing import AsyncIterator, Literal, Protocol

import httpx

from .cancellation import CancellationToken
from .error_classifier import classify_exception, classify_status
from .parsers import StreamParser, parse_lines
from .retry import RetryPolicy
from .types import ChatMessage, ErrorKind, ProviderError, TextDelta
from ..core.config import settings
from ..utils.logger import get_logger, redact_payload

logger = get_logger(__name__)

# Max bytes of a non-200 body kept for diagnostics
ERROR_BODY_LIMIT = 4096

SystemPromptPlacement = Literal["inline", "separate"]


class ChatProvider(Protocol):
    """Protocol defining the interface all chat providers must implement."""

    name: str
    system_prompt_placement: SystemPromptPlacement

    def stream_completion(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[TextDelta]:
        """Stream assistant text deltas for the given payload."""
        ...


class StreamingHTTPProvider:
    """
    Base class for providers that stream over a single POST.

    Subclasses supply the endpoint, headers, request body, and parser.
    """

    name = "provider"
    display_name = "Provider"
    requires_credential = True
    system_prompt_placement: SystemPromptPlacement = "inline"

    def __init__(
        self,
        api_key: str = "",
        *,
        base_url: str,
        retry_policy: RetryPolicy | None = None,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout or httpx.Timeout(
            settings.LLM_CONNECT_TIMEOUT,
            read=settings.LLM_READ_TIMEOUT,
        )
        self.transport = transport

    # Subclass hooks

    def endpoint_url(self) -> str:
        raise NotImplementedError

    def build_headers(self) -> dict[str, str]:
        raise NotImplementedError

    def build_request_body(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None,
    ) -> dict:
        raise NotImplementedError

    def create_parser(self) -> StreamParser:
        raise NotImplementedError

    def classify_handshake(self, status_code: int, body: str) -> ProviderError | None:
        """Classify a non-streaming status; subclasses may special-case codes."""
        return classify_status(status_code, body)

    # Shared implementation

    def check_preconditions(self) -> None:
        """Raise before any network call if the adapter cannot be used."""
        if self.requires_credential and not self.api_key:
            raise ProviderError(ErrorKind.INVALID_CREDENTIAL)

    async def _open_stream(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
    ) -> httpx.Response:
        """One connection attempt: send, classify the status, keep the body open."""
        response = await client.send(request, stream=True)
        logger.debug(f"{self.display_name} HTTP status: {response.status_code}")

        if response.status_code == 200:
            return response

        try:
            raw = await response.aread()
            body = raw[:ERROR_BODY_LIMIT].decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()

        logger.warning(f"{self.display_name} non-200 response {response.status_code}: {body[:500]}")
        raise self.classify_handshake(response.status_code, body)

    async def stream_completion(
        self,
        messages: list[ChatMessage],
        model: str,
        system_prompt: str | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[TextDelta]:
        """
        Stream the assistant response as text deltas.

        Args:
            messages: Wire-ready conversation payload
            model: Provider model identifier
            system_prompt: Used by providers with separate placement
            cancel_token: Stops reading between lines when cancelled

        Yields:
            TextDelta for each fragment, in arrival order; the iterator simply
            ends on completion or cancellation

        Raises:
            ProviderError: Handshake failure after retries, or a transport error
                while reading the body
        """
        self.check_preconditions()
        token = cancel_token or CancellationToken()

        url = self.endpoint_url()
        body = self.build_request_body(messages, model, system_prompt)
        headers = self.build_headers()
        logger.info(f"{self.display_name} streaming request: {url} (model: {model}, messages: {len(messages)})")
        logger.debug(f"{self.display_name} request body: {redact_payload(body)}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            request = client.build_request("POST", url, json=body, headers=headers)

            try:
                response = await self.retry_policy.run(
                    lambda: self._open_stream(client, request),
                    cancel_token=token,
                    label=f"{self.display_name} request",
                )
            except ProviderError as e:
                if e.kind is ErrorKind.CANCELLED:
                    logger.info(f"{self.display_name} request cancelled before streaming")
                    return
                raise

            parser = self.create_parser()
            index = 0
            try:
                texts = parse_lines(parser, response.aiter_lines(), cancel_token=token)
                async with aclosing(texts):
                    async for text in texts:
                        yield TextDelta(text=text, index=index)
                        index += 1

                if token.is_cancelled and not parser.done:
                    logger.info(f"{self.display_name} stream cancelled after {index} deltas")
                    return

                logger.info(
                    f"{self.display_name} stream completed ({index} deltas, {parser.anomalies} skipped lines)"
                )
            except httpx.HTTPError as e:
                if token.is_cancelled:
                    logger.info(f"{self.display_name} stream interrupted by cancellation")
                    return
                error = classify_exception(e)
                logger.error(f"{self.display_name} stream error after {index} deltas: {error.description}")
                raise error from e
            finally:
                await response.aclose()


async def collect_completion(
    provider: ChatProvider,
    messages: list[ChatMessage],
    model: str,
    system_prompt: str | None = None,
    *,
    cancel_token: CancellationToken | None = None,
) -> str:
    """Drain a provider stream into the full response text."""
    parts: list[str] = []
    async for delta in provider.stream_completion(
        messages, model, system_prompt, cancel_token=cancel_token
    ):
        parts.append(delta.text)
    return "".join(parts)
