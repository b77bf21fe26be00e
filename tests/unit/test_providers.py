"""
Unit tests for the provider adapters.

WHAT: Test request construction, streaming, status mapping, and cancellation per provider
WHY: Each adapter must hide its wire format behind the same delta stream
HOW: Mock HTTP with respx, drain stream_completion, inspect the recorded request
"""

import json

import httpx
import pytest
import respx

from ophelia.llm.anthropic import AnthropicProvider
from ophelia.llm.cancellation import CancellationToken
from ophelia.llm.github_models import GitHubModelsProvider
from ophelia.llm.ollama import DEFAULT_OLLAMA_URL, OllamaProvider, normalize_server_url
from ophelia.llm.openai import OpenAIProvider
from ophelia.llm.provider import collect_completion
from ophelia.llm.types import ErrorKind, ProviderError
from tests.fixtures.wire_samples import (
    ANTHROPIC_SSE_BODY,
    OLLAMA_NDJSON_BODY,
    OPENAI_SSE_BODY,
)

OPENAI_URL = "https://api.openai.test/v1"
ANTHROPIC_URL = "https://api.anthropic.test/v1"
GITHUB_URL = "https://models.github.test"
OLLAMA_URL = "http://ollama.test:11434"

USER_HI = [{"role": "user", "content": "Hi"}]


def sse_stream(*contents: str) -> str:
    lines = [
        f"data: {json.dumps({'choices': [{'delta': {'content': c}}]})}\n\n"
        for c in contents
    ]
    return "".join(lines) + "data: [DONE]\n\n"


async def drain(provider, messages=USER_HI, model="test-model", system_prompt=None, token=None):
    return [
        delta async for delta in provider.stream_completion(
            messages, model, system_prompt, cancel_token=token
        )
    ]


def sent_json(route) -> dict:
    return json.loads(route.calls.last.request.content)


@pytest.mark.unit
@pytest.mark.streaming
class TestOpenAIProvider:
    """Test OpenAI chat completions streaming."""

    @pytest.fixture
    def provider(self, fast_retry):
        return OpenAIProvider("sk-test-key-1234", base_url=OPENAI_URL, retry_policy=fast_retry)

    @pytest.mark.asyncio
    @respx.mock
    async def test_single_delta_scenario(self, provider):
        """Test one delta then [DONE] yields exactly 'Hi'."""
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(
                200,
                text='data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n',
            )
        )

        deltas = await drain(provider)

        assert [d.text for d in deltas] == ["Hi"]
        assert deltas[0].index == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_reconstructs_text(self, provider):
        """Test concatenated deltas equal the streamed response."""
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=OPENAI_SSE_BODY)
        )

        text = await collect_completion(provider, USER_HI, "test-model")

        assert text == "Hello world"

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_shape(self, provider):
        """Test headers and body follow the chat completions format."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("ok"))
        )

        await drain(provider, system_prompt="Be brief.")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer sk-test-key-1234"
        body = sent_json(route)
        assert body["model"] == "test-model"
        assert body["stream"] is True
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][1] == {"role": "user", "content": "Hi"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_line_does_not_abort(self, provider):
        """Test a garbage line in the middle of the stream is skipped."""
        body = (
            'data: {"choices":[{"delta":{"content":"a"}}]}\n\n'
            "data: {not json\n\n"
            'data: {"choices":[{"delta":{"content":"b"}}]}\n\n'
            "data: [DONE]\n\n"
        )
        respx.post(f"{OPENAI_URL}/chat/completions").mock(return_value=httpx.Response(200, text=body))

        deltas = await drain(provider)

        assert [d.text for d in deltas] == ["a", "b"]
        assert [d.index for d in deltas] == [0, 1]

    @pytest.mark.asyncio
    @respx.mock
    async def test_401_fails_without_retry(self, provider):
        """Test 401 maps to invalid credential after a single attempt."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(401, json={"error": {"message": "bad key"}})
        )

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIAL
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_400_keeps_server_message(self, provider):
        """Test 400 surfaces the server's explanation without retrying."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(400, text="max_tokens is too large")
        )

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert exc_info.value.kind is ErrorKind.BAD_REQUEST
        assert "max_tokens is too large" in exc_info.value.detail
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_429_retries_then_exhausts(self, provider):
        """Test persistent rate limiting surfaces the retry-exhausted error."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(429, text="slow down")
        )

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert route.call_count == 3
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
        assert exc_info.value.detail == "failed after 3 retries"

    @pytest.mark.asyncio
    @respx.mock
    async def test_500_retries_then_succeeds(self, provider):
        """Test transient server errors are retried on the handshake."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            side_effect=[
                httpx.Response(500, text="Server error"),
                httpx.Response(503, text="Unavailable"),
                httpx.Response(200, text=sse_stream("Success")),
            ]
        )

        deltas = await drain(provider)

        assert [d.text for d in deltas] == ["Success"]
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_connect_error_retried(self, provider):
        """Test connection failures are retried and then reported as network errors."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert route.call_count == 3
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_credential_raises_before_request(self, fast_retry):
        """Test an empty key fails before any network call."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("never"))
        )
        provider = OpenAIProvider("   ", base_url=OPENAI_URL, retry_policy=fast_retry)

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIAL
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancel_mid_stream_stops_reading(self, provider):
        """Test cancellation between lines ends the stream without an error."""
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=OPENAI_SSE_BODY)
        )
        token = CancellationToken()

        received = []
        async for delta in provider.stream_completion(USER_HI, "test-model", cancel_token=token):
            received.append(delta.text)
            token.cancel()

        assert received == ["Hello"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancel_before_handshake_makes_no_request(self, provider):
        """Test an already-cancelled token yields nothing and sends nothing."""
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=OPENAI_SSE_BODY)
        )
        token = CancellationToken()
        token.cancel()

        deltas = await drain(provider, token=token)

        assert deltas == []
        assert not route.called


@pytest.mark.unit
@pytest.mark.streaming
class TestAnthropicProvider:
    """Test Anthropic Messages API streaming."""

    @pytest.fixture
    def provider(self, fast_retry):
        return AnthropicProvider("sk-ant-test-5678", base_url=ANTHROPIC_URL, retry_policy=fast_retry)

    @pytest.mark.asyncio
    @respx.mock
    async def test_typed_event_scenario(self, provider):
        """Test message_start, two deltas, message_stop yields 'AB'."""
        respx.post(f"{ANTHROPIC_URL}/messages").mock(
            return_value=httpx.Response(200, text=ANTHROPIC_SSE_BODY)
        )

        deltas = await drain(provider)

        assert [d.text for d in deltas] == ["A", "B"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_shape(self, provider):
        """Test auth headers and top-level system prompt."""
        route = respx.post(f"{ANTHROPIC_URL}/messages").mock(
            return_value=httpx.Response(200, text=ANTHROPIC_SSE_BODY)
        )
        messages = [
            {"role": "system", "content": "Relevant facts:\n- likes tea"},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
            {"role": "user", "content": "Again"},
        ]

        await drain(provider, messages=messages, system_prompt="Be kind.")

        request = route.calls.last.request
        assert request.headers["x-api-key"] == "sk-ant-test-5678"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in request.headers

        body = sent_json(route)
        assert body["system"] == "Be kind.\n\nRelevant facts:\n- likes tea"
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert body["stream"] is True
        assert body["max_tokens"] > 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_system_field_without_prompt(self, provider):
        """Test the system field is omitted when there is nothing to send."""
        route = respx.post(f"{ANTHROPIC_URL}/messages").mock(
            return_value=httpx.Response(200, text=ANTHROPIC_SSE_BODY)
        )

        await drain(provider)

        assert "system" not in sent_json(route)

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_without_message_delta_completes(self, provider):
        """Test message_stop alone is a successful end of stream."""
        body = (
            'data: {"type":"message_start","message":{}}\n\n'
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"only"}}\n\n'
            'data: {"type":"message_stop"}\n\n'
            'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"late"}}\n\n'
        )
        respx.post(f"{ANTHROPIC_URL}/messages").mock(return_value=httpx.Response(200, text=body))

        assert await collect_completion(provider, USER_HI, "claude") == "only"


@pytest.mark.unit
@pytest.mark.streaming
class TestGitHubModelsProvider:
    """Test GitHub Models (Azure inference) streaming."""

    @pytest.fixture
    def provider(self, fast_retry):
        return GitHubModelsProvider("ghp_test_token_abcd", base_url=GITHUB_URL, retry_policy=fast_retry)

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_key_header(self, provider):
        """Test auth uses the api-key header, not a bearer token."""
        route = respx.post(f"{GITHUB_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("ok."))
        )

        await drain(provider)

        request = route.calls.last.request
        assert request.headers["api-key"] == "ghp_test_token_abcd"
        assert "Authorization" not in request.headers
        assert sent_json(route)["model"] == "test-model"

    @pytest.mark.asyncio
    @respx.mock
    async def test_fragments_are_coalesced(self, provider):
        """Test short fragments are merged and the tail is released at [DONE]."""
        respx.post(f"{GITHUB_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("Hel", "lo", " th", "ere!", " Bye"))
        )

        deltas = await drain(provider)

        assert [d.text for d in deltas] == ["Hello there!", " Bye"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_version_query(self, fast_retry):
        """Test an explicit api-version is passed as a query parameter."""
        route = respx.post(url__startswith=f"{GITHUB_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("ok."))
        )
        provider = GitHubModelsProvider(
            "ghp_test_token_abcd", base_url=GITHUB_URL, api_version="2024-05-01-preview", retry_policy=fast_retry
        )

        await drain(provider)

        assert route.calls.last.request.url.params["api-version"] == "2024-05-01-preview"


@pytest.mark.unit
@pytest.mark.streaming
class TestOllamaProvider:
    """Test Ollama NDJSON streaming."""

    @pytest.fixture
    def provider(self, fast_retry):
        return OllamaProvider(OLLAMA_URL, retry_policy=fast_retry)

    @pytest.mark.asyncio
    @respx.mock
    async def test_ndjson_stream(self, provider):
        """Test NDJSON lines reconstruct the reply and done:true ends it."""
        respx.post(f"{OLLAMA_URL}/api/chat").mock(
            return_value=httpx.Response(200, text=OLLAMA_NDJSON_BODY)
        )

        assert await collect_completion(provider, USER_HI, "llama3.2") == "Hello"

    @pytest.mark.asyncio
    @respx.mock
    async def test_request_shape(self, provider):
        """Test system prompt is sent as first message and as options.system."""
        route = respx.post(f"{OLLAMA_URL}/api/chat").mock(
            return_value=httpx.Response(200, text=OLLAMA_NDJSON_BODY)
        )
        messages = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": ""},
        ]

        await drain(provider, messages=messages, model="llama3.2", system_prompt="Stay local.")

        body = sent_json(route)
        assert body["messages"] == [
            {"role": "system", "content": "Stay local."},
            {"role": "user", "content": "Hi"},
        ]
        assert body["options"] == {"system": "Stay local."}
        assert body["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_credential_needed(self, provider):
        """Test Ollama streams without any API key."""
        respx.post(f"{OLLAMA_URL}/api/chat").mock(
            return_value=httpx.Response(200, text=OLLAMA_NDJSON_BODY)
        )

        deltas = await drain(provider)

        assert len(deltas) == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_404_explains_server_url(self, provider):
        """Test 404 is retried like any server error and keeps its explanation."""
        route = respx.post(f"{OLLAMA_URL}/api/chat").mock(
            return_value=httpx.Response(404, text="page not found")
        )

        with pytest.raises(ProviderError) as exc_info:
            await drain(provider)

        assert route.call_count == 3
        assert exc_info.value.detail == "failed after 3 retries"
        cause = exc_info.value.__cause__
        assert isinstance(cause, ProviderError)
        assert cause.kind is ErrorKind.SERVER_ERROR
        assert cause.detail == (
            f"404 Not Found - Possibly Ollama is not running or incorrect URL: {OLLAMA_URL}"
        )


@pytest.mark.unit
class TestNormalizeServerUrl:
    """Test Ollama server URL cleanup."""

    @pytest.mark.parametrize("raw,expected", [
        ("http://localhost:11434", "http://localhost:11434"),
        ("localhost:11434", "http://localhost:11434"),
        ("http://host.local:11434/", "http://host.local:11434"),
        ("http://http://host.local:11434", "http://host.local:11434"),
        ("https://gpu-box:8443", "https://gpu-box:8443"),
        ("ftp://gpu-box:11434", "http://gpu-box:11434"),
        ("  http://10.0.0.5:11434  ", "http://10.0.0.5:11434"),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_server_url(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", None, "http://"])
    def test_unusable_falls_back_to_default(self, raw):
        assert normalize_server_url(raw) == DEFAULT_OLLAMA_URL
