"""
Tests for the LLM pillar: payload construction and the transports.

The OpenAI-compatible transport is exercised against an ``httpx.MockTransport``
so that the real SDK request path runs without any network access.
"""

import json

import httpx
import pytest
from ravenchat.errors import ConfigurationError, ProviderHTTPError, TransportError
from ravenchat.llm import (
    NO_WEB_SEARCH_PROMPT,
    Echo,
    LLM,
    OpenAICompatible,
    build_chat_payload,
    from_settings,
)
from ravenchat.models import ASSISTANT_ROLE, USER_ROLE, ChatMessage
from ravenchat.streaming import ingest


def payload_for(feature_mode="standard", provider="OpenRouter", model="openai/gpt-4o", **kwargs):
    history = [
        ChatMessage(role=USER_ROLE, content="Hi"),
        ChatMessage(role=ASSISTANT_ROLE, content="Hello!", reasoning="greeting"),
    ]
    return build_chat_payload(
        history,
        "What's new?",
        model=model,
        provider=provider,
        feature_mode=feature_mode,
        max_tokens=1234,
        **kwargs,
    )


class TestBuildChatPayload:
    def test_standard_payload(self):
        payload = payload_for()
        assert payload["model"] == "openai/gpt-4o"
        assert payload["max_tokens"] == 1234
        assert payload["temperature"] == 0.7
        assert payload["stream"] is True
        assert payload["messages"] == [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "What's new?"},
        ]
        assert "reasoning" not in payload
        assert "plugins" not in payload

    def test_reasoning_mode(self):
        payload = payload_for("reasoning")
        assert payload["reasoning"] == {"effort": "medium", "exclude": False}

    def test_reasoning_hidden(self):
        payload = payload_for("reasoning", show_reasoning=False)
        assert payload["reasoning"]["exclude"] is True

    def test_web_search_on_openrouter(self):
        payload = payload_for("web-search")
        assert payload["model"] == "openai/gpt-4o:online"
        assert payload["plugins"] == [{"id": "web", "max_results": 5}]

    def test_online_suffix_added_once(self):
        payload = payload_for("web-search", model="openai/gpt-4o:online")
        assert payload["model"] == "openai/gpt-4o:online"

    def test_web_search_elsewhere_adds_notice(self):
        payload = payload_for("web-search", provider="Groq", model="llama3-8b-8192")
        assert payload["model"] == "llama3-8b-8192"
        assert "plugins" not in payload
        assert payload["messages"][0] == {"role": "system", "content": NO_WEB_SEARCH_PROMPT}
        assert len(payload["messages"]) == 4

    def test_multimodal_content(self):
        parts = [{"type": "text", "text": "What is this?"}]
        payload = build_chat_payload(
            [],
            parts,
            model="m",
            provider="OpenRouter",
            feature_mode="vision",
            max_tokens=10,
        )
        assert payload["messages"] == [{"role": "user", "content": parts}]


class TestEcho:
    @pytest.mark.asyncio
    async def test_echoes_prompt(self):
        echo = Echo(chunk_size=5)
        async with echo.stream(payload_for()) as body:
            acc = await ingest(body)
        assert acc.content_text.endswith("What's new?")
        assert acc.content_text.startswith("**Echo LLM")

    @pytest.mark.asyncio
    async def test_reasoning_event_in_reasoning_mode(self):
        async with Echo().stream(payload_for("reasoning")) as body:
            acc = await ingest(body, capture_reasoning=True)
        assert acc.reasoning_text == "Echoing the prompt back."

    def test_render_ends_with_done(self):
        assert Echo().render(payload_for())[-1] == b"data: [DONE]\n"

    @pytest.mark.asyncio
    async def test_list_models(self):
        models = await Echo().list_models()
        assert models[0]["id"] == "echo-v1"


class TestLLMInterface:
    def test_llm_is_abstract(self):
        with pytest.raises(TypeError):
            LLM()


def mock_transport_llm(handler, provider="OpenRouter") -> OpenAICompatible:
    return OpenAICompatible(
        api_key="sk-test",
        base_url="https://example.test/api/v1",
        provider=provider,
        transport=httpx.MockTransport(handler),
    )


def sse_body(*contents) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": c}}]})
        for c in contents
    ]
    return ("\n".join(lines) + "\ndata: [DONE]\n").encode("utf-8")


class TestOpenAICompatible:
    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            OpenAICompatible(api_key="", base_url="https://x")

    def test_requires_base_url(self):
        with pytest.raises(ConfigurationError):
            OpenAICompatible(api_key="k", base_url="")

    def test_from_settings(self, settings):
        llm = OpenAICompatible.from_settings(settings)
        assert llm.provider == "OpenRouter"
        assert llm.model == "openai/gpt-4o-mini"
        assert llm.base_url == "https://openrouter.ai/api/v1"

    def test_openrouter_headers(self):
        llm = OpenAICompatible(api_key="k", base_url="https://x", provider="OpenRouter")
        assert llm.extra_headers["X-Title"] == "RavenChat"
        other = OpenAICompatible(api_key="k", base_url="https://x", provider="Groq")
        assert other.extra_headers == {}

    @pytest.mark.asyncio
    async def test_streams_raw_bytes(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                content=sse_body("Hel", "lo"),
                headers={"content-type": "text/event-stream"},
            )

        llm = mock_transport_llm(handler)
        async with llm.stream(payload_for("web-search")) as body:
            acc = await ingest(body)

        assert acc.content_text == "Hello"
        sent = json.loads(requests[0].content)
        assert requests[0].url.path.endswith("/chat/completions")
        assert sent["model"] == "openai/gpt-4o:online"
        assert sent["max_tokens"] == 1234
        assert sent["stream"] is True
        assert sent["plugins"] == [{"id": "web", "max_results": 5}]
        assert requests[0].headers["X-Title"] == "RavenChat"

    @pytest.mark.asyncio
    async def test_reasoning_travels_in_body(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=sse_body("ok"))

        llm = mock_transport_llm(handler)
        async with llm.stream(payload_for("reasoning")) as body:
            await ingest(body)
        assert json.loads(requests[0].content)["reasoning"] == {
            "effort": "medium",
            "exclude": False,
        }

    @pytest.mark.asyncio
    async def test_http_error_carries_status_and_detail(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "No auth credentials"}})

        llm = mock_transport_llm(handler)
        with pytest.raises(ProviderHTTPError) as exc_info:
            async with llm.stream(payload_for()):
                pass
        assert exc_info.value.status_code == 401
        assert str(exc_info.value).startswith("401: ")
        assert "No auth credentials" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_rate_limit_error(self):
        def handler(request):
            return httpx.Response(
                429, json={"error": {"message": "Rate limit reached, try again in 2.5s"}}
            )

        llm = mock_transport_llm(handler)
        with pytest.raises(ProviderHTTPError) as exc_info:
            async with llm.stream(payload_for()):
                pass
        assert exc_info.value.message.startswith("429: Rate limit")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        llm = mock_transport_llm(handler)
        with pytest.raises(TransportError) as exc_info:
            async with llm.stream(payload_for()):
                pass
        assert exc_info.value.message.startswith("Network error")

    @pytest.mark.asyncio
    async def test_list_models(self):
        def handler(request):
            assert request.url.path.endswith("/models")
            return httpx.Response(
                200,
                json={
                    "object": "list",
                    "data": [
                        {"id": "a/b", "object": "model", "created": 0, "owned_by": "x"}
                    ],
                },
            )

        llm = mock_transport_llm(handler)
        models = await llm.list_models()
        assert models[0]["id"] == "a/b"

    @pytest.mark.asyncio
    async def test_list_models_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": {"message": "down"}})

        llm = mock_transport_llm(handler)
        with pytest.raises(ProviderHTTPError) as exc_info:
            await llm.list_models()
        assert exc_info.value.status_code == 503


class TestFromSettings:
    def test_echo_without_key(self, settings):
        settings.api_key = None
        with pytest.warns(UserWarning, match="Echo LLM"):
            transport = from_settings(settings)
        assert isinstance(transport, Echo)

    def test_openai_compatible_with_key(self, settings):
        assert isinstance(from_settings(settings), OpenAICompatible)
