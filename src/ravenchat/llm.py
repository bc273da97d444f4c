"""Concrete implementations for LLM transports."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from .config import Settings
from .errors import ConfigurationError, ProviderHTTPError, TransportError
from .models import (
    REASONING_MODE,
    SYSTEM_ROLE,
    USER_ROLE,
    WEB_SEARCH_MODE,
    ChatMessage,
    Content,
)

logger = logging.getLogger(__name__)

OPENROUTER = "OpenRouter"
TEMPERATURE = 0.7
ONLINE_SUFFIX = ":online"
WEB_PLUGIN = {"id": "web", "max_results": 5}
NO_WEB_SEARCH_PROMPT = (
    "You are a helpful AI assistant. When users ask questions that would benefit "
    "from current information, please let them know that you don't have access "
    "to real-time web search and suggest they verify current information from "
    "reliable sources."
)
# Fields the OpenAI SDK accepts as named arguments; everything else in a
# payload is provider-specific and travels in ``extra_body``.
SDK_FIELDS = ("temperature", "max_tokens", "stream")


def build_chat_payload(
    history: Sequence[ChatMessage],
    content: Content,
    *,
    model: str,
    provider: str,
    feature_mode: str,
    max_tokens: int,
    show_reasoning: bool = True,
) -> Dict[str, Any]:
    """Builds the chat-completions request body for one send.

    Parameters
    ----------
    history : Sequence[ChatMessage]
        Earlier turns of the session, oldest first.
    content : Content
        The new user turn.
    model, provider, feature_mode : str
        The active selection.
    max_tokens : int
        The budget from :func:`ravenchat.budget.compute_max_tokens`.
    show_reasoning : bool
        Whether the provider should return reasoning text in reasoning mode.
    """
    messages: List[Dict[str, Any]] = [msg.to_wire() for msg in history]
    messages.append({"role": USER_ROLE, "content": content})

    payload: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": max_tokens,
        "stream": True,
    }

    if feature_mode == REASONING_MODE:
        payload["reasoning"] = {"effort": "medium", "exclude": not show_reasoning}

    if feature_mode == WEB_SEARCH_MODE:
        if provider == OPENROUTER:
            payload["plugins"] = [dict(WEB_PLUGIN)]
            if ONLINE_SUFFIX not in model:
                payload["model"] = f"{model}{ONLINE_SUFFIX}"
        else:
            payload["messages"] = [
                {"role": SYSTEM_ROLE, "content": NO_WEB_SEARCH_PROMPT}
            ] + messages

    return payload


class LLM(ABC):
    """Abstract Base Class for all LLM transports."""

    provider: str = ""

    @abstractmethod
    def stream(self, payload: Dict[str, Any]):
        """Sends a chat-completions request and exposes the raw response body.

        Implementations are async context managers yielding an async iterator
        of raw SSE bytes. The response is released when the context exits.

        Parameters
        ----------
        payload : Dict[str, Any]
            A body built by :func:`build_chat_payload`.

        Raises
        ------
        ProviderHTTPError
            If the provider answers with a non-2xx status.
        TransportError
            If the provider cannot be reached.
        """
        pass

    async def list_models(self) -> List[Dict[str, Any]]:
        """Returns the provider's raw model listing."""
        return []


class OpenAICompatible(LLM):
    """Any provider speaking the OpenAI chat-completions protocol.

    A fresh ``AsyncOpenAI`` client is opened for every request and closed with
    it. The Dash callbacks drive each request on its own event loop, and a
    pooled connection cannot outlive the loop it was opened on.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        provider: str = OPENROUTER,
        default_model: Optional[str] = None,
        transport=None,
    ):
        if not api_key:
            raise ConfigurationError(f"An API key is required for {provider}.")
        if not base_url:
            raise ConfigurationError(f"No API URL configured for {provider}.")

        self.provider = provider
        self.model = default_model
        self.api_key = api_key
        self.base_url = base_url
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatible":
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            provider=settings.provider,
            default_model=settings.model,
        )

    def client(self):
        """Opens a client for one request; use it as an async context manager."""
        import httpx
        from openai import AsyncOpenAI

        http_client = None
        if self.transport is not None:
            http_client = httpx.AsyncClient(transport=self.transport)
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            max_retries=0,
            http_client=http_client,
        )

    @property
    def extra_headers(self) -> Dict[str, str]:
        if self.provider == OPENROUTER:
            return {"HTTP-Referer": "https://ravenchat.app", "X-Title": "RavenChat"}
        return {}

    @asynccontextmanager
    async def stream(self, payload: Dict[str, Any]):
        import openai

        body = dict(payload)
        model = body.pop("model", None) or self.model
        messages = body.pop("messages")
        named = {key: body.pop(key) for key in SDK_FIELDS if key in body}

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s request payload: %s",
                self.provider,
                json.dumps(payload, ensure_ascii=False, default=str),
            )

        try:
            async with self.client() as client:
                request = client.chat.completions.with_streaming_response.create(
                    model=model,
                    messages=messages,
                    extra_headers=self.extra_headers or None,
                    extra_body=body or None,
                    **named,
                )
                async with request as response:
                    yield self._iter_bytes(response)
        except openai.APIStatusError as e:
            raise ProviderHTTPError(
                e.status_code,
                _error_detail(e.body) or _error_detail(_safe_json(e.response)),
                original_error=e,
                details={"provider": self.provider, "model": model},
            ) from e
        except openai.APIConnectionError as e:
            raise TransportError(
                str(e),
                original_error=e,
                details={"provider": self.provider, "model": model},
            ) from e

    @staticmethod
    async def _iter_bytes(response) -> AsyncIterator[bytes]:
        import httpx

        try:
            async for chunk in response.iter_bytes():
                yield chunk
        except httpx.TransportError as e:
            raise TransportError(str(e) or type(e).__name__, original_error=e) from e

    async def list_models(self) -> List[Dict[str, Any]]:
        import openai

        try:
            async with self.client() as client:
                page = await client.models.list()
        except openai.APIStatusError as e:
            raise ProviderHTTPError(
                e.status_code, _error_detail(e.body), original_error=e
            ) from e
        except openai.APIConnectionError as e:
            raise TransportError(str(e), original_error=e) from e
        return [model.model_dump() for model in page.data]


def _safe_json(response: Any) -> Any:
    try:
        return response.json()
    except (ValueError, RuntimeError):
        # Not JSON, or the body was never read.
        return None


def _error_detail(body: Any) -> Optional[str]:
    """Finds ``error.message`` in a provider error body."""
    if not isinstance(body, dict):
        return None
    error = body.get("error", body)
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None


def sse_event(delta: Dict[str, Any]) -> bytes:
    """Encodes one streamed delta as an SSE ``data:`` line."""
    chunk = {"choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n".encode("utf-8")


class Echo(LLM):
    """Streams the user's prompt back without any network access."""

    provider = "Echo"

    def __init__(self, default_model: str = "echo-v1", delay: float = 0.0, chunk_size: int = 12):
        self.model = default_model
        self.delay = delay
        self.chunk_size = chunk_size

    def render(self, payload: Dict[str, Any]) -> List[bytes]:
        messages = payload.get("messages") or []
        prompt = messages[-1]["content"] if messages else "No message provided"
        if not isinstance(prompt, str):
            prompt = " ".join(
                part.get("text", "") for part in prompt if part.get("type") == "text"
            )
        content = f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{prompt}"

        events = []
        if "reasoning" in payload:
            events.append(sse_event({"reasoning": "Echoing the prompt back."}))
        for start in range(0, len(content), self.chunk_size):
            events.append(sse_event({"content": content[start : start + self.chunk_size]}))
        events.append(b"data: [DONE]\n")
        return events

    @asynccontextmanager
    async def stream(self, payload: Dict[str, Any]):
        events = self.render(payload)

        async def body() -> AsyncIterator[bytes]:
            for event in events:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield event

        yield body()

    async def list_models(self) -> List[Dict[str, Any]]:
        return [{"id": self.model, "name": "Echo"}]


def from_settings(settings: Settings) -> LLM:
    """Returns the transport for the configured provider.

    Falls back to :class:`Echo` with a warning when no API key is configured.
    """
    if not settings.api_key:
        import warnings

        warnings.warn(
            "RavenChat is running with the Echo LLM because no API key is configured. "
            "Set RAVENCHAT_API_KEY to talk to a real provider.",
            UserWarning,
        )
        return Echo()
    return OpenAICompatible.from_settings(settings)
