"""
Core pytest configuration and fixtures for RavenChat testing.

This module provides shared test fixtures, configuration, and utilities
that support the pillar-based testing architecture.
"""

import json
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from ravenchat.config import Settings
from ravenchat.llm import LLM
from ravenchat.models import ASSISTANT_ROLE, USER_ROLE, ChatMessage, ChatSession

# ===== SSE HELPERS =====


def sse(delta: Optional[Dict[str, Any]] = None, message: Optional[Dict] = None) -> bytes:
    """Encodes one streamed chunk as a ``data:`` line."""
    choice: Dict[str, Any] = {"index": 0}
    if delta is not None:
        choice["delta"] = delta
    if message is not None:
        choice["message"] = message
    return f"data: {json.dumps({'choices': [choice]})}\n".encode("utf-8")


class ByteStream:
    """An async byte source that records whether it was closed."""

    def __init__(self, chunks: List[bytes], fail_after: Optional[int] = None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.closed = False
        self.reads = 0

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        if self.fail_after is not None and self.reads >= self.fail_after:
            raise RuntimeError("stream exploded")
        if self.reads >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self.reads]
        self.reads += 1
        return chunk

    async def aclose(self) -> None:
        self.closed = True


class ScriptedLLM(LLM):
    """A transport that replays fixed chunks, or fails before streaming."""

    provider = "Scripted"

    def __init__(self, chunks: Optional[List[bytes]] = None, error: Optional[Exception] = None):
        self.chunks = chunks or []
        self.error = error
        self.payloads: List[Dict[str, Any]] = []
        self.streams: List[ByteStream] = []

    @asynccontextmanager
    async def stream(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        body = ByteStream(self.chunks)
        self.streams.append(body)
        yield body


@pytest.fixture
def scripted_llm():
    return ScriptedLLM


@pytest.fixture
def byte_stream():
    return ByteStream


# ===== TEST DATA FIXTURES =====


@pytest.fixture
def sample_messages() -> List[ChatMessage]:
    """Sample chat messages for testing."""
    return [
        ChatMessage(role=USER_ROLE, content="Hello, how are you?"),
        ChatMessage(
            role=ASSISTANT_ROLE,
            content="I'm doing well, thank you! How can I help you today?",
        ),
        ChatMessage(role=USER_ROLE, content="Can you explain quantum computing?"),
        ChatMessage(
            role=ASSISTANT_ROLE,
            content="Quantum computing uses quantum mechanics principles...",
        ),
    ]


@pytest.fixture
def sample_session(sample_messages) -> ChatSession:
    """Sample session for testing."""
    return ChatSession(id="001", title="Quantum", messages=sample_messages)


@pytest.fixture
def settings() -> Settings:
    """Settings that never read the developer's environment."""
    return Settings(
        _env_file=None,
        api_key="test-key",
        provider="OpenRouter",
        model="openai/gpt-4o-mini",
        max_tokens=500,
    )


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keeps RAVENCHAT_* variables from leaking into tests."""
    import os

    for key in list(os.environ):
        if key.startswith("RAVENCHAT_"):
            monkeypatch.delenv(key, raising=False)


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
