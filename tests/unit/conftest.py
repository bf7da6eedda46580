"""Shared pytest fixtures for unit tests."""

from __future__ import annotations

from typing import List, Optional

import pytest

from askman.cache import CacheStore
from askman.models import QueryResponse, StreamChunk
from askman.prompts import PromptBuilder
from askman.providers import BaseProvider


class FakeProvider(BaseProvider):
    """Provider returning scripted answers and counting calls.

    ``answers`` are consumed in order by both ``query`` and
    ``stream_query``; the last answer repeats once the list runs out.
    Streaming splits each answer into words.
    """

    name = "fake"

    def __init__(self, answers: List[str], streaming: bool = True, error: Optional[Exception] = None):
        self.answers = list(answers)
        self.streaming = streaming
        self.error = error
        self.query_calls = 0
        self.stream_calls = 0
        self.requests = []

    def _next(self) -> str:
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]

    def query(self, request, ctx=None):
        self.query_calls += 1
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return QueryResponse(
            content=self._next(),
            tokens_input=10,
            tokens_output=5,
            model=request.model,
            provider=self.name,
        )

    def stream_query(self, request, ctx=None):
        self.stream_calls += 1
        self.requests.append(request)
        text = self._next()
        words = text.split(" ")
        for index, word in enumerate(words):
            yield StreamChunk(content=word if index == 0 else " " + word)
        if self.error is not None:
            raise self.error
        yield StreamChunk(done=True, tokens_input=10, tokens_output=5)

    def supports_streaming(self) -> bool:
        return self.streaming


@pytest.fixture(name="cache_store")
def cache_store_fixture(tmp_path):
    """Cache store rooted in a temporary directory."""
    return CacheStore(tmp_path / "cache", max_age_days=30)


@pytest.fixture(name="prompts")
def prompts_fixture():
    """Prompts for a question about ``ls``."""
    return PromptBuilder("ls", "LS(1)\n  -S  sort by file size", "sort by size")


@pytest.fixture(name="isolated_env")
def isolated_env_fixture(tmp_path, monkeypatch):
    """Point configuration and cache at a temporary directory."""
    monkeypatch.setenv("ASKMAN_CONFIG", str(tmp_path / "config.yaml"))
    monkeypatch.setenv("ASKMAN_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.delenv("ASKMAN_PROFILE", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    return tmp_path
