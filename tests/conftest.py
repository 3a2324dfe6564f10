"""
Shared fixtures for reqgraph tests.

Nothing here talks to the network: the tokenizer, generation model and
embedding model are fakes, and Neo4j is mocked per test.
"""

import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

from reqgraph.config import Settings
from reqgraph.graph_db.memory_store import InMemoryRequirementStore
from reqgraph.llm.generator import TextGenerator
from reqgraph.models import ExtractedDocument, GenerationResponse
from reqgraph.utils.errors import GenerationError


class WordTokenizer:
    """One token per whitespace-separated word."""

    def __init__(self) -> None:
        self.vocabulary: list[str] = []
        self._ids: dict[str, int] = {}

    def encode(self, text: str, **kwargs: Any) -> list[int]:
        tokens = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self.vocabulary)
                self.vocabulary.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: list[int]) -> str:
        return " ".join(self.vocabulary[token] for token in tokens)


class FakeGenerator(TextGenerator):
    """Replays canned responses; an Exception instance in the list is raised instead."""

    def __init__(
        self,
        responses: Union[list[Any], Callable[[str], str]],
        model_name: str = "llama3.2",
    ) -> None:
        self.responses = responses
        self.model_name = model_name
        self.prompts: list[str] = []
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        context: Optional[dict[str, Any]] = None,
        options: Optional[dict[str, Any]] = None,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> GenerationResponse:
        self.prompts.append(prompt)
        self.calls.append({"options": options, "system_prompt": system_prompt, "model": model})

        if callable(self.responses):
            response = self.responses(prompt)
        else:
            if not self.responses:
                raise GenerationError("No more canned responses")
            response = self.responses.pop(0)

        if isinstance(response, Exception):
            raise response
        return GenerationResponse(
            text=response,
            model=model or self.model_name,
            prompt_tokens=100,
            completion_tokens=50,
        )


class FakeEmbedder:
    """Deterministic three-dimensional vectors derived from text length."""

    model_name = "fake-embed"

    def __init__(self) -> None:
        self.texts: list[str] = []

    @property
    def dimension(self) -> int:
        return 3

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        return [1.0, float(len(text) % 7), 0.5]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(text) for text in texts]

    async def close(self) -> None:
        pass


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        graph_backend="memory",
        token_sync_limit=4000,
        chunk_size=800,
        chunk_overlap=100,
    )


@pytest.fixture
def tokenizer():
    return WordTokenizer()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def memory_store():
    return InMemoryRequirementStore()


@pytest.fixture
def make_document():
    """Factory for extracted documents."""

    def _make(text: str, path: str = "/docs/requirements.md") -> ExtractedDocument:
        return ExtractedDocument(path=path, text=text, format="markdown", mime_type="text/markdown")

    return _make
