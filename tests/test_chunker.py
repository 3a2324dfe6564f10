"""
Tests for token chunking and model-to-tokenizer routing.
"""

import math

import pytest

from reqgraph.document_processor.chunker import (
    DEFAULT_ENCODING,
    TokenChunker,
    resolve_encoding_name,
)


def words(count: int) -> str:
    return " ".join(f"w{i}" for i in range(count))


class TestResolveEncodingName:
    @pytest.mark.parametrize(
        "model_hint, expected",
        [
            ("gpt-4o-mini", "o200k_base"),
            ("gpt-4.1", "o200k_base"),
            ("gpt-4-turbo", "cl100k_base"),
            ("gpt-3.5-turbo", "cl100k_base"),
            ("text-embedding-3-small", "cl100k_base"),
            ("llama3.2", DEFAULT_ENCODING),
            ("ollama/llama3.2:latest", DEFAULT_ENCODING),
            ("Mistral:7b", DEFAULT_ENCODING),
            ("qwen2.5-coder", DEFAULT_ENCODING),
        ],
    )
    def test_known_families(self, model_hint, expected):
        """Test encoding lookup for known model families."""
        assert resolve_encoding_name(model_hint) == expected

    def test_unknown_model_falls_back_to_default(self):
        """Test fallback encoding for an unknown model."""
        assert resolve_encoding_name("totally-unknown-model-x") == DEFAULT_ENCODING

    def test_empty_hint_uses_default(self):
        """Test default encoding when no model is given."""
        assert resolve_encoding_name(None, "o200k_base") == "o200k_base"
        assert resolve_encoding_name("", "o200k_base") == "o200k_base"


class TestTokenChunkerConfiguration:
    @pytest.mark.parametrize("size, overlap", [(100, 100), (100, 150), (0, 0), (10, -1)])
    def test_invalid_window_rejected_at_construction(self, size, overlap, tokenizer):
        """Test that overlap not smaller than chunk size is rejected."""
        with pytest.raises(ValueError):
            TokenChunker(chunk_size=size, chunk_overlap=overlap, tokenizer=tokenizer)

    def test_stride(self, tokenizer):
        """Test stride is chunk size minus overlap."""
        chunker = TokenChunker(chunk_size=10, chunk_overlap=3, tokenizer=tokenizer)
        assert chunker.stride == 7


class TestTokenChunker:
    @pytest.fixture
    def chunker(self, tokenizer):
        return TokenChunker(chunk_size=10, chunk_overlap=3, tokenizer=tokenizer)

    def test_count_tokens(self, chunker):
        """Test token counting."""
        assert chunker.count_tokens(words(42), "llama3.2") == 42
        assert chunker.count_tokens("") == 0

    def test_short_text_is_one_chunk(self, chunker):
        """Test that text within one window yields a single chunk."""
        chunks = chunker.chunk(words(10))

        assert len(chunks) == 1
        assert chunks[0].text == words(10)
        assert chunks[0].total_chunks == 1
        assert (chunks[0].start_token, chunks[0].end_token) == (0, 10)

    @pytest.mark.parametrize("total", [11, 17, 18, 25, 100, 101])
    def test_chunk_count_formula(self, chunker, total):
        """Test the number of chunks for a long text."""
        chunks = chunker.chunk(words(total))

        expected = math.ceil((total - 3) / 7)
        assert len(chunks) == expected
        assert chunker.expected_chunk_count(total) == expected
        assert all(chunk.total_chunks == expected for chunk in chunks)

    def test_consecutive_chunks_share_overlap(self, chunker):
        """Test that consecutive chunks share the overlap tokens."""
        chunks = chunker.chunk(words(50))

        for current, following in zip(chunks, chunks[1:]):
            assert current.end_token - following.start_token == 3
            assert current.text.split()[-3:] == following.text.split()[:3]

    def test_windows_cover_text_in_order(self, chunker):
        """Test that windows cover the whole text in order."""
        chunks = chunker.chunk(words(30))

        assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
        assert chunks[0].start_token == 0
        assert chunks[-1].end_token == 30
        assert all(chunk.token_count <= 10 for chunk in chunks)
        assert chunks[-1].text.split()[-1] == "w29"

    def test_last_chunk_may_be_shorter(self, chunker):
        """Test that the final chunk may be shorter than the rest."""
        chunks = chunker.chunk(words(20))

        assert [chunk.token_count for chunk in chunks] == [10, 10, 6]
