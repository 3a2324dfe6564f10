"""
Token-aware text chunking.

The whole text is tokenized once and a fixed-size window slides over the
tokens with a stride of ``chunk_size - chunk_overlap``. Token counts also
drive the decision whether a prompt fits in a single generation call.
"""

import math
from typing import Any, Optional, Protocol

import tiktoken

from reqgraph.config import Settings, get_settings
from reqgraph.models import Chunk
from reqgraph.utils.errors import ChunkingError
from reqgraph.utils.logging import get_logger, log_performance

logger = get_logger(__name__)

DEFAULT_ENCODING = "cl100k_base"

# Model-name prefix -> tiktoken encoding. Longest prefix wins.
MODEL_ENCODINGS: dict[str, str] = {
    "gpt-4o": "o200k_base",
    "gpt-4.1": "o200k_base",
    "gpt-5": "o200k_base",
    "o1": "o200k_base",
    "o3": "o200k_base",
    "o4": "o200k_base",
    "gpt-4": "cl100k_base",
    "gpt-3.5": "cl100k_base",
    "text-embedding": "cl100k_base",
}

# Open-weight families have no tiktoken encoding; they fold onto the default.
OPEN_WEIGHT_FAMILIES: tuple[str, ...] = (
    "llama",
    "codellama",
    "mistral",
    "mixtral",
    "qwen",
    "gemma",
    "phi",
    "deepseek",
    "granite",
    "command-r",
    "nomic",
    "mxbai",
    "all-minilm",
)


class Tokenizer(Protocol):
    """The part of a tiktoken ``Encoding`` the chunker relies on."""

    def encode(self, text: str, **kwargs: Any) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


def _base_model_name(model_hint: str) -> str:
    """Strip provider prefixes and tags: ``ollama/llama3.2:latest`` -> ``llama3.2``."""
    name = model_hint.strip().lower()
    name = name.rsplit("/", 1)[-1]
    return name.split(":", 1)[0]


def resolve_encoding_name(model_hint: Optional[str], default: str = DEFAULT_ENCODING) -> str:
    """
    Map a model name to a tiktoken encoding name.

    Never raises: unknown names resolve to ``default``.
    """
    if not model_hint:
        return default

    name = _base_model_name(model_hint)
    if name.startswith(OPEN_WEIGHT_FAMILIES):
        return default

    for prefix in sorted(MODEL_ENCODINGS, key=len, reverse=True):
        if name.startswith(prefix):
            return MODEL_ENCODINGS[prefix]

    try:
        return tiktoken.encoding_for_model(name).name
    except (KeyError, ValueError):
        logger.debug(f"No tokenizer mapping for '{model_hint}', using {default}")
        return default


class TokenChunker:
    """Split text into overlapping token windows and count tokens."""

    def __init__(
        self,
        chunk_size: int = 800,
        chunk_overlap: int = 100,
        default_encoding: str = DEFAULT_ENCODING,
        tokenizer: Optional[Tokenizer] = None,
    ) -> None:
        """
        Initialize the chunker.

        Args:
            chunk_size: Window size in tokens
            chunk_overlap: Tokens shared by consecutive windows
            default_encoding: Encoding for unknown and open-weight models
            tokenizer: Fixed tokenizer used for every model instead of tiktoken

        Raises:
            ValueError: If the window configuration is invalid
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must not be negative")
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.default_encoding = default_encoding
        self._tokenizer = tokenizer
        self._encodings: dict[str, Tokenizer] = {}

    @property
    def stride(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def _get_tokenizer(self, model_hint: Optional[str]) -> Tokenizer:
        if self._tokenizer is not None:
            return self._tokenizer

        name = resolve_encoding_name(model_hint, self.default_encoding)
        if name not in self._encodings:
            try:
                self._encodings[name] = tiktoken.get_encoding(name)
            except (KeyError, ValueError) as e:
                if name == self.default_encoding:
                    raise ChunkingError(f"Failed to load tokenizer '{name}': {str(e)}")
                logger.warning(f"Failed to load tokenizer '{name}', using {self.default_encoding}")
                return self._get_tokenizer(None)
        return self._encodings[name]

    def _encode(self, text: str, model_hint: Optional[str]) -> list[int]:
        tokenizer = self._get_tokenizer(model_hint)
        if self._tokenizer is not None:
            return tokenizer.encode(text)
        return tokenizer.encode(text, disallowed_special=())

    def count_tokens(self, text: str, model_hint: Optional[str] = None) -> int:
        """
        Count tokens in text using the tokenizer family of ``model_hint``.

        Args:
            text: Text to measure
            model_hint: Target model name, any provider prefix or tag allowed

        Returns:
            Number of tokens
        """
        if not text:
            return 0
        return len(self._encode(text, model_hint))

    def expected_chunk_count(self, total_tokens: int) -> int:
        """Number of windows ``chunk`` produces for ``total_tokens`` tokens."""
        if total_tokens <= self.chunk_size:
            return 1
        return math.ceil((total_tokens - self.chunk_overlap) / self.stride)

    @log_performance
    def chunk(self, text: str, model_hint: Optional[str] = None) -> list[Chunk]:
        """
        Split text into ordered, overlapping token windows.

        Consecutive chunks share exactly ``chunk_overlap`` tokens; the last
        chunk may be shorter. Text that fits in one window yields one chunk.

        Args:
            text: Text to split
            model_hint: Target model name used to pick the tokenizer

        Returns:
            Ordered list of chunks
        """
        tokens = self._encode(text or "", model_hint)
        tokenizer = self._get_tokenizer(model_hint)
        total = len(tokens)
        total_chunks = self.expected_chunk_count(total)

        chunks: list[Chunk] = []
        start = 0
        while True:
            end = min(start + self.chunk_size, total)
            window = tokens[start:end]
            chunks.append(
                Chunk(
                    index=len(chunks),
                    text=tokenizer.decode(window),
                    token_count=len(window),
                    start_token=start,
                    end_token=end,
                    total_chunks=total_chunks,
                )
            )
            if end >= total:
                break
            start += self.stride

        logger.debug(
            "Chunked text",
            extra={
                "total_tokens": total,
                "chunks": len(chunks),
                "chunk_size": self.chunk_size,
                "chunk_overlap": self.chunk_overlap,
            },
        )
        return chunks


def create_token_chunker(settings: Optional[Settings] = None) -> TokenChunker:
    """Create a chunker from settings."""
    settings = settings or get_settings()
    return TokenChunker(
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        default_encoding=settings.tokenizer_encoding,
    )
