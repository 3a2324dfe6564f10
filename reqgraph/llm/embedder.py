"""
Embedding generation for requirements.

Embeddings come from an OpenAI-compatible ``/v1/embeddings`` endpoint
(Ollama by default) or from a local sentence-transformers model. Vectors
are cached on disk as ``.npy`` files keyed by model and text.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np
import openai

from reqgraph.config import EMBEDDING_DIMENSIONS, Settings, embedding_dimension_for, get_settings
from reqgraph.utils.errors import (
    ConfigurationError,
    EmbeddingGenerationError,
    ModelNotAvailableError,
)
from reqgraph.utils.logging import get_logger, log_performance

logger = get_logger(__name__)

OPENAI_BACKEND = "openai"
LOCAL_BACKEND = "sentence-transformers"


class EmbeddingGenerator:
    """Generate fixed-dimension embeddings, one text at a time."""

    def __init__(
        self,
        model_name: str = "nomic-embed-text",
        backend: str = OPENAI_BACKEND,
        base_url: Optional[str] = None,
        api_key: str = "ollama",
        timeout: float = 30.0,
        cache_dir: Optional[Path] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        """
        Initialize embedding generator.

        Args:
            model_name: Embedding model name
            backend: 'openai' (HTTP endpoint) or 'sentence-transformers'
            base_url: Endpoint for the openai backend
            api_key: API key for the openai backend
            timeout: Per-call timeout in seconds
            cache_dir: Directory for cached vectors; no caching if None
            client: Preconfigured API client
        """
        if backend not in (OPENAI_BACKEND, LOCAL_BACKEND):
            raise ConfigurationError(f"Unknown embedding backend: {backend}")

        self.model_name = model_name
        self.backend = backend
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._openai_client = client
        self._model: Any = None

        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def dimension(self) -> int:
        """Vector dimension of the model. Fixed per model."""
        return embedding_dimension_for(self.model_name)

    @property
    def _known_dimension(self) -> Optional[int]:
        return EMBEDDING_DIMENSIONS.get(self.model_name.split("/")[-1].split(":")[0])

    def _ensure_openai_client(self) -> openai.AsyncOpenAI:
        if self._openai_client is None:
            self._openai_client = openai.AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._openai_client

    def _load_local_model(self) -> Any:
        """Load the sentence-transformers model on first use."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ConfigurationError(
                    "The sentence-transformers backend needs the 'local' extra: "
                    "pip install reqgraph[local]"
                ) from e
            try:
                logger.info(f"Loading embedding model: {self.model_name}")
                self._model = SentenceTransformer(self.model_name)
            except OSError as e:
                raise ModelNotAvailableError(self.model_name) from e
        return self._model

    async def embed(self, text: str) -> list[float]:
        """
        Generate the embedding of one text.

        Raises:
            ModelNotAvailableError: If the model is not installed
            EmbeddingGenerationError: If the call fails or the vector is unusable
        """
        cached = self._load_cached(text)
        if cached is not None:
            return cached

        if self.backend == LOCAL_BACKEND:
            embedding = await self._embed_local(text)
        else:
            embedding = await self._embed_remote(text)

        self._check_dimension(embedding)
        self._cache_embedding(text, embedding)
        return embedding

    @log_performance
    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed texts sequentially. Output index ``i`` belongs to ``texts[i]``.
        """
        embeddings: list[list[float]] = []
        for text in texts:
            embeddings.append(await self.embed(text))
        return embeddings

    async def _embed_remote(self, text: str) -> list[float]:
        client = self._ensure_openai_client()
        try:
            response = await client.embeddings.create(model=self.model_name, input=text)
        except openai.NotFoundError as e:
            raise ModelNotAvailableError(self.model_name, await self._list_models()) from e
        except openai.APIError as e:
            if "not found" in str(e).lower():
                raise ModelNotAvailableError(self.model_name, await self._list_models()) from e
            logger.error(f"Embedding request failed: {e}")
            raise EmbeddingGenerationError(f"Embedding request failed: {str(e)}") from e

        if not response.data:
            raise EmbeddingGenerationError("Embedding response contained no vectors")
        return [float(value) for value in response.data[0].embedding]

    async def _embed_local(self, text: str) -> list[float]:
        model = self._load_local_model()
        vector = await asyncio.to_thread(model.encode, text, convert_to_numpy=True)
        return np.asarray(vector, dtype=float).tolist()

    async def _list_models(self) -> list[str]:
        try:
            page = await self._ensure_openai_client().models.list()
        except openai.APIError:
            return []
        return [item.id for item in page.data]

    def _check_dimension(self, embedding: list[float]) -> None:
        if not embedding:
            raise EmbeddingGenerationError("Empty embedding returned", {"model": self.model_name})
        expected = self._known_dimension
        if expected is not None and len(embedding) != expected:
            raise EmbeddingGenerationError(
                f"Embedding dimension {len(embedding)} does not match model dimension {expected}",
                {"model": self.model_name},
            )

    # ------------------------------------------------------------------ cache

    def _get_cache_key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model_name}:{text}".encode()).hexdigest()

    def _load_cached(self, text: str) -> Optional[list[float]]:
        if not self.cache_dir:
            return None
        cache_file = self.cache_dir / f"{self._get_cache_key(text)}.npy"
        if not cache_file.exists():
            return None
        try:
            return np.load(cache_file).tolist()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load cached embedding: {e}")
            return None

    def _cache_embedding(self, text: str, embedding: list[float]) -> None:
        if not self.cache_dir:
            return
        try:
            np.save(self.cache_dir / f"{self._get_cache_key(text)}.npy", np.array(embedding))
        except OSError as e:
            logger.warning(f"Failed to cache embedding: {e}")

    async def close(self) -> None:
        if self._openai_client is not None:
            await self._openai_client.close()
            self._openai_client = None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 if either is all zeros or they differ in length."""
    v1 = np.asarray(a, dtype=float)
    v2 = np.asarray(b, dtype=float)
    if v1.shape != v2.shape:
        return 0.0
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0:
        return 0.0
    return float(np.dot(v1, v2) / norm)


def create_embedding_generator(settings: Optional[Settings] = None) -> EmbeddingGenerator:
    """Create an embedding generator from settings."""
    settings = settings or get_settings()
    return EmbeddingGenerator(
        model_name=settings.embedding_model,
        backend=settings.embedding_backend,
        base_url=settings.effective_embedding_base_url,
        api_key=settings.llm_api_key,
        timeout=settings.embedding_timeout,
        cache_dir=settings.embedding_cache_dir,
    )
