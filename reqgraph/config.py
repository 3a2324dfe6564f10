"""
Configuration for the requirements graph pipeline.

All settings are read from environment variables (case-insensitive) and an
optional ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Fixed output dimension per embedding model
EMBEDDING_DIMENSIONS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "all-MiniLM-L6-v2": 384,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}
DEFAULT_EMBEDDING_DIMENSION = 768


def embedding_dimension_for(model: str) -> int:
    """Return the fixed vector dimension of an embedding model."""
    name = model.split("/")[-1].split(":")[0]
    return EMBEDDING_DIMENSIONS.get(name, DEFAULT_EMBEDDING_DIMENSION)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"
    log_file_path: Optional[Path] = None
    structured_logging: bool = False

    # ── Graph database ───────────────────────────────────
    graph_backend: Literal["neo4j", "memory"] = "neo4j"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_username: str = "neo4j"
    neo4j_password: str = "password"
    neo4j_database: str = "neo4j"
    neo4j_similarity_function: str = Field(
        "gds.similarity.cosine",
        description="Cypher function used for cosine similarity in search",
    )

    # ── Generation model ─────────────────────────────────
    llm_base_url: str = "http://localhost:11434/v1"
    llm_api_key: str = "ollama"
    llm_model: str = "llama3.2"
    llm_temperature: float = Field(0.3, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(32768, gt=0)
    llm_timeout: float = Field(300.0, gt=0)
    llm_serialize_calls: bool = True
    llm_lock_timeout: float = Field(600.0, gt=0)

    # ── Embeddings ───────────────────────────────────────
    embedding_backend: Literal["openai", "sentence-transformers"] = "openai"
    embedding_base_url: Optional[str] = None
    embedding_model: str = "nomic-embed-text"
    embedding_timeout: float = Field(30.0, gt=0)
    embedding_cache_dir: Optional[Path] = None

    # ── Chunking ─────────────────────────────────────────
    token_sync_limit: int = Field(4000, gt=0)
    chunk_size: int = Field(800, gt=0)
    chunk_overlap: int = Field(100, ge=0)
    tokenizer_encoding: str = "cl100k_base"

    # ── Extraction ───────────────────────────────────────
    response_format: Literal["toon", "json"] = "toon"

    # ── Hybrid search weights ────────────────────────────
    search_similarity_weight: float = Field(0.7, ge=0.0)
    search_keyword_weight: float = Field(1.5, ge=0.0)
    boost_category: float = Field(0.3, ge=0.0)
    boost_name: float = Field(0.2, ge=0.0)
    boost_tag: float = Field(0.15, ge=0.0)
    boost_description: float = Field(0.1, ge=0.0)
    search_default_limit: int = Field(10, gt=0)

    # ── Jobs ─────────────────────────────────────────────
    worker_count: int = Field(1, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @property
    def embedding_dimension(self) -> int:
        """Vector dimension of the configured embedding model."""
        return embedding_dimension_for(self.embedding_model)

    @property
    def effective_embedding_base_url(self) -> str:
        """Embedding endpoint, defaulting to the generation endpoint."""
        return self.embedding_base_url or self.llm_base_url


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
