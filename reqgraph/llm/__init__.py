"""Clients for the generation and embedding models."""

from reqgraph.llm.embedder import EmbeddingGenerator, cosine_similarity, create_embedding_generator
from reqgraph.llm.generator import OpenAICompatibleGenerator, TextGenerator, create_text_generator

__all__ = [
    "EmbeddingGenerator",
    "OpenAICompatibleGenerator",
    "TextGenerator",
    "cosine_similarity",
    "create_embedding_generator",
    "create_text_generator",
]
