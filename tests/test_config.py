"""
Tests for configuration module.
"""

import pytest

from reqgraph.config import Settings, embedding_dimension_for, get_settings


class TestSettings:
    """Test the Settings configuration class."""

    def test_default_settings(self, monkeypatch):
        """Test default settings initialization."""
        for name in ("CHUNK_SIZE", "CHUNK_OVERLAP", "LOG_LEVEL", "GRAPH_BACKEND", "LLM_MODEL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.graph_backend == "neo4j"
        assert settings.chunk_size == 800
        assert settings.chunk_overlap == 100
        assert settings.token_sync_limit == 4000
        assert settings.log_level == "INFO"
        assert settings.llm_model == "llama3.2"
        assert settings.embedding_model == "nomic-embed-text"
        assert settings.response_format == "toon"

    def test_default_search_weights(self):
        """Test default search weights and boosts."""
        settings = Settings(_env_file=None)

        assert settings.search_similarity_weight == 0.7
        assert settings.search_keyword_weight == 1.5
        assert (settings.boost_category, settings.boost_name) == (0.3, 0.2)
        assert (settings.boost_tag, settings.boost_description) == (0.15, 0.1)

    def test_settings_from_env(self, monkeypatch):
        """Test loading settings from environment variables."""
        monkeypatch.setenv("GRAPH_BACKEND", "memory")
        monkeypatch.setenv("CHUNK_SIZE", "2000")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.graph_backend == "memory"
        assert settings.chunk_size == 2000
        assert settings.log_level == "DEBUG"

    def test_chunk_overlap_validation(self):
        """Test that chunk overlap must be smaller than chunk size."""
        with pytest.raises(ValueError, match="chunk_overlap must be smaller than chunk_size"):
            Settings(_env_file=None, chunk_size=100, chunk_overlap=100)

    def test_invalid_log_level(self):
        """Test that an unknown log level is rejected."""
        with pytest.raises(ValueError, match="Invalid log level"):
            Settings(_env_file=None, log_level="LOUD")

    def test_negative_weight_rejected(self):
        """Test that negative boosts are rejected."""
        with pytest.raises(ValueError):
            Settings(_env_file=None, boost_category=-0.1)

    def test_unknown_graph_backend_rejected(self):
        """Test that an unknown graph backend is rejected."""
        with pytest.raises(ValueError):
            Settings(_env_file=None, graph_backend="sqlite")

    def test_unused_env_keys_not_exposed(self, monkeypatch):
        """Test that leftover keys such as DEV_MODE are ignored."""
        monkeypatch.setenv("DEV_MODE", "true")

        settings = Settings(_env_file=None)

        assert "dev_mode" not in Settings.model_fields
        assert not hasattr(settings, "dev_mode")

    def test_helper_properties(self):
        """Test helper properties."""
        settings = Settings(_env_file=None, embedding_model="mxbai-embed-large")
        assert settings.embedding_dimension == 1024
        assert settings.effective_embedding_base_url == settings.llm_base_url

        settings = Settings(_env_file=None, embedding_base_url="http://embeddings:8080/v1")
        assert settings.effective_embedding_base_url == "http://embeddings:8080/v1"


class TestEmbeddingDimensions:
    @pytest.mark.parametrize(
        "model, dimension",
        [
            ("nomic-embed-text", 768),
            ("nomic-embed-text:latest", 768),
            ("ollama/all-minilm", 384),
            ("text-embedding-3-large", 3072),
            ("some-new-model", 768),
        ],
    )
    def test_dimension_lookup(self, model, dimension):
        """Test embedding dimension lookup by model name."""
        assert embedding_dimension_for(model) == dimension


def test_get_settings_is_cached():
    """Test that settings are built once."""
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
