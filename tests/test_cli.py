"""
Tests for the command-line interface with fake model clients.
"""

import logging

import pytest
from typer.testing import CliRunner

from reqgraph import __version__, cli
from reqgraph.document_processor.chunker import TokenChunker
from reqgraph.extraction.orchestrator import ExtractionOrchestrator
from reqgraph.toon import ToonCodec

from tests.conftest import FakeGenerator

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, settings, tokenizer, fake_embedder):
    """Point the CLI at test settings and fake model clients."""
    response = "```toon\n" + ToonCodec().encode(
        {
            "requirements": [
                {"identifier": "FR-001", "name": "Login", "description": "Users log in", "priority": "must"},
                {"identifier": "SEC-001", "name": "Encryption", "description": "Data is encrypted"},
            ]
        }
    ) + "\n```"

    def fake_orchestrator(settings, graph_store=None):
        return ExtractionOrchestrator(
            chunker=TokenChunker(chunk_size=50, chunk_overlap=10, tokenizer=tokenizer),
            generator=FakeGenerator([response]),
            embedder=fake_embedder,
            graph_store=graph_store,
            settings=settings,
        )

    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    monkeypatch.setattr(cli, "create_extraction_orchestrator", fake_orchestrator)

    # the CLI callback reconfigures the root logger
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield settings
    root.handlers[:] = handlers
    root.setLevel(level)


class TestCli:
    def test_version(self, cli_env):
        """Test the version command."""
        result = runner.invoke(cli.app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_extract(self, cli_env, temp_dir):
        """Test extracting and persisting a document."""
        path = temp_dir / "shop.md"
        path.write_text("Users must log in. Data must be encrypted.", encoding="utf-8")

        result = runner.invoke(cli.app, ["extract", str(path), "--project", "Web Shop", "--store", "memory"])

        assert result.exit_code == 0, result.output
        assert "FR-001" in result.output
        assert "SEC-001" in result.output
        assert "Persisted: yes" in result.output

    def test_extract_without_persisting(self, cli_env, temp_dir):
        """Test extraction with persistence turned off."""
        path = temp_dir / "shop.md"
        path.write_text("Users must log in.", encoding="utf-8")

        result = runner.invoke(cli.app, ["extract", str(path), "-p", "Web Shop", "--no-persist"])

        assert result.exit_code == 0, result.output
        assert "Persisted: no" in result.output

    def test_extract_missing_document_fails(self, cli_env, temp_dir):
        """Test extraction of a file that does not exist."""
        result = runner.invoke(cli.app, ["extract", str(temp_dir / "missing.md"), "-p", "Web Shop", "--no-persist"])

        assert result.exit_code == 1
        assert "failed" in result.output

    def test_stats_on_empty_memory_store(self, cli_env):
        """Test stats on an empty store."""
        result = runner.invoke(cli.app, ["stats", "--store", "memory"])

        assert result.exit_code == 0, result.output
        assert "Requirement" in result.output
        assert "with embeddings" in result.output
