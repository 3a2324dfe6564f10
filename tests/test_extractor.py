"""
Tests for document extraction and text preprocessing.
"""

import fitz
import pytest

from reqgraph.document_processor.extractor import (
    LocalDocumentExtractor,
    combine_documents,
)
from reqgraph.document_processor.preprocessor import TextPreprocessor
from reqgraph.models import ExtractedDocument
from reqgraph.utils.errors import ExtractionError, UnsupportedDocumentError


@pytest.fixture
def extractor():
    return LocalDocumentExtractor()


def write_pdf(path, pages):
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()


class TestTextPreprocessor:
    def test_removes_page_markers(self):
        """Test removal of page markers."""
        text = "Intro\n12\nPage 3 of 10\n4 of 10\n- 5 -\nThe system must log in users."

        assert TextPreprocessor().preprocess(text) == "Intro\nThe system must log in users."

    def test_keeps_page_markers_when_disabled(self):
        """Test that page markers stay when removal is off."""
        assert TextPreprocessor(remove_page_markers=False).preprocess("Intro\n12") == "Intro\n12"

    def test_normalizes_whitespace(self):
        """Test whitespace normalization."""
        text = "  Login\t\tpage  \r\n\r\n\r\n\r\nMust   work \n"

        assert TextPreprocessor().preprocess(text) == "Login page\n\nMust work"

    def test_ligatures_and_control_characters(self):
        """Test ligature expansion and control character removal."""
        assert TextPreprocessor().preprocess("e\ufb00ective \ufb01le\x00\x07") == "effective file"

    def test_empty(self):
        """Test preprocessing empty text."""
        assert TextPreprocessor().preprocess("") == ""


class TestLocalDocumentExtractor:
    @pytest.mark.asyncio
    async def test_markdown(self, extractor, temp_dir):
        """Test extracting a markdown file."""
        path = temp_dir / "shop.md"
        path.write_text("# Shop\n\n\n\nUsers must   log in.\n", encoding="utf-8")

        document = await extractor.extract(path)

        assert document.text == "# Shop\n\nUsers must log in."
        assert document.format == "markdown"
        assert document.filename == "shop.md"

    @pytest.mark.asyncio
    async def test_text_mime_type(self, extractor, temp_dir):
        """Test mime type detection for plain text."""
        path = temp_dir / "notes.txt"
        path.write_text("Reports are exported as CSV.", encoding="utf-8")

        document = await extractor.extract(str(path))

        assert document.format == "text"
        assert document.mime_type == "text/plain"

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self, extractor, temp_dir):
        """Test that undecodable bytes are replaced."""
        path = temp_dir / "legacy.txt"
        path.write_bytes(b"Caf\xe9 orders must be tracked.")

        document = await extractor.extract(path)

        assert "orders must be tracked" in document.text

    @pytest.mark.asyncio
    async def test_pdf(self, extractor, temp_dir):
        """Test extracting a PDF."""
        path = temp_dir / "security.pdf"
        write_pdf(path, ["The system must encrypt data.", "Backups run nightly."])

        document = await extractor.extract(path)

        assert document.format == "pdf"
        assert document.metadata["page_count"] == 2
        assert "encrypt data" in document.text
        assert "Backups run nightly" in document.text

    @pytest.mark.asyncio
    async def test_corrupted_pdf(self, extractor, temp_dir):
        """Test extracting a corrupted PDF."""
        path = temp_dir / "broken.pdf"
        path.write_bytes(b"this is not a pdf")

        with pytest.raises(ExtractionError):
            await extractor.extract(path)

    @pytest.mark.asyncio
    async def test_missing_file(self, extractor, temp_dir):
        """Test extracting a file that does not exist."""
        with pytest.raises(ExtractionError, match="not found"):
            await extractor.extract(temp_dir / "missing.md")

    @pytest.mark.asyncio
    async def test_unsupported_format(self, extractor, temp_dir):
        """Test extracting an unsupported file type."""
        path = temp_dir / "diagram.png"
        path.write_bytes(b"\x89PNG")

        with pytest.raises(UnsupportedDocumentError) as exc_info:
            await extractor.extract(path)
        assert exc_info.value.details["suffix"] == ".png"

    @pytest.mark.asyncio
    async def test_empty_after_preprocessing(self, extractor, temp_dir):
        """Test a document with no text left after preprocessing."""
        path = temp_dir / "blank.txt"
        path.write_text("\n 1 \n\n Page 2 \n", encoding="utf-8")

        with pytest.raises(ExtractionError, match="No text"):
            await extractor.extract(path)

    @pytest.mark.asyncio
    async def test_file_too_large(self, temp_dir):
        """Test the file size limit."""
        path = temp_dir / "big.txt"
        path.write_text("x" * 100, encoding="utf-8")

        with pytest.raises(ExtractionError, match="exceeds"):
            await LocalDocumentExtractor(max_file_size_bytes=10).extract(path)

    @pytest.mark.asyncio
    async def test_extract_many_collects_failures(self, extractor, temp_dir):
        """Test that failures are collected per file."""
        good = temp_dir / "good.md"
        good.write_text("Users must log in.", encoding="utf-8")
        bad = temp_dir / "image.png"
        bad.write_bytes(b"\x89PNG")

        documents, failures = await extractor.extract_many([good, bad, temp_dir / "gone.txt"])

        assert [d.filename for d in documents] == ["good.md"]
        assert [f.path for f in failures] == [str(bad), str(temp_dir / "gone.txt")]
        assert "Unsupported document format" in failures[0].error


class TestCombineDocuments:
    def test_single_document_unchanged(self):
        """Test combining a single document."""
        document = ExtractedDocument(path="/docs/a.md", text="Users log in.", format="markdown")

        assert combine_documents([document]) == "Users log in."

    def test_multiple_documents(self):
        """Test combining several documents with separators."""
        documents = [
            ExtractedDocument(path="/docs/a.md", text="Users log in.", format="markdown"),
            ExtractedDocument(path="C:\\docs\\b.txt", text="Data is encrypted.", format="text"),
        ]

        combined = combine_documents(documents)

        assert combined == (
            "# Extracted documents\n\n---\n\n"
            "## Document 1: a.md\n\nUsers log in.\n\n---\n\n"
            "## Document 2: b.txt\n\nData is encrypted."
        )
