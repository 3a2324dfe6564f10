"""
Document text extraction.

Plain text formats are read directly; PDFs go through PyMuPDF off the
event loop. A failure on one file never stops a multi-file job: callers
receive the successes and the failures as two lists.
"""

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence, Union

import fitz  # PyMuPDF

from reqgraph.document_processor.preprocessor import TextPreprocessor
from reqgraph.models import DocumentFailure, ExtractedDocument
from reqgraph.utils.errors import ExtractionError, UnsupportedDocumentError
from reqgraph.utils.logging import get_logger, log_performance

logger = get_logger(__name__)

TEXT_FORMATS = {
    ".txt": "text",
    ".md": "markdown",
    ".markdown": "markdown",
    ".rst": "text",
    ".csv": "csv",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".xml": "xml",
    ".html": "html",
    ".htm": "html",
}
PDF_FORMAT = "pdf"


class DocumentExtractor(ABC):
    """Turns a file into raw text."""

    @abstractmethod
    async def extract(self, path: Union[str, Path]) -> ExtractedDocument:
        """
        Extract text from one file.

        Raises:
            ExtractionError: If the file cannot be read
        """
        pass

    async def extract_many(
        self,
        paths: Sequence[Union[str, Path]],
    ) -> tuple[list[ExtractedDocument], list[DocumentFailure]]:
        """
        Extract every file, collecting failures instead of raising.

        Returns:
            Extracted documents and failures, each in input order
        """
        documents: list[ExtractedDocument] = []
        failures: list[DocumentFailure] = []

        for path in paths:
            try:
                documents.append(await self.extract(path))
            except ExtractionError as e:
                logger.warning(f"Skipping document: {e.message}", extra={"path": str(path)})
                failures.append(DocumentFailure(path=str(path), error=str(e)))

        return documents, failures


class LocalDocumentExtractor(DocumentExtractor):
    """Extract text from local text and PDF files."""

    def __init__(
        self,
        preprocessor: Optional[TextPreprocessor] = None,
        max_file_size_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self.preprocessor = preprocessor or TextPreprocessor()
        self.max_file_size_bytes = max_file_size_bytes

    @log_performance
    async def extract(self, path: Union[str, Path]) -> ExtractedDocument:
        file_path = Path(path)
        if not file_path.is_file():
            raise ExtractionError(f"Document not found: {file_path}", {"path": str(file_path)})

        file_size = file_path.stat().st_size
        if file_size > self.max_file_size_bytes:
            raise ExtractionError(
                f"Document '{file_path.name}' exceeds {self.max_file_size_bytes} bytes",
                {"path": str(file_path), "size": file_size},
            )

        suffix = file_path.suffix.lower()
        mime_type = mimetypes.guess_type(file_path.name)[0]

        if suffix == ".pdf":
            text, page_count = await asyncio.to_thread(self._read_pdf, file_path)
            document_format, metadata = PDF_FORMAT, {"page_count": page_count}
        elif suffix in TEXT_FORMATS:
            text = await asyncio.to_thread(self._read_text, file_path)
            document_format, metadata = TEXT_FORMATS[suffix], {}
        else:
            raise UnsupportedDocumentError(str(file_path), suffix)

        text = self.preprocessor.preprocess(text)
        if not text:
            raise ExtractionError(f"No text found in '{file_path.name}'", {"path": str(file_path)})

        logger.info(
            f"Extracted {len(text)} characters from {file_path.name}",
            extra={"format": document_format, "size_bytes": file_size},
        )
        return ExtractedDocument(
            path=str(file_path),
            text=text,
            format=document_format,
            mime_type=mime_type,
            metadata=metadata,
        )

    @staticmethod
    def _read_text(file_path: Path) -> str:
        try:
            return file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExtractionError(f"Failed to read '{file_path.name}': {str(e)}")

    @staticmethod
    def _read_pdf(file_path: Path) -> tuple[str, int]:
        try:
            with fitz.open(file_path) as doc:
                pages = [page.get_text() for page in doc]
        except fitz.FileDataError as e:
            raise ExtractionError(f"PDF file is corrupted: {str(e)}", {"path": str(file_path)})
        except (RuntimeError, OSError) as e:
            raise ExtractionError(f"Failed to extract PDF: {str(e)}", {"path": str(file_path)})
        return "\n\n".join(pages), len(pages)


def create_document_extractor() -> LocalDocumentExtractor:
    """Create the default document extractor."""
    return LocalDocumentExtractor()


def combine_documents(documents: Sequence[ExtractedDocument]) -> str:
    """
    Merge several documents into one markdown text.

    A single document is returned unchanged.
    """
    if len(documents) == 1:
        return documents[0].text

    sections = ["# Extracted documents"]
    for number, document in enumerate(documents, start=1):
        sections.append(f"## Document {number}: {document.filename}\n\n{document.text}")
    return "\n\n---\n\n".join(sections)
