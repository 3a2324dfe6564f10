"""
Extraction pipeline: documents in, requirement graph out.

Routing, chunking, generation, parsing, validation, embedding and
persistence for one extraction run. Chunks are processed one after
another so that a single shared inference backend is never flooded by
one job.
"""

import time
from typing import Any, Optional, Sequence

from reqgraph.config import Settings, get_settings
from reqgraph.document_processor.chunker import TokenChunker, create_token_chunker
from reqgraph.document_processor.extractor import combine_documents
from reqgraph.extraction.parser import ResponseParser
from reqgraph.extraction.prompts import SYSTEM_PROMPT, build_extraction_prompt
from reqgraph.extraction.validator import RequirementValidator
from reqgraph.graph_db.base import RequirementGraphStore
from reqgraph.llm.embedder import EmbeddingGenerator, create_embedding_generator
from reqgraph.llm.generator import TextGenerator, create_text_generator
from reqgraph.models import (
    Application,
    Chunk,
    ChunkResult,
    ExtractedDocument,
    ExtractionOptions,
    ExtractionResult,
    RelationshipStats,
    Requirement,
    RequirementGraph,
    TokenStats,
)
from reqgraph.utils.errors import (
    ConfigurationError,
    ExtractionError,
    GenerationError,
    ModelNotAvailableError,
)
from reqgraph.utils.logging import LogContext, get_logger, log_performance

logger = get_logger(__name__)


class ExtractionOrchestrator:
    """
    Runs one extraction from document text to a persisted requirement graph.

    Per-chunk generation and parse failures are collected, not raised. The
    run fails only when no chunk could be generated at all, when the model
    is missing, or when embedding or persistence fails.
    """

    def __init__(
        self,
        chunker: TokenChunker,
        generator: TextGenerator,
        embedder: EmbeddingGenerator,
        graph_store: Optional[RequirementGraphStore] = None,
        parser: Optional[ResponseParser] = None,
        validator: Optional[RequirementValidator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.chunker = chunker
        self.generator = generator
        self.embedder = embedder
        self.graph_store = graph_store
        self.parser = parser or ResponseParser()
        self.validator = validator or RequirementValidator()

    @log_performance
    async def extract(
        self,
        documents: Sequence[ExtractedDocument],
        project_name: str,
        model: Optional[str] = None,
        options: Optional[ExtractionOptions] = None,
    ) -> ExtractionResult:
        """
        Extract requirements from documents and optionally persist them.

        Args:
            documents: Already extracted documents
            project_name: Application the requirements belong to
            model: Generation model; defaults to the generator's model
            options: Routing, format and persistence options

        Returns:
            Extraction result with per-chunk outcomes, token usage and timings

        Raises:
            ExtractionError: If there is no document text
            GenerationError: If no chunk could be generated
            ModelNotAvailableError: If the generation or embedding model is missing
            PersistenceError: If the graph could not be written
        """
        if not documents:
            raise ExtractionError("No documents to extract requirements from")

        options = options or ExtractionOptions(response_format=self.settings.response_format)
        model = model or self.generator.model_name
        total_start = time.perf_counter()
        timings: dict[str, float] = {}

        with LogContext(project=project_name):
            text = combine_documents(documents)
            if not text.strip():
                raise ExtractionError("Documents contain no text", {"documents": len(documents)})

            chunks = self._route(text, project_name, model, options)
            logger.info(
                f"Extracting requirements from {len(documents)} document(s)",
                extra={"chunks": len(chunks), "model": model, "format": options.response_format.value},
            )

            token_stats = TokenStats(format=options.response_format.value, model=model)
            llm_start = time.perf_counter()
            succeeded, failed = await self._process_chunks(chunks, project_name, model, options, token_stats)
            timings["llm"] = time.perf_counter() - llm_start

            merged = [requirement for result in succeeded for requirement in result.requirements]
            if len(documents) == 1:
                merged = [self._with_source(requirement, documents[0].filename) for requirement in merged]
            requirements = self.validator.clean(merged)

            embeddings_start = time.perf_counter()
            embeddings = await self.embedder.embed_many([r.embedding_text for r in requirements])
            requirements = [
                requirement.model_copy(update={"embedding": embedding})
                for requirement, embedding in zip(requirements, embeddings)
            ]
            timings["embeddings"] = time.perf_counter() - embeddings_start

            graph = RequirementGraph(
                application=Application(
                    name=project_name,
                    attributes={"sourceDocuments": [document.filename for document in documents]},
                ),
                requirements=requirements,
            )
            application_id: Optional[str] = None
            relationship_stats: Optional[RelationshipStats] = None
            if options.persist:
                if self.graph_store is None:
                    raise ConfigurationError("Persistence requested but no graph store is configured")
                persistence_start = time.perf_counter()
                application_id, relationship_stats = await self.graph_store.store_graph(graph, embeddings)
                timings["persistence"] = time.perf_counter() - persistence_start

            timings["total"] = time.perf_counter() - total_start
            # built last: pydantic copies the timings dict on validation
            result = ExtractionResult(
                graph=graph,
                succeeded=succeeded,
                failed=failed,
                token_stats=token_stats,
                timings=timings,
                persisted=options.persist,
                application_id=application_id,
                relationship_stats=relationship_stats,
            )
            logger.info(
                f"Extracted {len(requirements)} requirements",
                extra={
                    "chunks_succeeded": len(succeeded),
                    "chunks_failed": len(failed),
                    "total_tokens": token_stats.total_tokens,
                    "persisted": result.persisted,
                },
            )
            return result

    def _route(
        self,
        text: str,
        project_name: str,
        model: str,
        options: ExtractionOptions,
    ) -> list[Chunk]:
        """One chunk when the full prompt fits the sync limit, token windows otherwise."""
        limit = options.token_sync_limit or self.settings.token_sync_limit
        prompt = build_extraction_prompt(text, project_name, options.response_format)
        prompt_tokens = self.chunker.count_tokens(prompt, model)

        if prompt_tokens <= limit:
            text_tokens = self.chunker.count_tokens(text, model)
            return [
                Chunk(
                    index=0,
                    text=text,
                    token_count=text_tokens,
                    start_token=0,
                    end_token=text_tokens,
                    total_chunks=1,
                )
            ]

        logger.info(
            "Prompt exceeds sync limit, chunking",
            extra={"prompt_tokens": prompt_tokens, "token_sync_limit": limit},
        )
        return self.chunker.chunk(text, model)

    async def _process_chunks(
        self,
        chunks: list[Chunk],
        project_name: str,
        model: str,
        options: ExtractionOptions,
        token_stats: TokenStats,
    ) -> tuple[list[ChunkResult], list[ChunkResult]]:
        succeeded: list[ChunkResult] = []
        failed: list[ChunkResult] = []
        last_generation_error: Optional[GenerationError] = None

        generation_options: dict[str, Any] = {}
        if options.temperature is not None:
            generation_options["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation_options["max_tokens"] = options.max_tokens

        for chunk in chunks:
            prompt = build_extraction_prompt(
                chunk.text,
                project_name,
                options.response_format,
                chunk_index=chunk.index,
                total_chunks=chunk.total_chunks,
            )
            try:
                response = await self.generator.generate(
                    prompt,
                    options=generation_options or None,
                    system_prompt=SYSTEM_PROMPT,
                    model=model,
                )
            except ModelNotAvailableError:
                raise
            except GenerationError as e:
                logger.warning(
                    f"Generation failed for chunk {chunk.index + 1}/{chunk.total_chunks}",
                    extra={"chunk_index": chunk.index, "error": str(e)},
                )
                failed.append(ChunkResult.failure(chunk.index, str(e), "generation"))
                last_generation_error = e
                continue

            token_stats.add(response)
            parsed = self.parser.parse(response.text)
            if not parsed.succeeded:
                failed.append(ChunkResult.failure(chunk.index, parsed.error or "unparseable response", "parse"))
                continue

            logger.debug(
                f"Chunk {chunk.index + 1}/{chunk.total_chunks} yielded {len(parsed.requirements)} requirements",
                extra={"chunk_index": chunk.index, "format": parsed.format},
            )
            succeeded.append(ChunkResult.success(chunk.index, parsed.requirements, parsed.format))

        generation_failures = sum(1 for result in failed if result.error_kind == "generation")
        if last_generation_error is not None and generation_failures == len(chunks):
            raise last_generation_error

        return succeeded, failed

    @staticmethod
    def _with_source(requirement: Requirement, filename: str) -> Requirement:
        if requirement.source_document:
            return requirement
        return requirement.model_copy(update={"source_document": filename})


def create_extraction_orchestrator(
    settings: Optional[Settings] = None,
    graph_store: Optional[RequirementGraphStore] = None,
) -> ExtractionOrchestrator:
    """Wire an orchestrator from settings."""
    settings = settings or get_settings()
    return ExtractionOrchestrator(
        chunker=create_token_chunker(settings),
        generator=create_text_generator(settings),
        embedder=create_embedding_generator(settings),
        graph_store=graph_store,
        settings=settings,
    )
