"""Training document pipeline: admin operations, processing and write-back."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from opentelemetry import trace

from docingest.core.config import settings
from docingest.core.exceptions import CategoryNotFoundError, DocumentNotFoundError
from docingest.knowledge.ingestion.chunkers import KnowledgeChunk, TextChunker
from docingest.knowledge.ingestion.dispatcher import DocumentDispatcher
from docingest.knowledge.ingestion.storage import DocumentStore, create_document_store
from docingest.knowledge.vector.embeddings import EmbeddingGenerator
from docingest.models.document import (
    DocumentCategory,
    DocumentStatus,
    DocumentType,
    ExtractionFailure,
    FailureKind,
    KnowledgeEntry,
    TrainingCategory,
    TrainingDocument,
    parse_source,
    utcnow,
)
from docingest.utils.audit import AuditLogger, audit_logger
from docingest.utils.monitoring import observe_document_processed, stale_results_total

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ClaimLost(Exception):
    """The document was edited, reset or deleted while it was being processed."""


class IngestionPipeline:
    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        *,
        dispatcher: Optional[DocumentDispatcher] = None,
        chunker: Optional[TextChunker] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        audit: Optional[AuditLogger] = None,
        indexing_enabled: Optional[bool] = None,
    ) -> None:
        self.store = store or create_document_store()
        self.dispatcher = dispatcher or DocumentDispatcher()
        self.chunker = chunker or TextChunker()
        self.indexing_enabled = settings.ENABLE_KNOWLEDGE_INDEXING if indexing_enabled is None else indexing_enabled
        self._embedder = embedder
        self.audit = audit or audit_logger

    @property
    def embedder(self) -> EmbeddingGenerator:
        if self._embedder is None:
            self._embedder = EmbeddingGenerator()
        return self._embedder

    # Documents

    async def create_document(
        self,
        name: str,
        source: Any,
        created_by: Optional[str] = None,
        description: Optional[str] = None,
        category_ids: Iterable[str] = (),
    ) -> TrainingDocument:
        category_ids = list(category_ids)
        for category_id in category_ids:
            await self.get_category(category_id)

        document = TrainingDocument(
            name=name,
            description=description,
            source=parse_source(source),
            created_by=created_by,
        )
        await self.store.create_document(document)
        for category_id in category_ids:
            await self.store.add_document_to_category(document.id, category_id)

        logger.info("Created %s document %s (%s)", document.document_type.value, document.id, name)
        return document

    async def get_document(self, document_id: str) -> TrainingDocument:
        document = await self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def list_documents(self) -> List[TrainingDocument]:
        return await self.store.list_documents()

    async def update_document(
        self,
        document_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        source: Any = None,
        actor: Optional[str] = None,
    ) -> TrainingDocument:
        changes: Dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if source is not None:
            changes["source"] = parse_source(source)

        previous = await self.get_document(document_id)
        document = await self.store.edit_document(document_id, changes)
        if document is None:
            raise DocumentNotFoundError(document_id)

        self.audit.record(
            "document_updated",
            actor,
            {
                "document_id": document_id,
                "fields": sorted(changes),
                "previous_status": previous.status.value,
                "version": document.version,
            },
        )
        return document

    async def reset_document(self, document_id: str, *, actor: Optional[str] = None) -> TrainingDocument:
        previous = await self.get_document(document_id)
        document = await self.store.reset_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        self.audit.record(
            "document_reset",
            actor,
            {
                "document_id": document_id,
                "previous_status": previous.status.value,
                "previous_error": previous.error_message,
            },
        )
        logger.info("Document %s reset from %s to pending", document_id, previous.status.value)
        return document

    async def delete_document(self, document_id: str, *, actor: Optional[str] = None) -> None:
        document = await self.store.deactivate_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        self.audit.record("document_deleted", actor, {"document_id": document_id, "name": document.name})

    # Processing

    async def process_document(self, document_id: str) -> Optional[TrainingDocument]:
        """Claim, extract and write back a single pending document.

        Returns the final document, or ``None`` when another worker holds the
        claim or the document changed before the result could be written.
        """

        claimed = await self.store.claim(document_id)
        if claimed is None:
            if await self.store.get_document(document_id) is None:
                raise DocumentNotFoundError(document_id)
            logger.info("Document %s is not pending; skipping", document_id)
            return None
        return await self.process_claimed(claimed)

    async def process_claimed(
        self,
        document: TrainingDocument,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[TrainingDocument]:
        """Run a claimed document to a terminal status, bounded by ``timeout`` seconds."""

        try:
            if timeout is None:
                return await self._run(document)
            return await asyncio.wait_for(self._run(document), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Processing of document %s exceeded %ss", document.id, timeout)
            message = f"{FailureKind.TIMEOUT.value}: processing exceeded {timeout:g} seconds"
            return await self._finish(document, DocumentStatus.ERROR, error_message=message)

    async def _run(self, document: TrainingDocument) -> Optional[TrainingDocument]:
        with tracer.start_as_current_span("document.process") as span:
            span.set_attribute("document.id", document.id)
            span.set_attribute("document.type", document.document_type.value)

            result = await self.dispatcher.dispatch(document.source)
            if isinstance(result, ExtractionFailure):
                logger.warning("Extraction failed for document %s: %s", document.id, result.describe())
                span.set_attribute("document.status", DocumentStatus.ERROR.value)
                return await self._finish(document, DocumentStatus.ERROR, error_message=result.describe())

            if not self.indexing_enabled:
                span.set_attribute("document.status", DocumentStatus.COMPLETED.value)
                return await self._finish(document, DocumentStatus.COMPLETED, content=result.text)

            try:
                file_metadata = await self._index(document, result.text)
            except ClaimLost:
                stale_results_total.inc()
                logger.warning("Document %s changed during indexing; result discarded", document.id)
                return None
            except Exception as exc:
                logger.exception("Indexing failed for document %s", document.id)
                span.record_exception(exc)
                return await self._finish(
                    document,
                    DocumentStatus.ERROR,
                    content=result.text,
                    error_message=f"{FailureKind.UNEXPECTED.value}: indexing failed: {exc}",
                )

            span.set_attribute("document.status", DocumentStatus.INDEXED.value)
            return await self._finish(
                document,
                DocumentStatus.INDEXED,
                content=result.text,
                file_metadata=file_metadata,
            )

    async def _index(self, document: TrainingDocument, text: str) -> Dict[str, Any]:
        chunks = self.chunker.chunk_document(
            text,
            structured=document.document_type is DocumentType.FILE,
            chunk_size=settings.CHUNK_SIZE,
            overlap=settings.CHUNK_OVERLAP,
        )
        embeddings: List[List[float]] = []

        batch_size = max(1, self.embedder.batch_size)
        for start in range(0, len(chunks), batch_size):
            batch = chunks[start : start + batch_size]
            embeddings.extend(await self.embedder.generate(chunk.content for chunk in batch))
            progress = int((start + len(batch)) / len(chunks) * 90)
            if not await self.store.update_progress(document.id, document.version, progress):
                raise ClaimLost(document.id)

        entries = [
            _knowledge_entry(document, chunk, embedding, self.embedder.model_name, len(chunks))
            for chunk, embedding in zip(chunks, embeddings)
        ]
        if not await self.store.update_progress(document.id, document.version, 95):
            raise ClaimLost(document.id)
        await self.store.replace_knowledge_entries(document.id, entries)

        return {
            "chunks_count": len(chunks),
            "embedding_model": self.embedder.model_name,
            "processing_date": utcnow().isoformat(),
            "processed": True,
        }

    async def _finish(
        self,
        document: TrainingDocument,
        status: DocumentStatus,
        *,
        content: Optional[str] = None,
        error_message: Optional[str] = None,
        file_metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TrainingDocument]:
        finished = await self.store.finish(
            document.id,
            document.version,
            status,
            content=content,
            error_message=error_message,
            file_metadata=file_metadata,
        )
        if finished is None:
            stale_results_total.inc()
            logger.warning(
                "Discarding %s result for document %s: claim at version %s is no longer current",
                status.value,
                document.id,
                document.version,
            )
            return None

        observe_document_processed(status.value)
        logger.info("Document %s finished as %s", document.id, status.value)
        return finished

    # Categories

    async def create_category(self, name: str, description: Optional[str] = None) -> TrainingCategory:
        return await self.store.create_category(TrainingCategory(name=name, description=description))

    async def get_category(self, category_id: str) -> TrainingCategory:
        category = await self.store.get_category(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    async def list_categories(self) -> List[TrainingCategory]:
        return await self.store.list_categories()

    async def update_category(
        self,
        category_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TrainingCategory:
        changes = {key: value for key, value in {"name": name, "description": description}.items() if value is not None}
        category = await self.store.update_category(category_id, changes)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    async def delete_category(self, category_id: str) -> None:
        await self.get_category(category_id)
        await self.store.delete_category(category_id)

    async def add_document_to_category(self, document_id: str, category_id: str) -> DocumentCategory:
        await self.get_document(document_id)
        await self.get_category(category_id)
        return await self.store.add_document_to_category(document_id, category_id)

    async def remove_document_from_category(self, document_id: str, category_id: str) -> None:
        await self.store.remove_document_from_category(document_id, category_id)

    async def get_document_categories(self, document_id: str) -> List[TrainingCategory]:
        await self.get_document(document_id)
        return await self.store.get_document_categories(document_id)

    async def get_category_documents(self, category_id: str) -> List[TrainingDocument]:
        await self.get_category(category_id)
        return await self.store.get_category_documents(category_id)


def _knowledge_entry(
    document: TrainingDocument,
    chunk: KnowledgeChunk,
    embedding: List[float],
    model_name: str,
    total_chunks: int,
) -> KnowledgeEntry:
    return KnowledgeEntry(
        source_id=document.id,
        chunk_index=chunk.index,
        content=chunk.content,
        embedding=embedding,
        metadata={
            "document_name": document.name,
            "document_type": document.document_type.value,
            "total_chunks": total_chunks,
            "content_hash": chunk.content_hash,
            "embedding_model": model_name,
        },
    )


__all__ = ["ClaimLost", "IngestionPipeline"]
