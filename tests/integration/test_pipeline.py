import asyncio

import pytest

from docingest.core.exceptions import CategoryNotFoundError, DocumentNotFoundError
from docingest.knowledge.ingestion.dispatcher import DocumentDispatcher
from docingest.knowledge.ingestion.parsers import DocumentParser
from docingest.knowledge.ingestion.pipeline import IngestionPipeline
from docingest.knowledge.ingestion.storage import InMemoryDocumentStore
from docingest.models.document import DocumentStatus, ExtractionSuccess
from docingest.utils.audit import AuditLogger


class StubEmbeddingGenerator:
    batch_size = 2
    model_name = "stub-embedding"

    def __init__(self):
        self.calls = []

    async def generate(self, chunks):
        chunk_list = list(chunks)
        self.calls.append(chunk_list)
        return [[float(len(chunk)), 1.0] for chunk in chunk_list]


class FailingEmbeddingGenerator(StubEmbeddingGenerator):
    async def generate(self, chunks):
        raise RuntimeError("embedding service unavailable")


class EditingDispatcher:
    """Edits the document while its extraction is in flight."""

    def __init__(self, pipeline_ref):
        self.pipeline_ref = pipeline_ref
        self.document_id = None

    async def dispatch(self, source):
        await self.pipeline_ref[0].update_document(self.document_id, name="Edited mid-flight")
        return ExtractionSuccess(text="stale text")


class SlowDispatcher:
    async def dispatch(self, source):
        await asyncio.sleep(5)
        return ExtractionSuccess(text="late")


def make_pipeline(tmp_path, **kwargs):
    kwargs.setdefault("embedder", StubEmbeddingGenerator())
    kwargs.setdefault("dispatcher", DocumentDispatcher(DocumentParser(upload_root=tmp_path)))
    return IngestionPipeline(InMemoryDocumentStore(), audit=AuditLogger(), **kwargs)


@pytest.mark.asyncio
async def test_file_document_is_extracted_and_indexed(tmp_path):
    (tmp_path / "policy.txt").write_text("Vacation policy.\r\n\r\n\r\nAsk your manager.\r\n")
    embedder = StubEmbeddingGenerator()
    pipeline = make_pipeline(tmp_path, embedder=embedder)
    document = await pipeline.create_document(
        "Policy", {"type": "file", "file_path": "/uploads/policy.txt"}, created_by="admin"
    )
    assert document.status is DocumentStatus.PENDING

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.INDEXED
    assert processed.content == "Vacation policy.\n\nAsk your manager."
    assert processed.progress == 100
    assert processed.file_metadata["chunks_count"] == 1
    assert processed.file_metadata["embedding_model"] == "stub-embedding"
    assert processed.file_metadata["processed"] is True
    entries = await pipeline.store.list_knowledge_entries(document.id)
    assert [entry.content for entry in entries] == [processed.content]
    assert entries[0].metadata["document_name"] == "Policy"
    assert entries[0].metadata["total_chunks"] == 1


@pytest.mark.asyncio
async def test_long_file_document_is_indexed_section_by_section(tmp_path):
    sections = []
    for number in range(1, 4):
        paragraphs = [(f"Rule {number}{part} applies here. " * 30).strip() for part in ("a", "b")]
        sections.append("\n\n".join([f"## Chapter {number} ##", *paragraphs]))
    (tmp_path / "handbook.txt").write_text("\n\n".join(sections))
    pipeline = make_pipeline(tmp_path)
    document = await pipeline.create_document("Handbook", {"type": "file", "file_path": "/uploads/handbook.txt"})

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.INDEXED
    entries = await pipeline.store.list_knowledge_entries(document.id)
    assert len(entries) == 3
    for number, entry in enumerate(entries, start=1):
        assert entry.content.startswith(f"## Chapter {number} ##")
        assert f"Rule {number}b applies here." in entry.content
        assert entry.metadata["total_chunks"] == 3


@pytest.mark.asyncio
async def test_indexing_disabled_completes_document(tmp_path):
    pipeline = make_pipeline(tmp_path, indexing_enabled=False)
    document = await pipeline.create_document("Note", {"type": "text", "content": "  hello world  "})

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.COMPLETED
    assert processed.content == "hello world"
    assert await pipeline.store.list_knowledge_entries(document.id) == []


@pytest.mark.asyncio
async def test_empty_text_is_indexed_with_zero_chunks(tmp_path):
    pipeline = make_pipeline(tmp_path)
    document = await pipeline.create_document("Blank", {"type": "text", "content": "   "})

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.INDEXED
    assert processed.file_metadata["chunks_count"] == 0


@pytest.mark.asyncio
async def test_extraction_failure_sets_error(tmp_path):
    pipeline = make_pipeline(tmp_path)
    document = await pipeline.create_document("Archive", {"type": "file", "file_path": "/uploads/data.xyz"})

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.ERROR
    assert processed.error_message.startswith("unsupported_format: ")
    assert ".xyz" in processed.error_message
    assert processed.content == ""


@pytest.mark.asyncio
async def test_indexing_failure_sets_error(tmp_path):
    pipeline = make_pipeline(tmp_path, embedder=FailingEmbeddingGenerator())
    document = await pipeline.create_document("Note", {"type": "text", "content": "some text"})

    processed = await pipeline.process_document(document.id)

    assert processed.status is DocumentStatus.ERROR
    assert "embedding service unavailable" in processed.error_message


@pytest.mark.asyncio
async def test_result_is_discarded_when_document_is_edited_during_processing(tmp_path):
    pipeline_ref = []
    dispatcher = EditingDispatcher(pipeline_ref)
    pipeline = make_pipeline(tmp_path, dispatcher=dispatcher)
    pipeline_ref.append(pipeline)
    document = await pipeline.create_document("Guide", {"type": "text", "content": "original"})
    dispatcher.document_id = document.id

    result = await pipeline.process_document(document.id)

    assert result is None
    current = await pipeline.get_document(document.id)
    assert current.status is DocumentStatus.PENDING
    assert current.name == "Edited mid-flight"
    assert current.content == ""
    assert current.version == 1
    assert "document_updated" in pipeline.audit.actions()


@pytest.mark.asyncio
async def test_processing_timeout_sets_error(tmp_path):
    pipeline = make_pipeline(tmp_path, dispatcher=SlowDispatcher())
    document = await pipeline.create_document("Slow", {"type": "website", "url": "https://example.com"})
    claimed = await pipeline.store.claim(document.id)

    processed = await pipeline.process_claimed(claimed, timeout=0.05)

    assert processed.status is DocumentStatus.ERROR
    assert processed.error_message.startswith("timeout: ")


@pytest.mark.asyncio
async def test_process_document_skips_documents_that_are_not_pending(tmp_path):
    pipeline = make_pipeline(tmp_path, indexing_enabled=False)
    document = await pipeline.create_document("Note", {"type": "text", "content": "x"})
    await pipeline.process_document(document.id)

    assert await pipeline.process_document(document.id) is None
    with pytest.raises(DocumentNotFoundError):
        await pipeline.process_document("missing")


@pytest.mark.asyncio
async def test_reset_and_delete_are_audited(tmp_path):
    pipeline = make_pipeline(tmp_path)
    document = await pipeline.create_document("Archive", {"type": "file", "file_path": "/uploads/data.xyz"})
    await pipeline.process_document(document.id)

    reset = await pipeline.reset_document(document.id, actor="admin")
    await pipeline.delete_document(document.id, actor="admin")

    assert reset.status is DocumentStatus.PENDING
    assert reset.error_message is None
    assert pipeline.audit.actions() == ["document_reset", "document_deleted"]
    assert pipeline.audit.history[0]["details"]["previous_status"] == "error"
    assert await pipeline.list_documents() == []
    with pytest.raises(DocumentNotFoundError):
        await pipeline.reset_document(document.id)


@pytest.mark.asyncio
async def test_update_document_changes_source_and_requeues(tmp_path):
    pipeline = make_pipeline(tmp_path, indexing_enabled=False)
    document = await pipeline.create_document("Note", {"type": "text", "content": "v1"})
    await pipeline.process_document(document.id)

    updated = await pipeline.update_document(document.id, source={"type": "text", "content": "v2"})
    processed = await pipeline.process_document(document.id)

    assert updated.status is DocumentStatus.PENDING
    assert processed.content == "v2"


@pytest.mark.asyncio
async def test_category_operations(tmp_path):
    pipeline = make_pipeline(tmp_path)
    category = await pipeline.create_category("Onboarding", "New hire material")
    document = await pipeline.create_document(
        "Welcome", {"type": "text", "content": "hi"}, category_ids=[category.id]
    )

    assert [c.id for c in await pipeline.get_document_categories(document.id)] == [category.id]
    renamed = await pipeline.update_category(category.id, name="Orientation")
    assert renamed.name == "Orientation"
    assert renamed.description == "New hire material"

    await pipeline.remove_document_from_category(document.id, category.id)
    assert await pipeline.get_category_documents(category.id) == []

    await pipeline.delete_category(category.id)
    with pytest.raises(CategoryNotFoundError):
        await pipeline.get_category(category.id)
    with pytest.raises(CategoryNotFoundError):
        await pipeline.create_document("Orphan", {"type": "text", "content": "x"}, category_ids=["nope"])
