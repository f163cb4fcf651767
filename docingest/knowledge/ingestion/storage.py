"""Persistence for training documents, categories and knowledge entries."""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from docingest.core.config import settings
from docingest.core.database import database_manager
from docingest.core.exceptions import DocumentStoreError
from docingest.knowledge.ingestion.status import ensure_transition
from docingest.models.document import (
    DocumentCategory,
    DocumentStatus,
    KnowledgeEntry,
    TrainingCategory,
    TrainingDocument,
    utcnow,
)

logger = logging.getLogger(__name__)

# Fields an administrator may change through an edit.
EDITABLE_FIELDS = frozenset({"name", "description", "source"})


class DocumentStore(abc.ABC):
    """Row store behind the ingestion pipeline.

    Pipeline writes (`update_progress`, `finish`) are fenced: they only apply
    while the document is still ``processing`` at the version captured by
    `claim`. Admin edits and resets bump the version, so a result computed
    from stale content is dropped instead of overwriting the newer state.
    """

    # Documents
    @abc.abstractmethod
    async def create_document(self, document: TrainingDocument) -> TrainingDocument: ...

    @abc.abstractmethod
    async def get_document(self, document_id: str, *, include_inactive: bool = False) -> Optional[TrainingDocument]: ...

    @abc.abstractmethod
    async def list_documents(self) -> List[TrainingDocument]:
        """Active documents, newest first."""

    @abc.abstractmethod
    async def list_by_status(self, status: DocumentStatus, *, limit: Optional[int] = None) -> List[TrainingDocument]:
        """Active documents in ``status``, oldest first."""

    @abc.abstractmethod
    async def edit_document(self, document_id: str, changes: Dict[str, Any]) -> Optional[TrainingDocument]:
        """Apply admin changes, bump the version and force the status back to pending."""

    @abc.abstractmethod
    async def reset_document(self, document_id: str) -> Optional[TrainingDocument]: ...

    @abc.abstractmethod
    async def deactivate_document(self, document_id: str) -> Optional[TrainingDocument]: ...

    @abc.abstractmethod
    async def claim(self, document_id: str) -> Optional[TrainingDocument]:
        """Atomically move an active pending document to processing."""

    @abc.abstractmethod
    async def update_progress(self, document_id: str, version: int, progress: int) -> bool: ...

    @abc.abstractmethod
    async def finish(
        self,
        document_id: str,
        version: int,
        status: DocumentStatus,
        *,
        content: Optional[str] = None,
        error_message: Optional[str] = None,
        file_metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TrainingDocument]:
        """Move a claimed document to a terminal status; ``None`` when the claim went stale."""

    @abc.abstractmethod
    async def fail_stuck(self, document_id: str, started_before: datetime, message: str) -> Optional[TrainingDocument]:
        """Move a document still processing since before ``started_before`` to error."""

    # Categories
    @abc.abstractmethod
    async def create_category(self, category: TrainingCategory) -> TrainingCategory: ...

    @abc.abstractmethod
    async def get_category(self, category_id: str) -> Optional[TrainingCategory]: ...

    @abc.abstractmethod
    async def list_categories(self) -> List[TrainingCategory]: ...

    @abc.abstractmethod
    async def update_category(self, category_id: str, changes: Dict[str, Any]) -> Optional[TrainingCategory]: ...

    @abc.abstractmethod
    async def delete_category(self, category_id: str) -> None: ...

    @abc.abstractmethod
    async def add_document_to_category(self, document_id: str, category_id: str) -> DocumentCategory: ...

    @abc.abstractmethod
    async def remove_document_from_category(self, document_id: str, category_id: str) -> None: ...

    @abc.abstractmethod
    async def get_document_categories(self, document_id: str) -> List[TrainingCategory]: ...

    @abc.abstractmethod
    async def get_category_documents(self, category_id: str) -> List[TrainingDocument]: ...

    # Knowledge base
    @abc.abstractmethod
    async def replace_knowledge_entries(self, document_id: str, entries: Sequence[KnowledgeEntry]) -> int: ...

    @abc.abstractmethod
    async def list_knowledge_entries(self, document_id: str) -> List[KnowledgeEntry]: ...


def _terminal_changes(
    status: DocumentStatus,
    content: Optional[str],
    error_message: Optional[str],
    file_metadata: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    ensure_transition(DocumentStatus.PROCESSING, status)
    changes: Dict[str, Any] = {
        "status": status,
        "error_message": error_message,
        "processing_started_at": None,
        "updated_at": utcnow(),
    }
    if status is not DocumentStatus.ERROR:
        changes["progress"] = 100
    if content is not None:
        changes["content"] = content
    if file_metadata is not None:
        changes["file_metadata"] = file_metadata
    return changes


def _pending_changes() -> Dict[str, Any]:
    return {
        "status": DocumentStatus.PENDING,
        "error_message": None,
        "progress": None,
        "processing_started_at": None,
        "updated_at": utcnow(),
    }


class InMemoryDocumentStore(DocumentStore):
    """Process-local store used for development and tests."""

    def __init__(self) -> None:
        self._documents: Dict[str, TrainingDocument] = {}
        self._categories: Dict[str, TrainingCategory] = {}
        self._associations: Dict[str, DocumentCategory] = {}
        self._knowledge: Dict[str, List[KnowledgeEntry]] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(document: Optional[TrainingDocument]) -> Optional[TrainingDocument]:
        return document.model_copy(deep=True) if document is not None else None

    def _replace(self, document: TrainingDocument, changes: Dict[str, Any]) -> TrainingDocument:
        updated = document.model_copy(update=changes, deep=True)
        self._documents[document.id] = updated
        return updated.model_copy(deep=True)

    async def create_document(self, document: TrainingDocument) -> TrainingDocument:
        async with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)
        return document

    async def get_document(self, document_id: str, *, include_inactive: bool = False) -> Optional[TrainingDocument]:
        document = self._documents.get(document_id)
        if document is None or (not document.is_active and not include_inactive):
            return None
        return self._copy(document)

    async def list_documents(self) -> List[TrainingDocument]:
        active = [doc for doc in self._documents.values() if doc.is_active]
        active.sort(key=lambda doc: doc.created_at, reverse=True)
        return [doc.model_copy(deep=True) for doc in active]

    async def list_by_status(self, status: DocumentStatus, *, limit: Optional[int] = None) -> List[TrainingDocument]:
        matches = [doc for doc in self._documents.values() if doc.is_active and doc.status == status]
        matches.sort(key=lambda doc: doc.created_at)
        if limit is not None:
            matches = matches[:limit]
        return [doc.model_copy(deep=True) for doc in matches]

    async def edit_document(self, document_id: str, changes: Dict[str, Any]) -> Optional[TrainingDocument]:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None or not document.is_active:
                return None
            update = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS}
            update.update(_pending_changes())
            update["version"] = document.version + 1
            return self._replace(document, update)

    async def reset_document(self, document_id: str) -> Optional[TrainingDocument]:
        return await self.edit_document(document_id, {})

    async def deactivate_document(self, document_id: str) -> Optional[TrainingDocument]:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return None
            return self._replace(
                document,
                {"is_active": False, "version": document.version + 1, "updated_at": utcnow()},
            )

    async def claim(self, document_id: str) -> Optional[TrainingDocument]:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None or not document.is_active or document.status != DocumentStatus.PENDING:
                return None
            now = utcnow()
            return self._replace(
                document,
                {
                    "status": DocumentStatus.PROCESSING,
                    "processing_started_at": now,
                    "progress": 0,
                    "error_message": None,
                    "updated_at": now,
                },
            )

    async def update_progress(self, document_id: str, version: int, progress: int) -> bool:
        async with self._lock:
            document = self._documents.get(document_id)
            if not self._holds_claim(document, version):
                return False
            self._replace(document, {"progress": progress, "updated_at": utcnow()})
            return True

    async def finish(
        self,
        document_id: str,
        version: int,
        status: DocumentStatus,
        *,
        content: Optional[str] = None,
        error_message: Optional[str] = None,
        file_metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TrainingDocument]:
        changes = _terminal_changes(status, content, error_message, file_metadata)
        async with self._lock:
            document = self._documents.get(document_id)
            if not self._holds_claim(document, version):
                return None
            return self._replace(document, changes)

    async def fail_stuck(self, document_id: str, started_before: datetime, message: str) -> Optional[TrainingDocument]:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None or document.status != DocumentStatus.PROCESSING:
                return None
            started = document.processing_started_at or document.updated_at
            if started >= started_before:
                return None
            ensure_transition(document.status, DocumentStatus.ERROR)
            return self._replace(
                document,
                {
                    "status": DocumentStatus.ERROR,
                    "error_message": message,
                    "processing_started_at": None,
                    "updated_at": utcnow(),
                },
            )

    @staticmethod
    def _holds_claim(document: Optional[TrainingDocument], version: int) -> bool:
        return (
            document is not None
            and document.is_active
            and document.status == DocumentStatus.PROCESSING
            and document.version == version
        )

    async def create_category(self, category: TrainingCategory) -> TrainingCategory:
        self._categories[category.id] = category.model_copy(deep=True)
        return category

    async def get_category(self, category_id: str) -> Optional[TrainingCategory]:
        category = self._categories.get(category_id)
        return category.model_copy(deep=True) if category is not None else None

    async def list_categories(self) -> List[TrainingCategory]:
        return sorted((c.model_copy(deep=True) for c in self._categories.values()), key=lambda c: c.name)

    async def update_category(self, category_id: str, changes: Dict[str, Any]) -> Optional[TrainingCategory]:
        category = self._categories.get(category_id)
        if category is None:
            return None
        update = {key: value for key, value in changes.items() if key in {"name", "description"}}
        update["updated_at"] = utcnow()
        updated = category.model_copy(update=update)
        self._categories[category_id] = updated
        return updated.model_copy(deep=True)

    async def delete_category(self, category_id: str) -> None:
        for association_id, association in list(self._associations.items()):
            if association.category_id == category_id:
                del self._associations[association_id]
        self._categories.pop(category_id, None)

    async def add_document_to_category(self, document_id: str, category_id: str) -> DocumentCategory:
        for association in self._associations.values():
            if association.document_id == document_id and association.category_id == category_id:
                return association
        association = DocumentCategory(document_id=document_id, category_id=category_id)
        self._associations[association.id] = association
        return association

    async def remove_document_from_category(self, document_id: str, category_id: str) -> None:
        for association_id, association in list(self._associations.items()):
            if association.document_id == document_id and association.category_id == category_id:
                del self._associations[association_id]
                break

    async def get_document_categories(self, document_id: str) -> List[TrainingCategory]:
        ids = {a.category_id for a in self._associations.values() if a.document_id == document_id}
        return [category for category in await self.list_categories() if category.id in ids]

    async def get_category_documents(self, category_id: str) -> List[TrainingDocument]:
        ids = {a.document_id for a in self._associations.values() if a.category_id == category_id}
        documents = [doc for doc in self._documents.values() if doc.is_active and doc.id in ids]
        return sorted((doc.model_copy(deep=True) for doc in documents), key=lambda doc: doc.name)

    async def replace_knowledge_entries(self, document_id: str, entries: Sequence[KnowledgeEntry]) -> int:
        self._knowledge[document_id] = [entry.model_copy(deep=True) for entry in entries]
        return len(entries)

    async def list_knowledge_entries(self, document_id: str) -> List[KnowledgeEntry]:
        entries = self._knowledge.get(document_id, [])
        return sorted((entry.model_copy(deep=True) for entry in entries), key=lambda e: e.chunk_index)


@contextlib.contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise DocumentStoreError(f"MongoDB {operation} failed: {exc}") from exc


def _to_record(model: Any) -> Dict[str, Any]:
    record = model.model_dump()
    record["_id"] = record.pop("id")
    if "status" in record:
        record["status"] = DocumentStatus(record["status"]).value
    return record


def _to_mongo_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    converted: Dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, DocumentStatus):
            value = value.value
        elif hasattr(value, "model_dump"):
            value = value.model_dump()
        converted[key] = value
    return converted


def _from_record(model_cls, record: Optional[Dict[str, Any]]):
    if record is None:
        return None
    data = dict(record)
    data["id"] = data.pop("_id")
    return model_cls.model_validate(data)


class MongoDocumentStore(DocumentStore):
    """MongoDB-backed store; claims and fenced writes use ``find_one_and_update``."""

    def __init__(self, database=None) -> None:
        if database is None:
            client = database_manager.mongodb
            if client is None:
                raise DocumentStoreError("MongoDB client unavailable; call database_manager.initialize() first")
            database = client[settings.MONGODB_DATABASE]
        self._db = database
        self._documents = database["training_documents"]
        self._categories = database["training_categories"]
        self._associations = database["document_categories"]
        self._knowledge = database["knowledge_base"]

    async def ensure_indexes(self) -> None:
        with _store_errors("index creation"):
            await self._documents.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
            await self._associations.create_index(
                [("document_id", ASCENDING), ("category_id", ASCENDING)], unique=True
            )
            await self._knowledge.create_index([("source_id", ASCENDING), ("chunk_index", ASCENDING)])

    async def create_document(self, document: TrainingDocument) -> TrainingDocument:
        with _store_errors("insert"):
            await self._documents.insert_one(_to_record(document))
        return document

    async def get_document(self, document_id: str, *, include_inactive: bool = False) -> Optional[TrainingDocument]:
        query: Dict[str, Any] = {"_id": document_id}
        if not include_inactive:
            query["is_active"] = True
        with _store_errors("lookup"):
            record = await self._documents.find_one(query)
        return _from_record(TrainingDocument, record)

    async def list_documents(self) -> List[TrainingDocument]:
        with _store_errors("list"):
            cursor = self._documents.find({"is_active": True}).sort("created_at", DESCENDING)
            return [_from_record(TrainingDocument, record) async for record in cursor]

    async def list_by_status(self, status: DocumentStatus, *, limit: Optional[int] = None) -> List[TrainingDocument]:
        with _store_errors("list"):
            cursor = self._documents.find({"is_active": True, "status": DocumentStatus(status).value})
            cursor = cursor.sort("created_at", ASCENDING)
            if limit is not None:
                cursor = cursor.limit(limit)
            return [_from_record(TrainingDocument, record) async for record in cursor]

    async def edit_document(self, document_id: str, changes: Dict[str, Any]) -> Optional[TrainingDocument]:
        update = {key: value for key, value in changes.items() if key in EDITABLE_FIELDS}
        update.update(_pending_changes())
        with _store_errors("edit"):
            record = await self._documents.find_one_and_update(
                {"_id": document_id, "is_active": True},
                {"$set": _to_mongo_changes(update), "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingDocument, record)

    async def reset_document(self, document_id: str) -> Optional[TrainingDocument]:
        return await self.edit_document(document_id, {})

    async def deactivate_document(self, document_id: str) -> Optional[TrainingDocument]:
        with _store_errors("deactivate"):
            record = await self._documents.find_one_and_update(
                {"_id": document_id},
                {"$set": {"is_active": False, "updated_at": utcnow()}, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingDocument, record)

    async def claim(self, document_id: str) -> Optional[TrainingDocument]:
        now = utcnow()
        with _store_errors("claim"):
            record = await self._documents.find_one_and_update(
                {"_id": document_id, "is_active": True, "status": DocumentStatus.PENDING.value},
                {
                    "$set": {
                        "status": DocumentStatus.PROCESSING.value,
                        "processing_started_at": now,
                        "progress": 0,
                        "error_message": None,
                        "updated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingDocument, record)

    def _claim_filter(self, document_id: str, version: int) -> Dict[str, Any]:
        return {
            "_id": document_id,
            "is_active": True,
            "status": DocumentStatus.PROCESSING.value,
            "version": version,
        }

    async def update_progress(self, document_id: str, version: int, progress: int) -> bool:
        with _store_errors("progress update"):
            result = await self._documents.update_one(
                self._claim_filter(document_id, version),
                {"$set": {"progress": progress, "updated_at": utcnow()}},
            )
        return result.modified_count == 1

    async def finish(
        self,
        document_id: str,
        version: int,
        status: DocumentStatus,
        *,
        content: Optional[str] = None,
        error_message: Optional[str] = None,
        file_metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TrainingDocument]:
        changes = _terminal_changes(status, content, error_message, file_metadata)
        with _store_errors("finish"):
            record = await self._documents.find_one_and_update(
                self._claim_filter(document_id, version),
                {"$set": _to_mongo_changes(changes)},
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingDocument, record)

    async def fail_stuck(self, document_id: str, started_before: datetime, message: str) -> Optional[TrainingDocument]:
        ensure_transition(DocumentStatus.PROCESSING, DocumentStatus.ERROR)
        with _store_errors("stuck recovery"):
            record = await self._documents.find_one_and_update(
                {
                    "_id": document_id,
                    "status": DocumentStatus.PROCESSING.value,
                    "$or": [
                        {"processing_started_at": {"$lt": started_before}},
                        {"processing_started_at": None, "updated_at": {"$lt": started_before}},
                    ],
                },
                {
                    "$set": {
                        "status": DocumentStatus.ERROR.value,
                        "error_message": message,
                        "processing_started_at": None,
                        "updated_at": utcnow(),
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingDocument, record)

    async def create_category(self, category: TrainingCategory) -> TrainingCategory:
        with _store_errors("insert"):
            await self._categories.insert_one(_to_record(category))
        return category

    async def get_category(self, category_id: str) -> Optional[TrainingCategory]:
        with _store_errors("lookup"):
            record = await self._categories.find_one({"_id": category_id})
        return _from_record(TrainingCategory, record)

    async def list_categories(self) -> List[TrainingCategory]:
        with _store_errors("list"):
            cursor = self._categories.find({}).sort("name", ASCENDING)
            return [_from_record(TrainingCategory, record) async for record in cursor]

    async def update_category(self, category_id: str, changes: Dict[str, Any]) -> Optional[TrainingCategory]:
        update = {key: value for key, value in changes.items() if key in {"name", "description"}}
        update["updated_at"] = utcnow()
        with _store_errors("update"):
            record = await self._categories.find_one_and_update(
                {"_id": category_id},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        return _from_record(TrainingCategory, record)

    async def delete_category(self, category_id: str) -> None:
        with _store_errors("delete"):
            await self._associations.delete_many({"category_id": category_id})
            await self._categories.delete_one({"_id": category_id})

    async def add_document_to_category(self, document_id: str, category_id: str) -> DocumentCategory:
        association = DocumentCategory(document_id=document_id, category_id=category_id)
        with _store_errors("insert"):
            try:
                await self._associations.insert_one(_to_record(association))
            except DuplicateKeyError:
                record = await self._associations.find_one({"document_id": document_id, "category_id": category_id})
                return _from_record(DocumentCategory, record)
        return association

    async def remove_document_from_category(self, document_id: str, category_id: str) -> None:
        with _store_errors("delete"):
            await self._associations.delete_one({"document_id": document_id, "category_id": category_id})

    async def get_document_categories(self, document_id: str) -> List[TrainingCategory]:
        with _store_errors("list"):
            ids = await self._associations.distinct("category_id", {"document_id": document_id})
            cursor = self._categories.find({"_id": {"$in": ids}}).sort("name", ASCENDING)
            return [_from_record(TrainingCategory, record) async for record in cursor]

    async def get_category_documents(self, category_id: str) -> List[TrainingDocument]:
        with _store_errors("list"):
            ids = await self._associations.distinct("document_id", {"category_id": category_id})
            cursor = self._documents.find({"_id": {"$in": ids}, "is_active": True}).sort("name", ASCENDING)
            return [_from_record(TrainingDocument, record) async for record in cursor]

    async def replace_knowledge_entries(self, document_id: str, entries: Sequence[KnowledgeEntry]) -> int:
        with _store_errors("knowledge write"):
            await self._knowledge.delete_many({"source_id": document_id})
            if entries:
                await self._knowledge.insert_many([_to_record(entry) for entry in entries])
        return len(entries)

    async def list_knowledge_entries(self, document_id: str) -> List[KnowledgeEntry]:
        with _store_errors("list"):
            cursor = self._knowledge.find({"source_id": document_id}).sort("chunk_index", ASCENDING)
            return [_from_record(KnowledgeEntry, record) async for record in cursor]


def create_document_store() -> DocumentStore:
    """Build the store selected by ``DOCUMENT_STORE_BACKEND``."""

    backend = (settings.DOCUMENT_STORE_BACKEND or "memory").lower()
    logger.info("Using %s document store", backend)
    if backend == "mongodb":
        return MongoDocumentStore()
    return InMemoryDocumentStore()


__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "MongoDocumentStore",
    "create_document_store",
]
