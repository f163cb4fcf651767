"""Training document data model definitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class DocumentType(str, Enum):
    """Declared type of a training document."""

    TEXT = "text"
    FILE = "file"
    WEBSITE = "website"
    IMAGE = "image"


class DocumentStatus(str, Enum):
    """Ingestion lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    INDEXED = "indexed"
    ERROR = "error"


class TextSource(BaseModel):
    type: Literal["text"] = "text"
    content: str


class FileSource(BaseModel):
    type: Literal["file"] = "file"
    file_path: str = Field(..., min_length=1, description="Stable path of the uploaded file")

    @property
    def extension(self) -> str:
        return PurePosixPath(self.file_path.replace("\\", "/")).suffix.lower()


class WebsiteSource(BaseModel):
    type: Literal["website"] = "website"
    url: str = Field(..., min_length=1)


class ImageSource(BaseModel):
    type: Literal["image"] = "image"
    file_path: str = Field(..., min_length=1)


DocumentSource = Annotated[
    Union[TextSource, FileSource, WebsiteSource, ImageSource],
    Field(discriminator="type"),
]

_source_adapter: TypeAdapter[DocumentSource] = TypeAdapter(DocumentSource)


def parse_source(value: Any) -> DocumentSource:
    """Validate a source model or ``{"type": ..., ...}`` mapping."""

    return _source_adapter.validate_python(value)


def source_from_descriptor(
    document_type: str,
    *,
    content: Optional[str] = None,
    file_path: Optional[str] = None,
    website_url: Optional[str] = None,
) -> DocumentSource:
    """Build the tagged source from a loose ``{type, content?, file_path?, website_url?}`` descriptor.

    Raises ``ValueError`` when the locator for the declared type is missing or
    when a locator belonging to another type is also populated.
    """

    doc_type = DocumentType(document_type)
    provided = {
        "content": content,
        "file_path": file_path,
        "website_url": website_url,
    }
    expected = {
        DocumentType.TEXT: "content",
        DocumentType.FILE: "file_path",
        DocumentType.WEBSITE: "website_url",
        DocumentType.IMAGE: "file_path",
    }[doc_type]

    extras = [key for key, value in provided.items() if value is not None and key != expected]
    if extras:
        raise ValueError(f"{doc_type.value} documents must not set {', '.join(extras)}")
    if provided[expected] is None:
        raise ValueError(f"{expected} is required for {doc_type.value} documents")

    payload: Dict[str, Any] = {"type": doc_type.value}
    if doc_type is DocumentType.TEXT:
        payload["content"] = content
    elif doc_type is DocumentType.WEBSITE:
        payload["url"] = website_url
    else:
        payload["file_path"] = file_path
    return _source_adapter.validate_python(payload)


class TrainingDocument(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    source: DocumentSource
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    content: str = Field("", description="Normalized extracted text")
    created_by: Optional[str] = Field(None, description="Owning account")
    is_active: bool = True
    version: int = Field(0, description="Bumped by every edit or reset; fences in-flight processing results")
    processing_started_at: Optional[datetime] = None
    file_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def document_type(self) -> DocumentType:
        return DocumentType(self.source.type)


class TrainingCategory(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DocumentCategory(BaseModel):
    id: str = Field(default_factory=new_id)
    document_id: str
    category_id: str


class KnowledgeEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    source_id: str = Field(..., description="Owning training document")
    chunk_index: int
    content: str
    embedding: List[float] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class FailureKind(str, Enum):
    """Why an extraction produced no text."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    UNSUPPORTED_TYPE = "unsupported_type"
    MISSING_CONTENT = "missing_content"
    FILE_NOT_FOUND = "file_not_found"
    CORRUPT_DOCUMENT = "corrupt_document"
    FETCH_FAILED = "fetch_failed"
    TIMEOUT = "timeout"
    UNEXPECTED = "unexpected"


class ExtractionSuccess(BaseModel):
    ok: Literal[True] = True
    text: str


class ExtractionFailure(BaseModel):
    ok: Literal[False] = False
    kind: FailureKind
    message: str
    extension: Optional[str] = None

    @field_validator("message")
    def _strip_message(cls, value: str) -> str:
        return value.strip() or "unknown error"

    @property
    def placeholder(self) -> str:
        """Legacy sentinel text for collaborators that only accept a string."""

        if self.kind is FailureKind.UNSUPPORTED_FORMAT and self.extension is not None:
            return f"[Unsupported content for file type {self.extension or '(none)'}]"
        if self.kind in {FailureKind.MISSING_CONTENT, FailureKind.UNSUPPORTED_TYPE}:
            return "[Content unavailable or unsupported document type]"
        if self.kind is FailureKind.FETCH_FAILED:
            return f"[Website content could not be extracted: {self.message}]"
        return f"[Error processing content: {self.message}]"

    def describe(self) -> str:
        return f"{self.kind.value}: {self.message}"


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]
