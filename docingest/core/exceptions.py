"""Custom exception hierarchy for DocIngest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class DocIngestError(Exception):
    """Base class for pipeline errors with structured payloads."""

    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.details:
            return f"{base} :: {self.details}"
        return base


class DocumentNotFoundError(DocIngestError):
    """Raised when a document id does not resolve to an active document."""

    def __init__(self, document_id: str) -> None:
        super().__init__("document_not_found", f"Document {document_id} not found", {"document_id": document_id})


class CategoryNotFoundError(DocIngestError):
    """Raised when a category id does not resolve."""

    def __init__(self, category_id: str) -> None:
        super().__init__("category_not_found", f"Category {category_id} not found", {"category_id": category_id})


class InvalidStatusTransition(DocIngestError):
    """Raised when a status change is not an edge of the ingestion state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            "invalid_status_transition",
            f"Cannot move document from {current} to {target}",
            {"current": current, "target": target},
        )


class DocumentStoreError(DocIngestError):
    """Raised when the backing document store cannot serve a request."""

    def __init__(self, message: str) -> None:
        super().__init__("document_store_error", message)


class ExtractionError(DocIngestError):
    """Raised by a format extractor that cannot produce text.

    ``kind`` is one of the ``FailureKind`` values from
    ``docingest.models.document``.
    """

    def __init__(self, kind: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(kind, message, dict(details or {}))

    @property
    def kind(self) -> str:
        return self.error_code

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"
