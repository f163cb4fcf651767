"""Route a training document to the extractor for its declared type."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from opentelemetry import trace

from docingest.core.config import settings
from docingest.core.exceptions import ExtractionError
from docingest.knowledge.ingestion.parsers import DocumentParser
from docingest.models.document import (
    DocumentSource,
    DocumentType,
    ExtractionFailure,
    ExtractionResult,
    ExtractionSuccess,
    FailureKind,
    FileSource,
    ImageSource,
    TextSource,
    WebsiteSource,
    source_from_descriptor,
)
from docingest.utils.monitoring import observe_extraction

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DocumentDispatcher:
    """Single entry point from a document source to an :data:`ExtractionResult`.

    The dispatcher never raises: extractor errors, unexpected exceptions and
    timeouts all come back as :class:`ExtractionFailure`.
    """

    def __init__(self, parser: Optional[DocumentParser] = None, *, timeout: Optional[float] = None) -> None:
        self.parser = parser or DocumentParser()
        self.timeout = timeout if timeout is not None else settings.DOCUMENT_PROCESSING_TIMEOUT_SECONDS

    async def dispatch(self, source: DocumentSource) -> ExtractionResult:
        format_name = _format_label(source)
        started = time.perf_counter()
        with tracer.start_as_current_span("document.extract") as span:
            span.set_attribute("document.type", source.type)
            span.set_attribute("document.format", format_name)
            result = await self._dispatch(source)
            span.set_attribute("extraction.ok", result.ok)
            if isinstance(result, ExtractionFailure):
                span.set_attribute("extraction.failure_kind", result.kind.value)
            else:
                span.set_attribute("extraction.characters", len(result.text))

        outcome = "success" if result.ok else result.kind.value
        observe_extraction(format_name, outcome, time.perf_counter() - started)
        return result

    async def _dispatch(self, source: DocumentSource) -> ExtractionResult:
        if isinstance(source, TextSource):
            return ExtractionSuccess(text=source.content.strip())

        if isinstance(source, ImageSource):
            return ExtractionFailure(
                kind=FailureKind.UNSUPPORTED_TYPE,
                message="image documents carry no extractable text",
            )

        if isinstance(source, FileSource):
            extension = source.extension
            if not self.parser.supports(extension):
                logger.warning("Unprocessable file type %s for %s", extension or "(none)", source.file_path)
                return ExtractionFailure(
                    kind=FailureKind.UNSUPPORTED_FORMAT,
                    message=f"files of type {extension or '(none)'} cannot be processed",
                    extension=extension,
                )
            return await self._guarded(self.parser.extract_file(source.file_path), source.file_path)

        if isinstance(source, WebsiteSource):
            return await self._guarded(self.parser.extract_website(source.url), source.url)

        return _content_unavailable()

    async def _guarded(self, extraction, locator: str) -> ExtractionResult:
        try:
            text = await asyncio.wait_for(extraction, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Extraction of %s exceeded %ss", locator, self.timeout)
            return ExtractionFailure(
                kind=FailureKind.TIMEOUT,
                message=f"extraction exceeded {self.timeout:g} seconds",
            )
        except ExtractionError as exc:
            logger.error("Extraction of %s failed: %s", locator, exc)
            return ExtractionFailure(
                kind=FailureKind(exc.kind),
                message=exc.message,
                extension=exc.details.get("extension"),
            )
        except Exception as exc:
            logger.exception("Unexpected error while extracting %s", locator)
            return ExtractionFailure(kind=FailureKind.UNEXPECTED, message=str(exc) or exc.__class__.__name__)
        return ExtractionSuccess(text=text)


def _content_unavailable() -> ExtractionFailure:
    return ExtractionFailure(
        kind=FailureKind.MISSING_CONTENT,
        message="content unavailable for this document",
    )


def _format_label(source: DocumentSource) -> str:
    if isinstance(source, FileSource):
        return source.extension.lstrip(".") or "unknown"
    return source.type


async def process_document_content(
    document_type: str,
    file_path: Optional[str] = None,
    website_url: Optional[str] = None,
    text_content: Optional[str] = None,
    *,
    dispatcher: Optional[DocumentDispatcher] = None,
) -> ExtractionResult:
    """Extract text from a loose ``{type, file_path?, website_url?, text_content?}`` descriptor.

    A descriptor whose locator is missing, or whose type is unknown, yields a
    ``missing_content`` failure instead of an exception.
    """

    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        return _content_unavailable()

    locators = {
        DocumentType.TEXT: {"content": text_content},
        DocumentType.FILE: {"file_path": file_path},
        DocumentType.WEBSITE: {"website_url": website_url},
        DocumentType.IMAGE: {"file_path": file_path},
    }[doc_type]
    if not any(locators.values()):
        return _content_unavailable()

    source = source_from_descriptor(doc_type.value, **locators)
    return await (dispatcher or DocumentDispatcher()).dispatch(source)


__all__ = ["DocumentDispatcher", "process_document_content"]
