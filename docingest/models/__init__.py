from .document import (
    DocumentCategory,
    DocumentSource,
    DocumentStatus,
    DocumentType,
    ExtractionFailure,
    ExtractionResult,
    ExtractionSuccess,
    FailureKind,
    FileSource,
    ImageSource,
    KnowledgeEntry,
    TextSource,
    TrainingCategory,
    TrainingDocument,
    WebsiteSource,
    parse_source,
    source_from_descriptor,
)

__all__ = [
    "DocumentCategory",
    "DocumentSource",
    "DocumentStatus",
    "DocumentType",
    "ExtractionFailure",
    "ExtractionResult",
    "ExtractionSuccess",
    "FailureKind",
    "FileSource",
    "ImageSource",
    "KnowledgeEntry",
    "TextSource",
    "TrainingCategory",
    "TrainingDocument",
    "WebsiteSource",
    "parse_source",
    "source_from_descriptor",
]
