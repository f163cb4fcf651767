import pytest
from pydantic import ValidationError

from docingest.models.document import (
    DocumentStatus,
    DocumentType,
    ExtractionFailure,
    FailureKind,
    FileSource,
    TextSource,
    TrainingDocument,
    WebsiteSource,
    parse_source,
    source_from_descriptor,
)


def test_source_from_descriptor_builds_tagged_source():
    assert source_from_descriptor("website", website_url="example.com") == WebsiteSource(url="example.com")
    assert source_from_descriptor("text", content="body") == TextSource(content="body")


def test_source_from_descriptor_rejects_mismatched_locators():
    with pytest.raises(ValueError):
        source_from_descriptor("file")
    with pytest.raises(ValueError):
        source_from_descriptor("file", file_path="/uploads/a.pdf", website_url="https://example.com")


def test_parse_source_accepts_mappings():
    source = parse_source({"type": "file", "file_path": "/uploads/Report.PDF"})

    assert isinstance(source, FileSource)
    assert source.extension == ".pdf"


def test_parse_source_rejects_unknown_type():
    with pytest.raises(ValidationError):
        parse_source({"type": "video", "url": "x"})


def test_file_extension_handles_windows_paths_and_missing_suffix():
    assert FileSource(file_path="C:\\uploads\\Notes.Docx").extension == ".docx"
    assert FileSource(file_path="/uploads/README").extension == ""


def test_new_document_defaults():
    document = TrainingDocument(name="Handbook", source=TextSource(content="hi"))

    assert document.status is DocumentStatus.PENDING
    assert document.document_type is DocumentType.TEXT
    assert document.version == 0
    assert document.is_active
    assert document.error_message is None


def test_failure_placeholders():
    assert (
        ExtractionFailure(kind=FailureKind.UNSUPPORTED_FORMAT, message="nope", extension=".xyz").placeholder
        == "[Unsupported content for file type .xyz]"
    )
    assert (
        ExtractionFailure(kind=FailureKind.FETCH_FAILED, message="dns error").placeholder
        == "[Website content could not be extracted: dns error]"
    )
    assert (
        ExtractionFailure(kind=FailureKind.CORRUPT_DOCUMENT, message="bad").placeholder
        == "[Error processing content: bad]"
    )


def test_failure_message_never_blank():
    failure = ExtractionFailure(kind=FailureKind.UNEXPECTED, message="   ")

    assert failure.message == "unknown error"
    assert failure.describe() == "unexpected: unknown error"


def test_unsupported_placeholder_names_missing_extension():
    failure = ExtractionFailure(kind=FailureKind.UNSUPPORTED_FORMAT, message="no suffix", extension="")

    assert failure.placeholder == "[Unsupported content for file type (none)]"
