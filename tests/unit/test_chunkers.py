import hashlib

import pytest

from docingest.knowledge.ingestion.chunkers import SECTION_CHUNKING_MIN_LENGTH, TextChunker


def test_short_text_is_a_single_chunk():
    chunks = TextChunker().chunk("First paragraph.\n\nSecond paragraph.", chunk_size=200, overlap=20)

    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].content == "First paragraph.\n\nSecond paragraph."
    assert chunks[0].content_hash == hashlib.sha256(chunks[0].content.encode("utf-8")).hexdigest()


def test_paragraphs_are_packed_with_overlap():
    paragraphs = [f"Paragraph {i} " + "word " * 15 for i in range(8)]
    text = "\n\n".join(p.strip() for p in paragraphs)

    chunks = TextChunker().chunk(text, chunk_size=200, overlap=30)

    assert len(chunks) > 1
    assert [chunk.index for chunk in chunks] == list(range(len(chunks)))
    assert all(len(chunk.content) <= 200 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        head = current.content.split("\n\n", 1)[0]
        assert previous.content.endswith(head)


def test_oversized_paragraph_is_split_on_sentences_then_wrapped():
    text = "Short sentence. " * 20 + "x" * 120

    chunks = TextChunker().chunk(text, chunk_size=50, overlap=0)

    assert all(len(chunk.content) <= 50 for chunk in chunks)
    assert "".join(chunk.content for chunk in chunks).count("x") == 120


def test_empty_text_has_no_chunks():
    assert TextChunker().chunk("  \n\n  ") == []


def test_rejects_non_positive_chunk_size():
    with pytest.raises(ValueError):
        TextChunker().chunk("text", chunk_size=0)


def sectioned_text(count=3):
    sections = []
    for number in range(1, count + 1):
        body = [f"Section {number} part {part} " * 30 for part in ("a", "b")]
        sections.append("\n\n".join([f"## Section {number} ##"] + [paragraph.strip() for paragraph in body]))
    return "\n\n".join(sections)


def test_long_structured_document_keeps_headings_with_their_body():
    text = sectioned_text()
    assert len(text) >= SECTION_CHUNKING_MIN_LENGTH

    chunks = TextChunker().chunk_document(text, structured=True, chunk_size=1500, overlap=150)

    assert len(chunks) == 3
    for number, chunk in enumerate(chunks, start=1):
        assert chunk.content.startswith(f"## Section {number} ##")
        assert f"Section {number} part b" in chunk.content
        assert len(chunk.content) <= 1500


def test_paragraph_packing_splits_heading_from_body():
    text = sectioned_text()

    chunks = TextChunker().chunk_document(text, structured=False, chunk_size=1500, overlap=150)

    assert chunks == TextChunker().chunk(text, chunk_size=1500, overlap=150)
    assert chunks[0].content.endswith("## Section 2 ##")


def test_short_or_unsectioned_documents_fall_back_to_paragraphs():
    chunker = TextChunker()
    short = sectioned_text(count=1)
    plain = "\n\n".join(f"Plain paragraph {i} " * 25 for i in range(10))
    assert len(plain) >= SECTION_CHUNKING_MIN_LENGTH

    for text in (short, plain):
        assert chunker.chunk_document(text, structured=True, chunk_size=500, overlap=50) == chunker.chunk(
            text, chunk_size=500, overlap=50
        )


def test_oversized_section_is_packed_by_paragraph():
    text = "## Intro ##\n\n" + "Intro text. " * 20 + "\n\n## Long ##\n\n" + "\n\n".join(
        f"Long paragraph {i} " * 10 for i in range(20)
    )

    chunks = TextChunker().chunk_document(text, structured=True, chunk_size=400, overlap=0)

    assert chunks[0].content.startswith("## Intro ##")
    assert chunks[1].content.startswith("## Long ##")
    assert all(len(chunk.content) <= 400 for chunk in chunks)


def test_split_sections_recognises_heading_styles():
    text = "Preface\n\nCHAPTER 1 Start\nbody one\n\n2. Second step\nbody two\n\n# Appendix\nbody three"

    assert TextChunker().split_sections(text) == [
        "Preface",
        "CHAPTER 1 Start\nbody one",
        "2. Second step\nbody two",
        "# Appendix\nbody three",
    ]
