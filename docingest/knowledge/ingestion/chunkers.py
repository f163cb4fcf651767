"""Text chunking utilities."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import List

# Texts shorter than this are always packed paragraph by paragraph.
SECTION_CHUNKING_MIN_LENGTH = 3000


@dataclass(frozen=True)
class KnowledgeChunk:
    index: int
    content: str
    content_hash: str


class TextChunker:
    """Paragraph-aware chunking with a character overlap between neighbours.

    Long structured documents can instead be cut at section headings (the
    ``## heading ##`` markers emitted by the DOCX extractor, markdown headings,
    upper-case CHAPTER/SECTION/PART/MODULE labels and ``1.`` style numbering)
    so that a heading and its body land in the same chunk.
    """

    paragraph_pattern = re.compile(r"\n\s*\n")
    sentence_pattern = re.compile(r"(?<=[.!?])\s+")
    section_pattern = re.compile(r"^(?=(?:#{1,4}|CHAPTER|SECTION|PART|MODULE|[0-9]+\.)\s+\S)", re.MULTILINE)

    def chunk(self, text: str, *, chunk_size: int = 1500, overlap: int = 150) -> List[KnowledgeChunk]:
        _check_size(chunk_size)
        return _to_chunks(self._pack(text, chunk_size, _clamp(overlap, chunk_size)))

    def chunk_document(
        self,
        text: str,
        *,
        structured: bool,
        chunk_size: int = 1500,
        overlap: int = 150,
    ) -> List[KnowledgeChunk]:
        """Pick a strategy from the document kind and length.

        Structured (file) documents of at least ``SECTION_CHUNKING_MIN_LENGTH``
        characters are chunked by section; everything else, and any text in
        which fewer than two sections are found, is packed by paragraph.
        """

        _check_size(chunk_size)
        overlap = _clamp(overlap, chunk_size)
        if structured and len(text.strip()) >= SECTION_CHUNKING_MIN_LENGTH:
            sections = self.split_sections(text)
            if len(sections) > 1:
                return _to_chunks(self._pack_sections(sections, chunk_size, overlap))
        return _to_chunks(self._pack(text, chunk_size, overlap))

    def split_sections(self, text: str) -> List[str]:
        sections = [section.strip() for section in self.section_pattern.split(text.strip())]
        return [section for section in sections if section]

    def _pack_sections(self, sections: List[str], chunk_size: int, overlap: int) -> List[str]:
        bodies: List[str] = []
        current = ""
        for section in sections:
            if len(section) > chunk_size:
                if current:
                    bodies.append(current)
                    current = ""
                bodies.extend(self._pack(section, chunk_size, overlap))
                continue
            candidate = f"{current}\n\n{section}" if current else section
            if len(candidate) <= chunk_size:
                current = candidate
            else:
                bodies.append(current)
                current = section
        if current:
            bodies.append(current)
        return bodies

    def _pack(self, text: str, chunk_size: int, overlap: int) -> List[str]:
        pieces: List[str] = []
        for paragraph in self.paragraph_pattern.split(text.strip()):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) <= chunk_size:
                pieces.append(paragraph)
            else:
                pieces.extend(self._split_long(paragraph, chunk_size))

        bodies: List[str] = []
        current = ""
        for piece in pieces:
            candidate = f"{current}\n\n{piece}" if current else piece
            if len(candidate) <= chunk_size:
                current = candidate
                continue
            bodies.append(current)
            tail = self._tail(current, overlap)
            current = f"{tail}\n\n{piece}" if tail and len(tail) + len(piece) + 2 <= chunk_size else piece
        if current:
            bodies.append(current)
        return bodies

    def _split_long(self, paragraph: str, chunk_size: int) -> List[str]:
        parts: List[str] = []
        current = ""
        for sentence in self.sentence_pattern.split(paragraph):
            while len(sentence) > chunk_size:
                if current:
                    parts.append(current)
                    current = ""
                parts.append(sentence[:chunk_size])
                sentence = sentence[chunk_size:]
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= chunk_size:
                current = candidate
            else:
                parts.append(current)
                current = sentence
        if current:
            parts.append(current)
        return parts

    @staticmethod
    def _tail(body: str, overlap: int) -> str:
        if overlap <= 0:
            return ""
        tail = body[-overlap:]
        # Start the overlap on a word boundary when one is available.
        space = tail.find(" ")
        if 0 <= space < len(tail) - 1:
            tail = tail[space + 1 :]
        return tail.strip()


def _check_size(chunk_size: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")


def _clamp(overlap: int, chunk_size: int) -> int:
    return max(0, min(overlap, chunk_size - 1))


def _to_chunks(bodies: List[str]) -> List[KnowledgeChunk]:
    return [
        KnowledgeChunk(
            index=index,
            content=body,
            content_hash=hashlib.sha256(body.encode("utf-8")).hexdigest(),
        )
        for index, body in enumerate(bodies)
    ]
