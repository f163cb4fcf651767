"""Format-aware text extractors for training documents."""

from __future__ import annotations

import asyncio
import html
import logging
import zipfile
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Union

import httpx
import pdfplumber
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph

from docingest.core.config import settings
from docingest.core.exceptions import ExtractionError
from docingest.knowledge.ingestion.normalizer import (
    collapse_inline_whitespace,
    collapse_whitespace,
    deduplicate_lines,
    normalize_text,
    strip_control_characters,
)
from docingest.models.document import FailureKind

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

_HEADING_TAGS = {
    "Title": "h1",
    "Heading 1": "h1",
    "Heading 2": "h2",
    "Heading 3": "h3",
}
_HEADING_MARKERS = {"h1": "##", "h2": "###", "h3": "####"}


def resolve_upload_path(file_path: PathLike, upload_root: Optional[PathLike] = None) -> Path:
    """Map a stored file locator onto the local filesystem.

    Upload handlers store paths such as ``/uploads/<name>``; those are resolved
    under ``UPLOAD_ROOT``. Paths that already exist are returned untouched.
    """

    candidate = Path(file_path)
    if candidate.is_file():
        return candidate
    relative = str(file_path).replace("\\", "/").lstrip("/")
    if relative.startswith("uploads/"):
        relative = relative[len("uploads/") :]
    return Path(upload_root if upload_root is not None else settings.UPLOAD_ROOT) / relative


class DocumentParser:
    """Convert files and websites into normalized UTF-8 text.

    Each ``extract_*`` coroutine either returns normalized text (possibly
    empty) or raises :class:`ExtractionError`. Blocking parser libraries run in
    a worker thread.
    """

    def __init__(
        self,
        *,
        upload_root: Optional[PathLike] = None,
        fetch_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.upload_root = Path(upload_root) if upload_root is not None else settings.UPLOAD_ROOT
        self.fetch_timeout = fetch_timeout if fetch_timeout is not None else settings.WEBSITE_FETCH_TIMEOUT_SECONDS
        self._transport = transport
        self.file_extractors: Dict[str, Callable[[Path], Awaitable[str]]] = {
            ".pdf": self.extract_pdf,
            ".txt": self.extract_txt,
            ".docx": self.extract_docx,
            ".doc": self.extract_doc,
        }

    def supports(self, extension: str) -> bool:
        return extension.lower() in self.file_extractors

    async def extract_file(self, file_path: PathLike) -> str:
        path = resolve_upload_path(file_path, self.upload_root)
        extension = path.suffix.lower()
        extractor = self.file_extractors.get(extension)
        if extractor is None:
            raise ExtractionError(
                FailureKind.UNSUPPORTED_FORMAT.value,
                f"files of type {extension or '(none)'} cannot be processed",
                {"extension": extension},
            )
        return await extractor(path)

    async def extract_pdf(self, file_path: PathLike) -> str:
        path = self._require_file(file_path)

        def extract() -> str:
            try:
                with pdfplumber.open(path) as pdf:
                    pages = [page.extract_text() or "" for page in pdf.pages]
            except Exception as exc:
                raise ExtractionError(
                    FailureKind.CORRUPT_DOCUMENT.value,
                    f"unreadable PDF {path.name}: {exc}",
                ) from exc
            return "\f".join(pages)

        text = normalize_text(await asyncio.to_thread(extract))
        logger.info("PDF %s processed: %s characters extracted", path.name, len(text))
        return text

    async def extract_txt(self, file_path: PathLike) -> str:
        path = self._require_file(file_path)
        raw = await asyncio.to_thread(path.read_bytes)
        content = raw.decode("utf-8", errors="replace").lstrip("\ufeff")
        text = normalize_text(strip_control_characters(content))
        logger.info("TXT %s processed: %s characters extracted", path.name, len(text))
        return text

    async def extract_docx(self, file_path: PathLike) -> str:
        path = self._require_file(file_path)

        def extract() -> tuple[str, str]:
            try:
                document = DocxDocument(str(path))
            except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
                raise ExtractionError(
                    FailureKind.CORRUPT_DOCUMENT.value,
                    f"{path.name} is not a valid Word document: {exc}",
                ) from exc
            blocks = list(document.iter_inner_content())
            return docx_blocks_to_html(blocks), docx_blocks_to_raw_text(blocks)

        markup, raw_text = await asyncio.to_thread(extract)
        structured = html_to_structured_text(markup)
        text = merge_docx_passes(structured, raw_text)
        logger.info("DOCX %s processed: %s characters extracted", path.name, len(text))
        return text

    async def extract_doc(self, file_path: PathLike) -> str:
        """Handle ``.doc`` uploads: OOXML payloads are parsed, legacy binaries rejected."""

        path = self._require_file(file_path)
        with open(path, "rb") as handle:
            header = handle.read(8)
        if header.startswith(_ZIP_MAGIC):
            return await self.extract_docx(path)
        if header.startswith(_OLE_MAGIC):
            reason = "legacy binary Word (.doc) files are not supported; convert to .docx"
        else:
            reason = "unrecognised .doc payload"
        raise ExtractionError(FailureKind.UNSUPPORTED_FORMAT.value, reason, {"extension": ".doc"})

    async def extract_website(self, url: str) -> str:
        url = url.strip()
        if not url.lower().startswith(("http://", "https://")):
            url = f"https://{url}"
        logger.info("Fetching website content from %s", url)

        try:
            async with httpx.AsyncClient(
                timeout=self.fetch_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                body = response.text
        except httpx.TimeoutException as exc:
            raise ExtractionError(FailureKind.TIMEOUT.value, f"timed out fetching {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(
                FailureKind.FETCH_FAILED.value,
                f"{url} answered HTTP {exc.response.status_code}",
                {"status_code": exc.response.status_code},
            ) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ExtractionError(FailureKind.FETCH_FAILED.value, f"could not fetch {url}: {exc}") from exc

        text = html_to_plain_text(body)
        logger.info("Website %s processed: %s characters extracted", url, len(text))
        return text

    def _require_file(self, file_path: PathLike) -> Path:
        path = resolve_upload_path(file_path, self.upload_root)
        if not path.is_file():
            raise ExtractionError(FailureKind.FILE_NOT_FOUND.value, f"file {path} does not exist")
        return path


def html_to_plain_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return collapse_whitespace(soup.get_text(separator=" "))


def _paragraph_tag(paragraph: Paragraph) -> str:
    style_name = getattr(paragraph.style, "name", "") or ""
    if style_name in _HEADING_TAGS:
        return _HEADING_TAGS[style_name]
    if style_name.startswith("Heading "):
        return "h3"
    properties = paragraph._p.pPr
    if style_name.startswith("List") or (properties is not None and properties.numPr is not None):
        return "li"
    return "p"


def docx_blocks_to_html(blocks: List[Union[Paragraph, Table]]) -> str:
    """Render paragraphs and tables as a flat HTML fragment in document order."""

    parts: List[str] = []
    in_list = False
    for block in blocks:
        if isinstance(block, Paragraph):
            text = block.text.strip()
            if not text:
                continue
            tag = _paragraph_tag(block)
            if tag == "li" and not in_list:
                parts.append("<ul>")
                in_list = True
            elif tag != "li" and in_list:
                parts.append("</ul>")
                in_list = False
            parts.append(f"<{tag}>{html.escape(text)}</{tag}>")
            continue

        if in_list:
            parts.append("</ul>")
            in_list = False
        rows = []
        for row in block.rows:
            cells = "".join(f"<td>{html.escape(cell.text.strip())}</td>" for cell in row.cells)
            rows.append(f"<tr>{cells}</tr>")
        parts.append(f"<table>{''.join(rows)}</table>")

    if in_list:
        parts.append("</ul>")
    return "".join(parts)


def docx_blocks_to_raw_text(blocks: List[Union[Paragraph, Table]]) -> str:
    lines: List[str] = []
    for block in blocks:
        if isinstance(block, Paragraph):
            lines.append(block.text)
            continue
        for row in block.rows:
            for cell in row.cells:
                lines.append(cell.text)
    return "\n\n".join(line.strip() for line in lines if line.strip())


def html_to_structured_text(markup: str) -> str:
    """Convert the DOCX HTML fragment to text with heading, bullet and table markers."""

    soup = BeautifulSoup(markup, "html.parser")
    blocks: List[str] = []
    for element in soup.find_all(["h1", "h2", "h3", "ul", "table", "p"], recursive=False):
        name = element.name
        if name in _HEADING_MARKERS:
            marker = _HEADING_MARKERS[name]
            blocks.append(f"{marker} {element.get_text(' ', strip=True)} {marker}")
        elif name == "ul":
            items = [f"• {item.get_text(' ', strip=True)}" for item in element.find_all("li")]
            blocks.append("\n".join(items))
        elif name == "table":
            rows = []
            for row in element.find_all("tr"):
                cells = [cell.get_text(" ", strip=True) for cell in row.find_all("td")]
                rows.append("| " + " | ".join(cells))
            blocks.append("\n".join(rows))
        else:
            blocks.append(element.get_text(" ", strip=True))
    return "\n\n".join(block for block in blocks if block)


def merge_docx_passes(structured: str, raw_text: str) -> str:
    combined = collapse_inline_whitespace(normalize_text(f"{structured}\n\n{raw_text}"))
    return normalize_text(deduplicate_lines(combined))


__all__ = [
    "DocumentParser",
    "docx_blocks_to_html",
    "docx_blocks_to_raw_text",
    "html_to_plain_text",
    "html_to_structured_text",
    "merge_docx_passes",
    "resolve_upload_path",
]
