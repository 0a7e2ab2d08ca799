"""Manuscript ingestion: turn an uploaded file into plain text plus preview images.

Dispatch is by filename extension only. The declared content type of the
upload is never consulted.
"""

import base64
import io
import logging
import re
import zipfile
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Tuple
from xml.etree import ElementTree

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import BookImage

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ('pdf', 'docx', 'odt', 'rtf', 'txt', 'md', 'markdown', 'ods', 'odp')
PREVIEW_PAGES = 3
# Rough average for English prose including whitespace
BYTES_PER_WORD = 6


class UnsupportedFileTypeError(ValueError):
    def __init__(self, extension):
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or '(none)'}")


class ProcessedDocument(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str
    images: List[BookImage] = []
    word_count: int
    summary: str
    extraction_degraded: bool = False


def get_extension(filename: str) -> str:
    name = (filename or "").lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1]


def validate_file_type(filename: str) -> bool:
    return get_extension(filename) in ALLOWED_EXTENSIONS


def calculate_word_count(text: str) -> int:
    return len([w for w in re.split(r'\s+', (text or "").strip()) if w])


# ====== EXTRACTORS ======

class Extractor(ABC):
    label = "Document"

    @abstractmethod
    def extract(self, data: bytes) -> Tuple[str, List[BookImage]]: ...

    def summarize(self, text, images, word_count):
        return f"{self.label} document with {word_count} words"


class TextExtractor(Extractor):
    label = "Text"

    def extract(self, data):
        return data.decode("utf-8", errors="replace").strip(), []


class PdfExtractor(Extractor):
    label = "PDF"

    def __init__(self):
        self.page_count = 0

    def extract(self, data):
        import pdfplumber

        pages = []
        images = []
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            self.page_count = len(pdf.pages)
            for page_num, page in enumerate(pdf.pages, start=1):
                pages.append(page.extract_text() or "")
                if page_num <= PREVIEW_PAGES:
                    images.append(_render_page(page, page_num))
        return "\n\n".join(pages).strip(), [img for img in images if img]

    def summarize(self, text, images, word_count):
        return f"PDF document with {self.page_count} pages and {word_count} words"


def _render_page(page, page_num):
    try:
        rendered = page.to_image(resolution=72).original
        buf = io.BytesIO()
        rendered.save(buf, format="PNG")
    except Exception as e:
        # A preview failure should not cost us the text layer
        logger.warning(f"Could not render preview for page {page_num}: {e}")
        return None
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return BookImage(name=f"page-{page_num}.png", url=f"data:image/png;base64,{encoded}")


class DocxExtractor(Extractor):
    label = "DOCX"

    def extract(self, data):
        from docx import Document

        doc = Document(io.BytesIO(data))
        return "\n".join(p.text for p in doc.paragraphs).strip(), []


def strip_rtf(text: str) -> str:
    text = re.sub(r'\{\\[^}]+\}', '', text)
    text = re.sub(r'\\[a-zA-Z]+\d*\s*', '', text)
    text = re.sub(r'[{}]', '', text)
    return re.sub(r'\s+', ' ', text).strip()


class RtfExtractor(Extractor):
    label = "RTF"

    def extract(self, data):
        return strip_rtf(data.decode("utf-8", errors="replace")), []


ODF_TEXT_NS = "urn:oasis:names:tc:opendocument:xmlns:text:1.0"
ODF_BLOCK_TAGS = {f"{{{ODF_TEXT_NS}}}p", f"{{{ODF_TEXT_NS}}}h"}


class OpenDocumentExtractor(Extractor):
    """Reads paragraphs and headings out of the content.xml of an ODF package."""

    label = "OpenDocument"

    def extract(self, data):
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            root = ElementTree.fromstring(archive.read("content.xml"))
        blocks = []
        for el in root.iter():
            if el.tag in ODF_BLOCK_TAGS:
                line = "".join(el.itertext()).strip()
                if line:
                    blocks.append(line)
        return "\n\n".join(blocks), []


class DocumentKind(Enum):
    TEXT = "text"
    PDF = "pdf"
    DOCX = "docx"
    RTF = "rtf"
    OPENDOCUMENT = "opendocument"

    @classmethod
    def from_filename(cls, filename):
        ext = get_extension(filename)
        if ext not in ALLOWED_EXTENSIONS:
            raise UnsupportedFileTypeError(ext)
        return EXTENSION_KINDS[ext]

    def extractor(self) -> Extractor:
        return EXTRACTORS[self]()


EXTENSION_KINDS = {
    'txt': DocumentKind.TEXT,
    'md': DocumentKind.TEXT,
    'markdown': DocumentKind.TEXT,
    'pdf': DocumentKind.PDF,
    'docx': DocumentKind.DOCX,
    'rtf': DocumentKind.RTF,
    'odt': DocumentKind.OPENDOCUMENT,
    'ods': DocumentKind.OPENDOCUMENT,
    'odp': DocumentKind.OPENDOCUMENT,
}

EXTRACTORS = {
    DocumentKind.TEXT: TextExtractor,
    DocumentKind.PDF: PdfExtractor,
    DocumentKind.DOCX: DocxExtractor,
    DocumentKind.RTF: RtfExtractor,
    DocumentKind.OPENDOCUMENT: OpenDocumentExtractor,
}


def estimate_word_count(size: int) -> int:
    return max(1, size // BYTES_PER_WORD) if size else 0


def process_document(data: bytes, filename: str) -> ProcessedDocument:
    """Extract text from an upload.

    Raises UnsupportedFileTypeError for extensions outside ALLOWED_EXTENSIONS.
    Extraction failures never raise: the result carries a placeholder text, a
    size-based word estimate and ``extraction_degraded=True``.
    """
    kind = DocumentKind.from_filename(filename)
    extractor = kind.extractor()
    try:
        text, images = extractor.extract(data)
    except Exception as e:
        logger.error(f"{extractor.label} extraction failed for {filename}: {e}")
        return ProcessedDocument(
            text=f"{extractor.label} content could not be extracted from {filename}.",
            images=[],
            word_count=estimate_word_count(len(data)),
            summary=f"{extractor.label} document processed ({len(data)} bytes), text extraction failed",
            extraction_degraded=True,
        )

    word_count = calculate_word_count(text)
    return ProcessedDocument(
        text=text,
        images=images,
        word_count=word_count,
        summary=extractor.summarize(text, images, word_count),
    )


def extract_metadata(text: str, filename: str) -> dict:
    """Guess title, author and reading time (200 wpm) from manuscript text."""
    lines = [line.strip() for line in (text or "").split("\n") if line.strip()]
    title = lines[0] if lines else re.sub(r'\.[^/.]+$', '', filename)
    author_match = re.search(r'(?:\bby|\bauthor:?)\s+([^\n\r,]+)', text or "", re.IGNORECASE)
    author = author_match.group(1).strip() if author_match else "Unknown Author"
    return {
        "title": title,
        "author": author,
        "estimated_reading_time": -(-calculate_word_count(text) // 200),
    }
