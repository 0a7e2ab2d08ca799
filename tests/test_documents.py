"""Tests for manuscript ingestion."""

import io
import zipfile

import pytest

from kdp_studio.documents import (
    ALLOWED_EXTENSIONS, DocumentKind, Extractor, OpenDocumentExtractor, UnsupportedFileTypeError,
    calculate_word_count, extract_metadata, process_document, strip_rtf, validate_file_type,
)

ODT_CONTENT = b"""<?xml version="1.0" encoding="UTF-8"?>
<office:document-content
    xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0"
    xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0">
  <office:body>
    <office:text>
      <text:h text:outline-level="1">The Title</text:h>
      <text:p>First paragraph with <text:span>styled</text:span> words.</text:p>
      <text:p/>
      <text:p>Second paragraph.</text:p>
    </office:text>
  </office:body>
</office:document-content>"""


def _odf_package(content=ODT_CONTENT):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.text")
        archive.writestr("content.xml", content)
    return buf.getvalue()


class TestValidateFileType:
    @pytest.mark.parametrize("ext", ALLOWED_EXTENSIONS)
    def test_accepts_allowed(self, ext):
        assert validate_file_type(f"manuscript.{ext}")

    @pytest.mark.parametrize("name", ["BOOK.PDF", "Draft.Docx", "notes.MarkDown"])
    def test_case_insensitive(self, name):
        assert validate_file_type(name)

    @pytest.mark.parametrize("name", ["virus.exe", "image.png", "README", "", "archive.pdf.zip", "doc"])
    def test_rejects_others(self, name):
        assert not validate_file_type(name)

    def test_exact_extension_set(self):
        assert set(ALLOWED_EXTENSIONS) == {"pdf", "docx", "odt", "rtf", "txt", "md", "markdown", "ods", "odp"}


class TestDocumentKind:
    def test_dispatch(self):
        assert DocumentKind.from_filename("a.md") is DocumentKind.TEXT
        assert DocumentKind.from_filename("a.ODP") is DocumentKind.OPENDOCUMENT
        assert DocumentKind.from_filename("a.rtf") is DocumentKind.RTF

    def test_unknown_raises(self):
        with pytest.raises(UnsupportedFileTypeError) as exc_info:
            DocumentKind.from_filename("a.exe")
        assert exc_info.value.extension == "exe"

    def test_extractor_base_is_abstract(self):
        with pytest.raises(TypeError):
            Extractor()

    def test_every_kind_has_concrete_extractor(self):
        for kind in DocumentKind:
            assert isinstance(kind.extractor(), Extractor)


class TestWordCount:
    def test_basic(self):
        assert calculate_word_count("  hello   world \n\t foo ") == 3

    def test_empty(self):
        assert calculate_word_count("") == 0
        assert calculate_word_count("   \n ") == 0


class TestRtf:
    def test_strip_control_words(self):
        rtf = r"{\rtf1\ansi{\fonttbl\f0 Arial;}\f0 Hello \b World\b0}"
        assert strip_rtf(rtf) == "Hello World"

    def test_process_rtf(self):
        doc = process_document(rb"{\rtf1{\fonttbl\f0 Times;}\f0 Plain words \b here\b0}", "story.rtf")
        assert doc.text == "Plain words here"
        assert doc.word_count == 3
        assert doc.summary == "RTF document with 3 words"


class TestProcessDocument:
    def test_text(self):
        doc = process_document(b"Hello brave new world\n", "notes.txt")
        assert doc.text == "Hello brave new world"
        assert doc.word_count == 4
        assert doc.summary == "Text document with 4 words"
        assert doc.images == []
        assert not doc.extraction_degraded

    def test_markdown_is_text(self):
        doc = process_document(b"# Heading\n\nBody", "README.md")
        assert doc.word_count == 3

    def test_unsupported(self):
        with pytest.raises(UnsupportedFileTypeError):
            process_document(b"MZ", "setup.exe")

    def test_corrupt_pdf_degrades(self):
        data = b"not a pdf at all" * 10
        doc = process_document(data, "broken.pdf")
        assert doc.extraction_degraded
        assert doc.text == "PDF content could not be extracted from broken.pdf."
        assert doc.word_count == 160 // 6
        assert doc.summary == "PDF document processed (160 bytes), text extraction failed"

    def test_corrupt_docx_degrades(self):
        doc = process_document(b"garbage", "broken.docx")
        assert doc.extraction_degraded
        assert doc.word_count == 1
        assert doc.summary.startswith("DOCX document processed (7 bytes)")

    def test_docx(self):
        from docx import Document
        source = Document()
        source.add_paragraph("Chapter one")
        source.add_paragraph("It began on a Tuesday.")
        buf = io.BytesIO()
        source.save(buf)

        doc = process_document(buf.getvalue(), "draft.docx")
        assert doc.text == "Chapter one\nIt began on a Tuesday."
        assert doc.word_count == 7
        assert doc.summary == "DOCX document with 7 words"

    def test_pdf(self):
        from reportlab.pdfgen import canvas
        buf = io.BytesIO()
        c = canvas.Canvas(buf)
        c.drawString(72, 720, "Hello PDF world")
        c.showPage()
        c.save()

        doc = process_document(buf.getvalue(), "sample.pdf")
        assert not doc.extraction_degraded
        assert "Hello PDF world" in doc.text
        assert doc.summary == "PDF document with 1 pages and 3 words"
        assert len(doc.images) <= 1
        for image in doc.images:
            assert image.name == "page-1.png"
            assert image.url.startswith("data:image/png;base64,")

    def test_odt(self):
        doc = process_document(_odf_package(), "draft.odt")
        assert doc.text == "The Title\n\nFirst paragraph with styled words.\n\nSecond paragraph."
        assert doc.summary == "OpenDocument document with 9 words"

    def test_ods_uses_opendocument_extractor(self):
        assert isinstance(DocumentKind.from_filename("sheet.ods").extractor(), OpenDocumentExtractor)

    def test_odf_without_content_degrades(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as archive:
            archive.writestr("mimetype", "application/vnd.oasis.opendocument.presentation")
        doc = process_document(buf.getvalue(), "slides.odp")
        assert doc.extraction_degraded

    def test_wire_format(self):
        dumped = process_document(b"one two", "a.txt").model_dump(by_alias=True)
        assert set(dumped) == {"text", "images", "wordCount", "summary", "extractionDegraded"}


class TestExtractMetadata:
    def test_title_author_and_reading_time(self):
        text = "My Book\nby Jane Doe\n" + "word " * 395
        meta = extract_metadata(text, "my_book.txt")
        assert meta["title"] == "My Book"
        assert meta["author"] == "Jane Doe"
        assert meta["estimated_reading_time"] == 2

    def test_empty_text_falls_back_to_filename(self):
        meta = extract_metadata("", "draft.final.txt")
        assert meta == {"title": "draft.final", "author": "Unknown Author", "estimated_reading_time": 0}
