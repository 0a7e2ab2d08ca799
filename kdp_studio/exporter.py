"""Book export: EPUB/Kindle archives, print HTML/PDF and DOCX.

Every export is assembled in memory and returned as a single ExportArtifact,
so a failed export never leaves a partial file behind.
"""

import asyncio
import io
import logging
import re
import uuid
from typing import Awaitable, Callable, List, Optional

import aiohttp
from ebooklib import epub
from pydantic import BaseModel

from .models import Book, BookChapter, ExportOptions, Margins
from .rendering import PdfRenderer, PrintUnavailableError, build_docx

logger = logging.getLogger(__name__)

EPUB_MIMETYPE = "application/epub+zip"
DOCX_MIMETYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DEFAULT_FONT_FAMILY = "Georgia, serif"
DEFAULT_FONT_SIZE = 12
DEFAULT_LINE_SPACING = 1.6
DEFAULT_PAPER_SIZE = "us-trade"
DEFAULT_MARGINS = Margins(top=1, bottom=1, left=1, right=1)
PAPERBACK_MARGINS = Margins(top=0.75, bottom=0.75, left=0.75, right=0.75)

CSS_PAGE_SIZES = {
    "a4": "A4",
    "us-letter": "8.5in 11in",
    "us-trade": "6in 9in",
    "custom": "8.5in 11in",
}


class ExportError(Exception):
    """An export could not be completed. The message always starts with 'Export failed:'."""


class ExportArtifact(BaseModel):
    filename: str
    media_type: str
    content: bytes


CoverFetcher = Callable[[str], Awaitable[bytes]]


# ====== PRESETS ======

KDP_PRESETS = {
    "kindle": ExportOptions(
        format="kindle", include_images=True, font_size=12, font_family="serif", line_spacing=1.5,
    ),
    "paperback": ExportOptions(
        format="print-ready", include_images=True, paper_size="us-trade",
        margins=Margins(top=0.75, bottom=0.75, left=0.75, right=0.75),
        font_size=11, font_family="Times New Roman, serif", line_spacing=1.4,
    ),
    "hardcover": ExportOptions(
        format="print-ready", include_images=True, paper_size="us-letter",
        margins=Margins(top=1, bottom=1, left=1, right=1),
        font_size=12, font_family="Georgia, serif", line_spacing=1.6,
    ),
    "epub": ExportOptions(
        format="epub", include_images=True, font_size=12, font_family="serif", line_spacing=1.5,
    ),
}


# ====== HELPERS ======

def escape_xml(text):
    return (
        (text or "")
        .replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", '&#39;')
    )


def sanitize_filename(name):
    return re.sub(r'[^a-z0-9]+', '_', (name or "").lower())


def css_value(value):
    # keep user-supplied values from closing the declaration or the <style> block
    return re.sub(r"[<>{};]", "", str(value))


def split_paragraphs(content):
    return [p.strip() for p in (content or "").replace('\r\n', '\n').split('\n\n')]


def format_chapter_content(content):
    return "\n".join(f"<p>{escape_xml(p)}</p>" for p in split_paragraphs(content))


def book_chapters(book) -> List[BookChapter]:
    return list(book.content or [])


def resolve_options(options: ExportOptions, paperback=False) -> ExportOptions:
    """Fill unset typography and page fields with their defaults."""
    return options.model_copy(update={
        "paper_size": options.paper_size or DEFAULT_PAPER_SIZE,
        "margins": options.margins or (PAPERBACK_MARGINS if paperback else DEFAULT_MARGINS),
        "font_size": options.font_size or DEFAULT_FONT_SIZE,
        "font_family": options.font_family or DEFAULT_FONT_FAMILY,
        "line_spacing": options.line_spacing or DEFAULT_LINE_SPACING,
    })


# ====== EPUB DOCUMENTS ======

def build_stylesheet(options: ExportOptions, kindle=False):
    heading_break = "\n  page-break-before: always;" if kindle else ""
    kindle_media = "\n@media amzn-kf8 {\n  body { font-family: serif; }\n}\n" if kindle else ""
    return f"""/* {'Kindle-optimized' if kindle else 'Standard EPUB'} styles */
body {{
  font-family: {css_value(options.font_family)};
  font-size: {options.font_size}pt;
  line-height: {options.line_spacing};
  margin: 0;
  padding: 1em;
}}

h1, h2, h3 {{{heading_break}
  margin-top: 2em;
  margin-bottom: 1em;
  font-weight: bold;
}}

p {{
  text-align: justify;
  text-indent: 1.5em;
  margin-bottom: 0.5em;
}}

.title-page {{
  text-align: center;
  page-break-after: always;
}}

.chapter-title {{
  text-align: center;
  font-size: 1.5em;
  margin-bottom: 2em;
  page-break-before: always;
}}
{kindle_media}"""


def build_title_page(book):
    description = f"\n    <p>{escape_xml(book.description)}</p>" if book.description else ""
    return f"""<div class="title-page">
    <h1>{escape_xml(book.title)}</h1>
    <h2>by {escape_xml(book.author)}</h2>{description}
  </div>"""


def build_toc_page(book):
    items = "\n    ".join(
        f'<li><a href="chapter{i}.xhtml">{escape_xml(ch.title)}</a></li>'
        for i, ch in enumerate(book_chapters(book), start=1)
    )
    return f"""<h1>Table of Contents</h1>
  <ul>
    {items}
  </ul>"""


def build_chapter_body(chapter: BookChapter):
    return f"""<h1 class="chapter-title">{escape_xml(chapter.title)}</h1>
  <div class="chapter-content">
{format_chapter_content(chapter.content)}
  </div>"""


def _page(uid, title, body, style):
    page = epub.EpubHtml(uid=uid, file_name=f"{uid}.xhtml", title=title, lang="en")
    page.content = body
    page.add_item(style)
    return page


def build_epub(book, options: ExportOptions, cover: Optional[bytes] = None, kindle=False,
               identifier=None) -> bytes:
    """Assemble an EPUB with ebooklib under OEBPS/: NCX navigation, no nav document.

    The mimetype entry is first and stored uncompressed.
    """
    ebook = epub.EpubBook()
    ebook.FOLDER_NAME = "OEBPS"
    ebook.IDENTIFIER_ID = "bookid"
    ebook.set_identifier(identifier or str(uuid.uuid4()))
    ebook.set_title(book.title)
    ebook.set_language("en")
    ebook.add_author(book.author, role="aut")
    ebook.add_metadata("DC", "subject", book.genre)
    ebook.add_metadata("DC", "description", book.description or "")

    style = epub.EpubItem(uid="stylesheet", file_name="stylesheet.css", media_type="text/css",
                          content=build_stylesheet(options, kindle=kindle).encode("utf-8"))
    ebook.add_item(style)

    title_page = _page("title", book.title, build_title_page(book), style)
    toc_page = _page("toc", "Table of Contents", build_toc_page(book), style)
    ebook.add_item(title_page)
    ebook.add_item(toc_page)

    chapters = []
    for i, chapter in enumerate(book_chapters(book), start=1):
        page = _page(f"chapter{i}", chapter.title, build_chapter_body(chapter), style)
        ebook.add_item(page)
        chapters.append(page)

    if cover is not None:
        ebook.set_cover("cover.jpg", cover, create_page=False)
        ebook.guide.append({"type": "cover", "title": "Cover", "href": title_page.file_name})

    ebook.toc = [
        epub.Link(title_page.file_name, "Title Page", "navpoint-1"),
        epub.Link(toc_page.file_name, "Table of Contents", "navpoint-2"),
    ] + [
        epub.Link(page.file_name, page.title, f"navpoint-{i + 2}")
        for i, page in enumerate(chapters, start=1)
    ]
    ebook.add_item(epub.EpubNcx())
    ebook.spine = [title_page, toc_page] + chapters

    buf = io.BytesIO()
    epub.write_epub(buf, ebook, {
        "play_order": {"enabled": True, "start_from": 1},
        "raise_exceptions": True,
    })
    return buf.getvalue()


# ====== PRINT HTML ======

def build_print_html(book, options: ExportOptions):
    margins = options.margins or DEFAULT_MARGINS
    page_size = CSS_PAGE_SIZES.get(options.paper_size or DEFAULT_PAPER_SIZE, "8.5in 11in")
    chapters = "".join(
        f"""
  <div class="chapter">
    <h1 class="chapter-title">{escape_xml(ch.title)}</h1>
    {format_chapter_content(ch.content)}
  </div>
"""
        for ch in book_chapters(book)
    )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{escape_xml(book.title)}</title>
  <style>
    @page {{
      size: {page_size};
      margin: {margins.top}in {margins.right}in {margins.bottom}in {margins.left}in;
    }}

    body {{
      font-family: {css_value(options.font_family or DEFAULT_FONT_FAMILY)};
      font-size: {options.font_size or DEFAULT_FONT_SIZE}pt;
      line-height: {options.line_spacing or DEFAULT_LINE_SPACING};
    }}

    .title-page {{
      text-align: center;
      page-break-after: always;
      padding-top: 25%;
    }}

    .chapter {{
      page-break-before: always;
    }}

    .chapter-title {{
      font-size: 1.5em;
      margin-bottom: 2em;
      text-align: center;
    }}

    p {{
      text-align: justify;
      text-indent: 1.5em;
      margin-bottom: 0.5em;
    }}
  </style>
</head>
<body>
  <div class="title-page">
    <h1>{escape_xml(book.title)}</h1>
    <h2>by {escape_xml(book.author)}</h2>
  </div>
{chapters}</body>
</html>"""


# ====== COVER FETCH ======

async def fetch_cover(url, timeout=20, retries=2) -> bytes:
    """Download a cover image, retrying up to ``retries`` extra times."""
    retries = max(0, retries)
    last_error = None
    async with aiohttp.ClientSession() as session:
        for attempt in range(retries + 1):
            try:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                    resp.raise_for_status()
                    return await resp.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                # 4xx responses are final
                if isinstance(e, aiohttp.ClientResponseError) and e.status < 500:
                    raise
                last_error = e
                logger.warning(f"Cover fetch attempt {attempt + 1}/{retries + 1} failed for {url}: {e}")
    raise last_error


async def _embed_cover(book, options, fetcher: CoverFetcher) -> Optional[bytes]:
    if not (book.cover_url and options.include_images):
        return None
    try:
        return await fetcher(book.cover_url)
    except Exception as e:
        logger.warning(f"Could not include cover image for book {book.id}: {e}")
        return None


# ====== EXPORT ======

class BookExporter:
    """Turns a Book plus ExportOptions into a downloadable artifact."""

    def __init__(self, renderer=None, fetcher: Optional[CoverFetcher] = None,
                 cover_timeout=20, cover_retries=2):
        self.renderer = renderer if renderer is not None else PdfRenderer()
        self.fetcher = fetcher or (lambda url: fetch_cover(url, cover_timeout, cover_retries))

    async def export(self, book: Book, options: ExportOptions) -> ExportArtifact:
        logger.info(f"Exporting book {book.id} as {options.format}")
        try:
            artifact = await self._export(book, options)
        except Exception as e:
            logger.error(f"Export error for book {book.id}: {e}")
            raise ExportError(f"Export failed: {e}") from e
        logger.info(f"Export ready: {artifact.filename} ({len(artifact.content)} bytes)")
        return artifact

    async def _export(self, book, options):
        name = sanitize_filename(book.title) or "book"
        fmt = options.format

        if fmt in ("kindle", "epub"):
            resolved = resolve_options(options)
            cover = await _embed_cover(book, resolved, self.fetcher)
            kindle = fmt == "kindle"
            content = build_epub(book, resolved, cover=cover, kindle=kindle)
            filename = f"{name}_kindle.epub" if kindle else f"{name}.epub"
            return ExportArtifact(filename=filename, media_type=EPUB_MIMETYPE, content=content)

        if fmt in ("pdf", "print-ready"):
            paperback = fmt == "print-ready"
            resolved = resolve_options(options, paperback=paperback)
            try:
                content = self.renderer.render(book, resolved)
            except PrintUnavailableError as e:
                logger.warning(f"Print rendering unavailable ({e}); falling back to HTML download")
                html = build_print_html(book, resolved)
                return ExportArtifact(
                    filename=f"{name}_print.html", media_type="text/html", content=html.encode("utf-8"),
                )
            filename = f"{name}_print_ready.pdf" if paperback else f"{name}.pdf"
            return ExportArtifact(filename=filename, media_type="application/pdf", content=content)

        if fmt == "docx":
            content = build_docx(book, resolve_options(options))
            return ExportArtifact(filename=f"{name}.docx", media_type=DOCX_MIMETYPE, content=content)

        raise ValueError(f"Unsupported export format: {fmt}")


async def export_book(book, options, **kwargs) -> ExportArtifact:
    return await BookExporter(**kwargs).export(book, options)
