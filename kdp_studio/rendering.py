import io
import logging
import re

logger = logging.getLogger(__name__)

# (width, height) in inches
PAGE_SIZES_IN = {
    "us-trade": (6, 9),
    "us-letter": (8.5, 11),
    "a4": (8.27, 11.69),
    "custom": (8.5, 11),
}


class PrintUnavailableError(Exception):
    """The print/PDF facility cannot be used; callers fall back to print HTML."""


def primary_font(font_family):
    """First family of a CSS font-family list, unquoted ("'Times New Roman', serif" -> "Times New Roman")."""
    first = (font_family or "").split(",")[0].strip().strip("'\"")
    return first or "Georgia"


def _para_xml(text):
    """Inline text to ReportLab paragraph markup."""
    text = text.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')
    return text.replace('\n', '<br/>')


def _paragraphs(content):
    return [p.strip() for p in (content or "").replace('\r\n', '\n').split('\n\n')]


def _base14_family(font_family):
    family = (font_family or "").lower()
    if re.search(r'courier|mono', family):
        return "Courier", "Courier-Bold"
    if re.search(r'sans|helvetica|arial|verdana', family):
        return "Helvetica", "Helvetica-Bold"
    return "Times-Roman", "Times-Bold"


class PdfRenderer:
    """Renders a book to PDF with ReportLab, using the resolved export options."""

    def __init__(self, enabled=True):
        self.enabled = enabled

    def render(self, book, options) -> bytes:
        if not self.enabled:
            raise PrintUnavailableError("PDF rendering is disabled")

        from reportlab.lib import colors
        from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
        from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
        from reportlab.lib.units import inch
        from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer

        width_in, height_in = PAGE_SIZES_IN.get(options.paper_size, PAGE_SIZES_IN["us-letter"])
        page_w, page_h = width_in * inch, height_in * inch
        margins = options.margins
        font, bold_font = _base14_family(options.font_family)
        font_size = options.font_size
        leading = font_size * options.line_spacing

        def on_page(canvas, doc):
            # No number on the title page
            if doc.page > 1:
                canvas.saveState()
                canvas.setFont(font, 9)
                canvas.setFillColor(colors.Color(0.4, 0.4, 0.4))
                canvas.drawCentredString(page_w / 2, 0.4 * inch, str(doc.page))
                canvas.restoreState()

        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=(page_w, page_h),
            leftMargin=margins.left * inch,
            rightMargin=margins.right * inch,
            topMargin=margins.top * inch,
            bottomMargin=margins.bottom * inch,
            title=book.title,
            author=book.author,
        )

        styles = getSampleStyleSheet()
        styles.add(ParagraphStyle('BookTitle', parent=styles['Title'],
            fontName=bold_font, fontSize=font_size * 2.2, leading=font_size * 2.7,
            spaceAfter=12, alignment=TA_CENTER))
        styles.add(ParagraphStyle('BookAuthor', parent=styles['Normal'],
            fontName=font, fontSize=font_size * 1.2, leading=font_size * 1.6,
            alignment=TA_CENTER, textColor=colors.Color(0.4, 0.4, 0.4)))
        styles.add(ParagraphStyle('ChapterTitle', parent=styles['Heading1'],
            fontName=bold_font, fontSize=font_size * 1.5, leading=font_size * 2,
            spaceAfter=font_size * 2, alignment=TA_CENTER))
        styles.add(ParagraphStyle('Body', parent=styles['Normal'],
            fontName=font, fontSize=font_size, leading=leading,
            alignment=TA_JUSTIFY, firstLineIndent=font_size * 1.5, spaceAfter=font_size * 0.5))

        # ---- TITLE PAGE ----
        story = [Spacer(1, page_h * 0.25)]
        story.append(Paragraph(_para_xml(book.title), styles['BookTitle']))
        story.append(Paragraph(f"by {_para_xml(book.author)}", styles['BookAuthor']))

        # ---- CHAPTERS ----
        for chapter in book.content or []:
            story.append(PageBreak())
            story.append(Paragraph(_para_xml(chapter.title), styles['ChapterTitle']))
            for para in _paragraphs(chapter.content):
                if para:
                    story.append(Paragraph(_para_xml(para), styles['Body']))

        doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
        logger.debug(f"Rendered PDF for book {book.id}: {doc.page} pages")
        return buf.getvalue()


def _add_page_number_field(section):
    from docx.enum.text import WD_ALIGN_PARAGRAPH
    from docx.oxml import OxmlElement
    from docx.oxml.ns import qn

    footer = section.footer
    footer.is_linked_to_previous = False
    footer_para = footer.paragraphs[0] if footer.paragraphs else footer.add_paragraph()
    footer_para.alignment = WD_ALIGN_PARAGRAPH.CENTER

    run = footer_para.add_run()
    fld_begin = OxmlElement('w:fldChar')
    fld_begin.set(qn('w:fldCharType'), 'begin')
    run._r.append(fld_begin)

    run = footer_para.add_run()
    instr = OxmlElement('w:instrText')
    instr.set(qn('xml:space'), 'preserve')
    instr.text = ' PAGE '
    run._r.append(instr)

    run = footer_para.add_run()
    fld_end = OxmlElement('w:fldChar')
    fld_end.set(qn('w:fldCharType'), 'end')
    run._r.append(fld_end)


def build_docx(book, options) -> bytes:
    """Word document: title page, then one heading and justified paragraphs per chapter."""
    from docx import Document
    from docx.enum.text import WD_ALIGN_PARAGRAPH
    from docx.shared import Inches, Pt

    font_name = primary_font(options.font_family)
    font_size = Pt(options.font_size)

    doc = Document()
    normal = doc.styles['Normal']
    normal.font.name = font_name
    normal.font.size = font_size
    normal.paragraph_format.line_spacing = options.line_spacing

    width_in, height_in = PAGE_SIZES_IN.get(options.paper_size, PAGE_SIZES_IN["us-letter"])
    section = doc.sections[0]
    section.page_width = Inches(width_in)
    section.page_height = Inches(height_in)
    section.top_margin = Inches(options.margins.top)
    section.bottom_margin = Inches(options.margins.bottom)
    section.left_margin = Inches(options.margins.left)
    section.right_margin = Inches(options.margins.right)
    _add_page_number_field(section)

    # ---- TITLE PAGE ----
    for _ in range(8):
        doc.add_paragraph()
    title_p = doc.add_paragraph()
    title_p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = title_p.add_run(book.title)
    run.bold = True
    run.font.size = Pt(options.font_size * 2.2)

    author_p = doc.add_paragraph()
    author_p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    author_p.add_run(f"by {book.author}").font.size = Pt(options.font_size * 1.2)

    # ---- CHAPTERS ----
    for chapter in book.content or []:
        doc.add_page_break()
        heading = doc.add_heading(chapter.title, level=1)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
        for run in heading.runs:
            run.font.name = font_name
        for para in _paragraphs(chapter.content):
            if not para:
                continue
            p = doc.add_paragraph(para)
            p.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
            p.paragraph_format.first_line_indent = Inches(0.5)
            p.paragraph_format.space_after = Pt(6)

    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()
