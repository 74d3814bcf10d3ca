"""Utility helpers for exporting a project's chapters to PDF documents.

Chapter content is stored as rich-text HTML; it is flattened to paragraphs and
laid out with FPDF's core fonts, so all text passes through a Latin-1
normalisation step first.
"""
from __future__ import annotations

import logging
import textwrap
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

from fpdf import FPDF

from kalligram.text_utils import html_to_paragraphs


LOGGER = logging.getLogger(__name__)

PAGE_SIZES = ("a3", "a4", "a5", "letter", "legal")


class PDFExportError(RuntimeError):
    """Raised when exporting data to PDF fails."""


@dataclass
class PdfExportOptions:
    include_chapter_titles: bool = True
    include_metadata: bool = True
    page_size: str = "a4"
    # top, right, bottom, left in millimetres
    margins: Tuple[float, float, float, float] = (20, 20, 20, 20)
    author: Optional[str] = None


_PDF_LATIN1_REPLACEMENTS = {
    ord("\u2010"): "-",  # hyphen
    ord("\u2011"): "-",  # non-breaking hyphen
    ord("\u2012"): "-",  # figure dash
    ord("\u2013"): "-",  # en dash
    ord("\u2014"): "-",  # em dash
    ord("\u2015"): "-",  # horizontal bar
    ord("\u2212"): "-",  # minus sign
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote / apostrophe
    ord("\u201A"): "'",  # single low-9 quote
    ord("\u201B"): "'",  # single high-reversed-9 quote
    ord("\u2032"): "'",  # prime
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u201E"): '"',  # double low-9 quote
    ord("\u00AB"): '"',
    ord("\u00BB"): '"',
    ord("\u2026"): "...",  # ellipsis
    ord("\u00A0"): " ",  # non-breaking space
    ord("\u2009"): " ",  # thin space
    ord("\u202F"): " ",  # narrow no-break space
    ord("\u200B"): "",  # zero-width space
    ord("\uFEFF"): "",  # BOM
}


def _pdf_safe_text(text: str) -> str:
    """Return ``text`` normalised for the PDF Latin-1 core fonts."""

    normalized = unicodedata.normalize("NFKC", text or "")
    normalized = normalized.replace("\t", " ")
    replaced = normalized.translate(_PDF_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def _pdf_wrapped_text(text: str, *, width: int = 100) -> str:
    """Return ``text`` converted to a PDF-safe, manually wrapped string."""

    safe_text = _pdf_safe_text(text)
    if not safe_text:
        return ""

    wrapped_lines = []
    for raw_line in safe_text.splitlines():
        if not raw_line:
            wrapped_lines.append("")
            continue
        line_chunks = textwrap.wrap(
            raw_line,
            width=width,
            break_long_words=True,
            break_on_hyphens=False,
        )
        wrapped_lines.extend(line_chunks or [""])

    return "\n".join(wrapped_lines)


def _safe_multi_cell(pdf: FPDF, width: float, height: float, text: str) -> None:
    """Render ``text`` within a multi-cell, retrying on a fresh line on failure."""

    sanitized = _pdf_wrapped_text(text)
    if not sanitized:
        return

    try:
        pdf.set_x(pdf.l_margin)
        pdf.multi_cell(width, height, sanitized)
    except Exception:
        pdf.ln(height)
        pdf.set_x(pdf.l_margin)
        try:
            pdf.multi_cell(width, height, sanitized)
        except Exception as exc:  # pragma: no cover - defensive
            raise PDFExportError(f"Failed to render PDF content: {exc}") from exc


def format_date(value: Optional[datetime]) -> str:
    """Format ``value`` as ``Mon D, YYYY`` ("Unknown" when missing)."""

    if not value:
        return "Unknown"
    return f"{value:%b} {value.day}, {value.year}"


def _rule(pdf: FPDF, width: float) -> None:
    pdf.set_draw_color(0, 0, 0)
    pdf.set_line_width(width)
    y = pdf.get_y()
    pdf.line(pdf.l_margin, y, pdf.w - pdf.r_margin, y)


def _add_metadata_page(pdf: FPDF, project: object, chapter_count: int, effective_width: float) -> None:
    pdf.set_font("Helvetica", "B", 24)
    _safe_multi_cell(pdf, effective_width, 12, getattr(project, "title", None) or "Untitled Project")
    pdf.ln(2)
    _rule(pdf, 0.5)
    pdf.ln(8)

    description = (getattr(project, "description", "") or "").strip()
    if description:
        pdf.set_font("Helvetica", "B", 12)
        _safe_multi_cell(pdf, effective_width, 6, "Description:")
        pdf.set_font("Helvetica", "", 12)
        _safe_multi_cell(pdf, effective_width, 6, description)
        pdf.ln(4)

    for label, value in (
        ("Created:", format_date(getattr(project, "created_at", None))),
        ("Last Updated:", format_date(getattr(project, "updated_at", None))),
        ("Chapters:", str(chapter_count)),
    ):
        pdf.set_font("Helvetica", "B", 12)
        pdf.set_x(pdf.l_margin)
        pdf.cell(32, 6, label)
        pdf.set_font("Helvetica", "", 12)
        pdf.cell(0, 6, _pdf_safe_text(value))
        pdf.ln(7)


def _add_chapter(
    pdf: FPDF,
    chapter: object,
    chapter_number: int,
    options: PdfExportOptions,
    effective_width: float,
) -> None:
    if options.include_chapter_titles:
        pdf.set_font("Helvetica", "B", 18)
        title = getattr(chapter, "title", None) or "Untitled Chapter"
        _safe_multi_cell(pdf, effective_width, 10, f"Chapter {chapter_number}: {title}")
        pdf.ln(1)
        _rule(pdf, 0.3)
        pdf.ln(8)

    pdf.set_font("Times", "", 12)
    paragraphs = html_to_paragraphs(getattr(chapter, "content", "") or "")
    if not paragraphs:
        pdf.set_font("Times", "I", 12)
        _safe_multi_cell(pdf, effective_width, 6.5, "(No chapter text available.)")
        return
    for paragraph in paragraphs:
        _safe_multi_cell(pdf, effective_width, 6.5, paragraph)
        pdf.ln(2)


def export_chapters_to_pdf(
    project: object,
    chapters: Sequence[object],
    *,
    options: Optional[PdfExportOptions] = None,
    chapter_numbers: Optional[Iterable[int]] = None,
) -> bytes:
    """Render ``chapters`` of ``project`` to a PDF document and return its bytes.

    ``chapter_numbers`` overrides the numbering shown in chapter headings, which
    otherwise counts from one. A metadata page precedes the chapters when
    ``options.include_metadata`` is set.
    """

    options = options or PdfExportOptions()
    chapters = list(chapters)
    if not chapters:
        raise PDFExportError("No chapters found to export")

    page_size = (options.page_size or "a4").lower()
    if page_size not in PAGE_SIZES:
        raise PDFExportError(f"Unsupported page size '{options.page_size}'.")

    numbers = list(chapter_numbers) if chapter_numbers is not None else list(range(1, len(chapters) + 1))
    if len(numbers) != len(chapters):
        raise PDFExportError("Chapter numbering does not match the exported chapters.")

    top, right, bottom, left = options.margins
    pdf = FPDF(orientation="portrait", unit="mm", format=page_size)
    pdf.set_margins(left=left, top=top, right=right)
    pdf.set_auto_page_break(auto=True, margin=bottom)

    title = getattr(project, "title", None) or "Story"
    pdf.set_title(_pdf_safe_text(title))
    pdf.set_author(_pdf_safe_text(options.author or "Author"))
    pdf.set_subject("Story Export from Kalligram")
    pdf.set_keywords("story, writing, Kalligram")
    pdf.set_creator("Kalligram")

    effective_width = pdf.w - pdf.l_margin - pdf.r_margin

    if options.include_metadata:
        pdf.add_page()
        _add_metadata_page(pdf, project, len(chapters), effective_width)

    for chapter, number in zip(chapters, numbers):
        pdf.add_page()
        _add_chapter(pdf, chapter, number, options, effective_width)

    try:
        return bytes(pdf.output())
    except Exception as exc:  # pragma: no cover - defensive fallback
        LOGGER.exception("PDF rendering failed for project %r", title)
        raise PDFExportError(f"Unable to export PDF: {exc}") from exc


__all__ = ["PDFExportError", "PdfExportOptions", "export_chapters_to_pdf", "format_date"]
