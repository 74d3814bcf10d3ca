"""Helpers for exporting a project's chapters to plain text."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from kalligram.text_utils import html_to_paragraphs
from pdf_handler import PdfExportOptions, format_date


class TextExportError(RuntimeError):
    """Raised when exporting data to a text file fails."""


def _clean(value: Optional[str]) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def export_chapters_to_txt(
    project: object,
    chapters: Sequence[object],
    *,
    options: Optional[PdfExportOptions] = None,
    chapter_numbers: Optional[Iterable[int]] = None,
) -> str:
    """Return ``chapters`` of ``project`` as a UTF-8 friendly text document.

    Uses the same options as the PDF export; page size and margins are ignored.
    """

    options = options or PdfExportOptions()
    chapters = list(chapters)
    if not chapters:
        raise TextExportError("No chapters found to export")

    numbers = list(chapter_numbers) if chapter_numbers is not None else list(range(1, len(chapters) + 1))
    if len(numbers) != len(chapters):
        raise TextExportError("Chapter numbering does not match the exported chapters.")

    project_title = _clean(getattr(project, "title", "")) or "Untitled Project"
    lines: List[str] = []

    if options.include_metadata:
        lines.extend([project_title, "=" * len(project_title)])
        description = _clean(getattr(project, "description", ""))
        if description:
            lines.extend(["", "Description:", description])
        lines.extend(
            [
                "",
                f"Created: {format_date(getattr(project, 'created_at', None))}",
                f"Last Updated: {format_date(getattr(project, 'updated_at', None))}",
                f"Chapters: {len(chapters)}",
            ]
        )

    for chapter, number in zip(chapters, numbers):
        if lines:
            lines.extend(["", ""])
        if options.include_chapter_titles:
            header = f"Chapter {number}: {_clean(getattr(chapter, 'title', '')) or 'Untitled Chapter'}"
            lines.extend([header, "-" * len(header), ""])

        paragraphs = html_to_paragraphs(getattr(chapter, "content", "") or "")
        if paragraphs:
            lines.append("\n\n".join(paragraphs))
        else:
            lines.append("(No chapter text available.)")

    return "\n".join(lines).rstrip() + "\n"


__all__ = ["TextExportError", "export_chapters_to_txt"]
