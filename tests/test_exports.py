import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from pdf_handler import PDFExportError, PdfExportOptions, export_chapters_to_pdf, format_date
from text_exporter import TextExportError, export_chapters_to_txt


@pytest.fixture
def project():
    return SimpleNamespace(
        title="Salt Roads",
        description="Smugglers on a dying sea.",
        created_at=datetime(2024, 3, 5, 12, 0),
        updated_at=datetime(2024, 11, 20, 8, 30),
    )


@pytest.fixture
def chapters():
    return [
        SimpleNamespace(title="Harbour", content="<p>The tide went out.</p><p>Gulls “cried” — loudly.</p>"),
        SimpleNamespace(title="Storm", content=""),
    ]


def test_format_date():
    assert format_date(datetime(2024, 3, 5)) == "Mar 5, 2024"
    assert format_date(None) == "Unknown"


def test_export_chapters_to_pdf_returns_pdf_bytes(project, chapters):
    data = export_chapters_to_pdf(project, chapters, options=PdfExportOptions(author="Ana"))

    assert isinstance(data, bytes)
    assert data.startswith(b"%PDF")


def test_export_chapters_to_pdf_supports_page_sizes(project, chapters):
    options = PdfExportOptions(page_size="letter", include_metadata=False, margins=(10, 15, 10, 15))

    assert export_chapters_to_pdf(project, chapters[:1], options=options).startswith(b"%PDF")


def test_export_chapters_to_pdf_validates_input(project, chapters):
    with pytest.raises(PDFExportError, match="No chapters found to export"):
        export_chapters_to_pdf(project, [])
    with pytest.raises(PDFExportError, match="Unsupported page size"):
        export_chapters_to_pdf(project, chapters, options=PdfExportOptions(page_size="b5"))
    with pytest.raises(PDFExportError):
        export_chapters_to_pdf(project, chapters, chapter_numbers=[1])


def test_export_chapters_to_txt_layout(project, chapters):
    text = export_chapters_to_txt(project, chapters)

    assert text.startswith("Salt Roads\n==========\n\nDescription:\nSmugglers on a dying sea.")
    assert "Created: Mar 5, 2024" in text
    assert "Last Updated: Nov 20, 2024" in text
    assert "Chapters: 2" in text
    assert "Chapter 1: Harbour\n------------------\n\nThe tide went out.\n\nGulls “cried” — loudly." in text
    assert "Chapter 2: Storm" in text
    assert text.rstrip().endswith("(No chapter text available.)")


def test_export_chapters_to_txt_respects_options(project, chapters):
    options = PdfExportOptions(include_chapter_titles=False, include_metadata=False)

    text = export_chapters_to_txt(project, chapters[:1], options=options, chapter_numbers=[4])

    assert text == "The tide went out.\n\nGulls “cried” — loudly.\n"


def test_export_chapters_to_txt_requires_chapters(project):
    with pytest.raises(TextExportError):
        export_chapters_to_txt(project, [])
