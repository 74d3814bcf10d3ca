"""Plain-text helpers for the rich-text chapter content."""
from __future__ import annotations

import re
from typing import List, Optional

from bs4 import BeautifulSoup

_BLOCK_TAGS = [
    "p",
    "div",
    "li",
    "ul",
    "ol",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "blockquote",
    "pre",
    "tr",
]
_BREAK_TAGS = ["br", "hr"]
_SKIPPED_TAGS = ["script", "style"]
_PARAGRAPH_BREAK = "\n\n"
_BLANK_LINE_PATTERN = re.compile(r"\n[ \t\r\f\v]*\n")
_WHITESPACE_PATTERN = re.compile(r"[ \t\r\f\v\n]+")


def html_to_paragraphs(content: Optional[str]) -> List[str]:
    """Split chapter ``content`` into plain-text paragraphs.

    Content written in the editor is HTML, older chapters may be plain text
    separated by blank lines; both produce the same paragraph list.
    """

    if not content or not content.strip():
        return []

    soup = BeautifulSoup(content, "html.parser")
    for tag in soup.find_all(_SKIPPED_TAGS):
        tag.decompose()
    for tag in soup.find_all(_BREAK_TAGS):
        tag.replace_with(_PARAGRAPH_BREAK)
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before(_PARAGRAPH_BREAK)
        tag.insert_after(_PARAGRAPH_BREAK)

    paragraphs = []
    for block in _BLANK_LINE_PATTERN.split(soup.get_text()):
        cleaned = _WHITESPACE_PATTERN.sub(" ", block).strip()
        if cleaned:
            paragraphs.append(cleaned)
    return paragraphs


def html_to_text(content: Optional[str]) -> str:
    return "\n\n".join(html_to_paragraphs(content))


def count_words(content: Optional[str]) -> int:
    text = html_to_text(content)
    if not text:
        return 0
    return len(text.split())


def excerpt(text: Optional[str], max_chars: int) -> str:
    """Return ``text`` clipped to ``max_chars`` on a word boundary."""

    cleaned = (text or "").strip()
    if len(cleaned) <= max_chars:
        return cleaned
    clipped = cleaned[: max_chars - 1].rsplit(" ", 1)[0].rstrip()
    return clipped + "…"


def slugify(value: Optional[str], fallback: str = "story-export") -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", (value or "").strip().lower()).strip("-")
    return slug or fallback
