import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kalligram.text_utils import count_words, excerpt, html_to_paragraphs, html_to_text, slugify


def test_html_to_paragraphs_splits_block_tags():
    content = "<h2>Part One</h2><p>The tide&nbsp;went <em>out</em>.</p><p>Line<br>break</p>"

    assert html_to_paragraphs(content) == ["Part One", "The tide\xa0went out.", "Line", "break"]


def test_html_to_paragraphs_skips_scripts_and_empty_blocks():
    content = "<p></p><script>alert('x')</script><p>Kept &amp; shown</p>"

    assert html_to_paragraphs(content) == ["Kept & shown"]


def test_plain_text_paragraphs():
    assert html_to_paragraphs("First line\ncontinues.\n\nSecond   paragraph.") == [
        "First line continues.",
        "Second paragraph.",
    ]
    assert html_to_paragraphs("   ") == []
    assert html_to_paragraphs(None) == []


def test_html_to_text_and_word_count():
    content = "<p>One two</p><p>three</p>"

    assert html_to_text(content) == "One two\n\nthree"
    assert count_words(content) == 3
    assert count_words("") == 0


def test_excerpt_clips_on_word_boundary():
    assert excerpt("short", 10) == "short"
    assert excerpt("the quick brown fox", 12) == "the quick…"


def test_slugify():
    assert slugify("Salt Roads: Part II") == "salt-roads-part-ii"
    assert slugify("!!!") == "story-export"
    assert slugify(None, fallback="chapter") == "chapter"


def test_html_to_paragraphs_handles_lists_and_styles():
    content = "<style>p { color: red; }</style><ul>\n  <li>Rope</li>\n  <li>Lantern <b>oil</b></li>\n</ul><hr><p>After</p>"

    assert html_to_paragraphs(content) == ["Rope", "Lantern oil", "After"]


def test_excerpt_never_exceeds_limit():
    clipped = excerpt("word " * 50, 20)

    assert clipped.endswith("…")
    assert len(clipped) <= 20
