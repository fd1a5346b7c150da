"""Tests for the content renderer."""

import pytest
import os
import logging
from unittest.mock import patch

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from folio_pkg.errors import RenderWarning
from folio_pkg.frontmatter import parse_document
from folio_pkg.renderer import ContentRenderer, RenderOptions, render_all, scan_fences, strip_tags


@pytest.fixture
def make_document(make_source, config):
    def _make(body, relative_path='page.md', front_matter="title: Test\n", site_config=None):
        text = f"---\n{front_matter}---\n{body}"
        return parse_document(make_source(relative_path, text), site_config or config)
    return _make


class TestScanFences:
    """Test cases for fenced code block detection."""

    def test_closed_fences(self):
        languages, open_marker = scan_fences("```python\nx = 1\n```\n\n~~~\nplain\n~~~\n")
        assert languages == ['python', '']
        assert open_marker is None

    def test_unterminated_fence(self):
        languages, open_marker = scan_fences("Intro\n\n```js\nconsole.log(1)\n")
        assert languages == ['js']
        assert open_marker == '```'

    def test_longer_closing_fence(self):
        """Test that a closing fence may be longer than the opening one."""
        _, open_marker = scan_fences("````\ncode\n``````\n")
        assert open_marker is None

    def test_mismatched_marker_does_not_close(self):
        _, open_marker = scan_fences("```\ncode\n~~~\n")
        assert open_marker == '```'


class TestContentRenderer:
    """Test cases for Markdown rendering."""

    def test_basic_markdown(self, make_document):
        """Test that Markdown becomes HTML."""
        rendered, warnings = ContentRenderer().render(make_document("# Title\n\nSome *emphasis*.\n"))
        assert '<h1>Title</h1>' in rendered.html
        assert '<em>emphasis</em>' in rendered.html
        assert warnings == []

    def test_code_block_language_class(self, make_document):
        """Test that fenced code carries a language class."""
        rendered, _ = ContentRenderer().render(make_document("```python\nprint('<x>')\n```\n"))
        assert 'class="language-python"' in rendered.html
        assert '&lt;x&gt;' in rendered.html
        assert rendered.code_languages == ('python',)

    def test_unterminated_fence_warns_once(self, make_document):
        """Test that an unterminated fence still renders with exactly one warning."""
        document = make_document("Intro paragraph.\n\n```python\nx = 1\n", relative_path='broken.md')
        rendered, warnings = ContentRenderer().render(document)

        assert len(warnings) == 1
        assert isinstance(warnings[0], RenderWarning)
        assert warnings[0].document == 'broken.md'
        assert 'unterminated' in str(warnings[0])
        assert 'Intro paragraph.' in rendered.html
        assert 'x = 1' in rendered.html

    def test_engine_failure_falls_back(self, make_document):
        """Test that a Markdown engine error yields escaped text and a warning."""
        renderer = ContentRenderer()
        with patch.object(renderer, 'markdown_filter', side_effect=RuntimeError("boom")):
            rendered, warnings = renderer.render(make_document("<b>bold</b>\n"))
        assert rendered.html.startswith('<pre>')
        assert '&lt;b&gt;' in rendered.html
        assert len(warnings) == 1
        assert 'boom' in str(warnings[0])

    def test_sanitize_escapes_raw_html(self, make_document):
        """Test that raw HTML is escaped when sanitizing."""
        rendered, _ = ContentRenderer(RenderOptions(sanitize=True)).render(make_document("<script>alert(1)</script>\n"))
        assert '<script>' not in rendered.html

    def test_raw_html_allowed_without_sanitize(self, make_document):
        rendered, _ = ContentRenderer(RenderOptions(sanitize=False)).render(make_document("<div class=\"x\">hi</div>\n"))
        assert '<div class="x">hi</div>' in rendered.html

    def test_pygments_highlighting(self, make_document):
        """Test server-side highlighting with Pygments."""
        renderer = ContentRenderer(RenderOptions(highlighter='pygments'))
        rendered, _ = renderer.render(make_document("```python\ndef f():\n    return 1\n```\n"))
        assert 'class="highlight"' in rendered.html
        assert 'language-python' in rendered.html

    def test_unknown_lexer_is_left_plain(self, make_document):
        renderer = ContentRenderer(RenderOptions(highlighter='pygments'))
        rendered, warnings = renderer.render(make_document("```nosuchlang\nstuff\n```\n"))
        assert 'class="language-nosuchlang"' in rendered.html
        assert warnings == []

    def test_emoji_shortcodes(self, make_document):
        """Test that shortcodes are replaced outside code only."""
        renderer = ContentRenderer(RenderOptions(emoji=True))
        rendered, _ = renderer.render(make_document("Ship it :rocket:\n\n`:rocket:`\n"))
        assert '\U0001F680' in rendered.html
        assert '<code>:rocket:</code>' in rendered.html

    def test_html_documents_pass_through(self, make_document):
        rendered, _ = ContentRenderer().render(make_document("<p>*not markdown*</p>\n", relative_path='raw.html'))
        assert rendered.html == "<p>*not markdown*</p>\n"

    def test_tables_and_strikethrough(self, make_document):
        rendered, _ = ContentRenderer().render(make_document("| a | b |\n|---|---|\n| 1 | 2 |\n\n~~gone~~\n"))
        assert '<table>' in rendered.html
        assert '<del>gone</del>' in rendered.html

    def test_excerpt_from_first_paragraph(self, make_document):
        rendered, _ = ContentRenderer().render(make_document("First *paragraph*.\n\nSecond paragraph.\n"))
        assert rendered.excerpt == 'First paragraph.'

    def test_excerpt_from_front_matter(self, make_document):
        rendered, _ = ContentRenderer().render(make_document("Body.\n", front_matter="excerpt: Custom <b>summary</b>\n"))
        assert rendered.excerpt == 'Custom summary'

    def test_excerpt_truncated(self, make_document):
        renderer = ContentRenderer(RenderOptions(excerpt_words=3))
        rendered, _ = renderer.render(make_document("one two three four five\n"))
        assert rendered.excerpt == 'one two three...'

    def test_reading_time(self, make_document):
        renderer = ContentRenderer()
        short, _ = renderer.render(make_document("A few words.\n"))
        long, _ = renderer.render(make_document(("word " * 450) + "\n"))
        assert short.reading_time == 1
        assert long.reading_time == 3

    def test_render_is_pure(self, make_document):
        """Test that rendering the same document twice gives equal results."""
        renderer = ContentRenderer()
        document = make_document("# Same\n\nText.\n")
        first, _ = renderer.render(document)
        second, _ = renderer.render(document)
        assert first.html == second.html
        assert first.excerpt == second.excerpt


class TestRenderAll:
    """Test cases for batch rendering."""

    def test_serial_keeps_order(self, make_document):
        documents = [make_document(f"Doc {i}\n", relative_path=f"d{i}.md") for i in range(5)]
        results = render_all(documents, RenderOptions(), workers=1)
        assert [r.source_path for r, _ in results] == [f"d{i}.md" for i in range(5)]

    def test_pool_failure_falls_back_to_serial(self, make_document):
        """Test that an unavailable process pool degrades to in-process rendering."""
        documents = [make_document(f"Doc {i}\n", relative_path=f"d{i:02d}.md") for i in range(12)]
        with patch('folio_pkg.renderer.ProcessPoolExecutor', side_effect=OSError("no processes")):
            results = render_all(documents, RenderOptions(), workers=4)
        assert len(results) == 12
        assert results[0][0].source_path == 'd00.md'

    def test_process_pool_keeps_order_and_warnings(self, make_document, caplog):
        """Test a real fan-out: results come back in input order with their warnings."""
        documents = [make_document(f"Doc {i}\n\n```python\nx = {i}\n", relative_path=f"d{i:02d}.md")
                     for i in range(14)]

        with caplog.at_level(logging.WARNING, logger='folio.renderer'):
            results = render_all(documents, RenderOptions(), workers=2)

        assert "Render pool unavailable" not in caplog.text
        assert [r.source_path for r, _ in results] == [f"d{i:02d}.md" for i in range(14)]
        for position, (rendered, warnings) in enumerate(results):
            assert f"x = {position}" in rendered.html
            assert len(warnings) == 1
            assert isinstance(warnings[0], RenderWarning)
            assert warnings[0].document == f"d{position:02d}.md"


def test_strip_tags():
    assert strip_tags("<p>Hello&amp;  <b>world</b></p>") == 'Hello& world'
