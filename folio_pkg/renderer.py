import os
import re
import html
import math
import logging
import threading
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from typing import Optional

import emoji
import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .errors import RenderWarning
from .models import RenderedDocument

FENCE_RE = re.compile(r"^(?P<indent>[ \t]{0,3})(?P<marker>`{3,}|~{3,})(?P<info>.*)$")
TAG_RE = re.compile(r"<[^>]+>")
CODE_SEGMENT_RE = re.compile(r"(<pre\b.*?</pre>|<code\b.*?</code>)", re.DOTALL | re.IGNORECASE)
WORDS_PER_MINUTE = 200

# Fan out to worker processes only when the batch is large enough to pay for it
PARALLEL_THRESHOLD = 12

# Per-process renderer for pool workers
thread_local = threading.local()


@dataclass(frozen=True)
class RenderOptions:
    sanitize: bool = True
    highlighter: Optional[str] = None
    emoji: bool = False
    excerpt_separator: str = '\n\n'
    excerpt_words: int = 30

    @classmethod
    def from_config(cls, config):
        return cls(
            sanitize=config.sanitize,
            highlighter=config.highlighter,
            emoji=config.plugin_enabled('emoji'),
            excerpt_separator=config.excerpt_separator,
            excerpt_words=config.excerpt_words,
        )


def strip_tags(text):
    plain = html.unescape(TAG_RE.sub('', text))
    return re.sub(r'\s+', ' ', plain).strip()


def scan_fences(body):
    """
    Find fenced code blocks in a Markdown body.

    Returns:
        (languages, unterminated_marker): the info-string language of each
        fence in order, and the opening marker of a fence left open at the
        end of the body (None when every fence is closed).
    """
    languages = []
    open_marker = None
    for line in body.splitlines():
        match = FENCE_RE.match(line)
        if not match:
            continue
        marker = match.group('marker')
        info = match.group('info').strip()
        if open_marker is None:
            if marker[0] == '`' and '`' in info:
                continue
            open_marker = marker
            languages.append(info.split()[0] if info else '')
        elif marker[0] == open_marker[0] and len(marker) >= len(open_marker) and not info:
            open_marker = None
    return languages, open_marker


class ContentRenderer:
    """Convert document bodies to HTML. Pure: one Document in, one RenderedDocument out."""

    def __init__(self, options=None):
        self.options = options or RenderOptions()
        self.logger = logging.getLogger('folio.renderer')
        self.markdown_parser = self.create_markdown_parser()
        self.formatter = HtmlFormatter(cssclass='highlight')

    def create_markdown_parser(self):
        """Create a Mistune markdown parser with a custom code block renderer."""
        outer = self

        class FolioRenderer(mistune.HTMLRenderer):
            def __init__(self):
                super().__init__(escape=outer.options.sanitize)

            def block_code(self, code, info=None):
                language = info.split()[0] if info and info.strip() else ''
                return outer.render_code_block(code, language)

        return mistune.create_markdown(
            renderer=FolioRenderer(),
            plugins=['table', 'task_lists', 'strikethrough', 'footnotes']
        )

    def render_code_block(self, code, language):
        lang_attr = html.escape(language, quote=True)
        if language and self.options.highlighter == 'pygments':
            try:
                lexer = get_lexer_by_name(language)
            except ClassNotFound:
                self.logger.debug(f"No lexer for '{language}', leaving block unhighlighted")
            else:
                highlighted = highlight(code, lexer, self.formatter)
                return f'<div class="language-{lang_attr} highlighter-pygments">{highlighted}</div>\n'
        if language:
            return (f'<pre><code class="language-{lang_attr}" data-lang="{lang_attr}">'
                    f'{mistune.escape(code)}</code></pre>\n')
        return f'<pre><code>{mistune.escape(code)}</code></pre>\n'

    def markdown_filter(self, text):
        """Convert markdown text to HTML."""
        return self.markdown_parser(text)

    def emojize(self, fragment):
        """Replace :shortcodes: outside of code."""
        parts = CODE_SEGMENT_RE.split(fragment)
        for index in range(0, len(parts), 2):
            parts[index] = emoji.emojize(parts[index], language='alias')
        return ''.join(parts)

    def render(self, document):
        """
        Render one document.

        Returns:
            (RenderedDocument, list of RenderWarning)
        """
        warnings = []
        body = document.body
        languages = ()

        if document.markup == 'html':
            rendered = body
        else:
            languages, open_marker = scan_fences(body)
            if open_marker is not None:
                warnings.append(RenderWarning(
                    document.source_path,
                    f"unterminated fenced code block (opened with {open_marker}); closed at end of document"))
                body = body.rstrip('\n') + '\n' + open_marker + '\n'
            try:
                rendered = self.markdown_filter(body)
            except Exception as e:
                warnings.append(RenderWarning(document.source_path, f"markdown rendering failed: {e}"))
                rendered = f'<pre>{html.escape(document.body)}</pre>\n'

        if self.options.emoji:
            rendered = self.emojize(rendered)

        return RenderedDocument(
            document=document,
            html=rendered,
            excerpt=self.generate_excerpt(document),
            reading_time=self.reading_time(rendered),
            code_languages=tuple(languages),
        ), warnings

    def generate_excerpt(self, document):
        """Generate a plain-text excerpt from front matter or the first section of the body."""
        explicit = document.front_matter.get('excerpt')
        if explicit:
            plain_text = strip_tags(str(explicit))
        else:
            head = document.body.strip().split(self.options.excerpt_separator, 1)[0]
            if document.markup == 'html':
                plain_text = strip_tags(head)
            else:
                try:
                    plain_text = strip_tags(self.markdown_filter(head))
                except Exception:
                    plain_text = strip_tags(head)
        words = plain_text.split()
        if len(words) > self.options.excerpt_words:
            return ' '.join(words[:self.options.excerpt_words]) + '...'
        return plain_text

    def reading_time(self, rendered_html):
        words = len(strip_tags(rendered_html).split())
        return max(1, math.ceil(words / WORDS_PER_MINUTE))


def initializer(options):
    """Create the worker's renderer once per pool process."""
    thread_local.renderer = ContentRenderer(options)


def render_in_worker(document):
    return thread_local.renderer.render(document)


def render_all(documents, options, workers=None):
    """
    Render a batch of documents, in input order.

    Large batches fan out over a process pool; every result is collected
    before returning.
    """
    logger = logging.getLogger('folio.renderer')
    documents = list(documents)
    max_workers = workers or os.cpu_count() or 1

    if len(documents) >= PARALLEL_THRESHOLD and max_workers > 1:
        logger.info(f"Rendering {len(documents)} documents with {max_workers} workers")
        try:
            with ProcessPoolExecutor(max_workers=max_workers, initializer=initializer,
                                     initargs=(options,)) as executor:
                return list(executor.map(render_in_worker, documents, chunksize=4))
        except (BrokenProcessPool, OSError) as e:
            logger.warning(f"Render pool unavailable ({e}), rendering in-process")

    renderer = ContentRenderer(options)
    return [renderer.render(document) for document in documents]
