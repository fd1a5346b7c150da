"""
Derived artifact generators.

Each generator turns the complete SiteIndex into one OutputArtifact. They
are registered explicitly from the configured plugin list by
``registered_generators``; nothing is discovered at runtime.
"""

import re
import html
import logging
from datetime import datetime
from typing import List
from xml.sax.saxutils import escape, quoteattr

from pygments.formatters import HtmlFormatter

from .models import OutputArtifact, SiteIndex

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


def xml_datetime(value: datetime) -> str:
    return value.strftime('%Y-%m-%dT%H:%M:%S+00:00')


class DerivedArtifactGenerator:
    """Interface: produce one artifact from the whole site index."""

    name = None

    def __init__(self, config):
        self.config = config
        self.logger = logging.getLogger(f'folio.generators.{self.name}')

    def produce(self, site_index: SiteIndex) -> OutputArtifact:
        raise NotImplementedError


class FeedGenerator(DerivedArtifactGenerator):
    """Atom feed of the newest posts."""

    name = 'feed'
    path = 'feed.xml'

    def produce(self, site_index):
        self.logger.info("Generating Atom feed")
        posts = site_index.posts[:self.config.feed_limit]
        site_title = self.config.title or 'Feed'
        feed_url = self.config.absolute_url('/' + self.path)
        home_url = self.config.absolute_url('/')
        # newest post date, never the clock
        updated = posts[0].date if posts else datetime(1970, 1, 1)

        parts = [
            XML_DECLARATION,
            '<feed xmlns="http://www.w3.org/2005/Atom">\n',
            '<generator>Folio</generator>\n',
            f'<link href="{escape(feed_url)}" rel="self" type="application/atom+xml" />\n',
            f'<link href="{escape(home_url)}" rel="alternate" type="text/html" />\n',
            f'<updated>{xml_datetime(updated)}</updated>\n',
            f'<id>{escape(feed_url)}</id>\n',
            f'<title>{escape(site_title)}</title>\n',
        ]
        if self.config.description:
            parts.append(f'<subtitle>{escape(self.config.description)}</subtitle>\n')
        if self.config.author:
            parts.append(f'<author><name>{escape(str(self.config.author))}</name></author>\n')

        for post in posts:
            link = self.config.absolute_url(post.url)
            summary = re.sub(r'\s+', ' ', html.unescape(post.excerpt)).strip()
            parts.append('<entry>\n')
            parts.append(f'<title type="html">{escape(post.title)}</title>\n')
            parts.append(f'<link href="{escape(link)}" rel="alternate" type="text/html" />\n')
            parts.append(f'<published>{xml_datetime(post.date)}</published>\n')
            parts.append(f'<updated>{xml_datetime(post.date)}</updated>\n')
            parts.append(f'<id>{escape(link)}</id>\n')
            for category in sorted(post.document.categories | post.document.tags):
                parts.append(f'<category term={quoteattr(category)} />\n')
            if summary:
                parts.append(f'<summary type="html">{escape(summary)}</summary>\n')
            parts.append('</entry>\n')
        parts.append('</feed>\n')

        return OutputArtifact(self.path, ''.join(parts).encode('utf-8'), 'application/atom+xml')


class SitemapGenerator(DerivedArtifactGenerator):
    """sitemaps.org URL index of every published HTML artifact."""

    name = 'sitemap'
    path = 'sitemap.xml'
    skipped_paths = ('404.html',)

    def include(self, artifact):
        if not artifact.is_html or artifact.path in self.skipped_paths:
            return False
        if artifact.document is not None:
            document = artifact.document.document
            if document.draft or document.front_matter.get('sitemap') is False:
                return False
        return True

    def produce(self, site_index):
        self.logger.info("Generating XML sitemap")
        entries = []
        for artifact in sorted(site_index.html_artifacts, key=lambda a: a.path):
            if not self.include(artifact):
                continue
            location = artifact.path
            if location == 'index.html' or location.endswith('/index.html'):
                location = location[:-len('index.html')]
            url = self.config.absolute_url('/' + location)
            entry = f'<url>\n<loc>{escape(url)}</loc>\n'
            if artifact.document is not None and artifact.document.date is not None:
                entry += f'<lastmod>{xml_datetime(artifact.document.date)}</lastmod>\n'
            entries.append(entry + '</url>\n')

        content = (XML_DECLARATION
                   + '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">\n'
                   + ''.join(entries)
                   + '</urlset>\n')
        return OutputArtifact(self.path, content.encode('utf-8'), 'application/xml')


class RobotsGenerator(DerivedArtifactGenerator):
    name = 'robots'
    path = 'robots.txt'

    def produce(self, site_index):
        self.logger.info("Generating robots.txt")
        if self.config.robots == 'private':
            content = "User-agent: *\nDisallow: /\n"
        else:
            content = "User-agent: *\nAllow: /\n"
            if self.config.plugin_enabled('sitemap') and self.config.url:
                content += f"\nSitemap: {self.config.absolute_url('/sitemap.xml')}\n"
        return OutputArtifact(self.path, content.encode('utf-8'), 'text/plain')


class SyntaxStylesheetGenerator(DerivedArtifactGenerator):
    """Pygments stylesheet matching the highlighted code blocks."""

    name = 'syntax'
    path = 'assets/css/syntax.css'

    def produce(self, site_index):
        css = HtmlFormatter(cssclass='highlight').get_style_defs('.highlight')
        return OutputArtifact(self.path, (css + '\n').encode('utf-8'), 'text/css')


def registered_generators(config) -> List[DerivedArtifactGenerator]:
    """Instantiate the generators enabled by the configuration, in a fixed order."""
    generators = []
    if config.plugin_enabled('feed'):
        generators.append(FeedGenerator(config))
    if config.plugin_enabled('sitemap'):
        generators.append(SitemapGenerator(config))
    if config.robots:
        generators.append(RobotsGenerator(config))
    if config.highlighter == 'pygments':
        generators.append(SyntaxStylesheetGenerator(config))
    return generators
