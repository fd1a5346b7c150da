"""Tests for feed, sitemap and robots generators."""

import pytest
import os
import xml.etree.ElementTree as ET

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from folio_pkg.assembler import SiteAssembler
from folio_pkg.frontmatter import parse_document
from folio_pkg.generators import (
    FeedGenerator, SitemapGenerator, RobotsGenerator, SyntaxStylesheetGenerator, registered_generators,
)
from folio_pkg.layouts import LayoutResolver
from folio_pkg.renderer import ContentRenderer

ATOM = '{http://www.w3.org/2005/Atom}'
SITEMAP = '{http://www.sitemaps.org/schemas/sitemap/0.9}'


@pytest.fixture
def site(make_source, make_config):
    """Assemble a small site and return (config, artifacts by path, site index)."""
    def _site(files, **settings):
        settings.setdefault('title', 'Blog & Notes')
        settings.setdefault('url', 'https://example.com')
        config = make_config(**settings)
        renderer = ContentRenderer()
        rendered = [renderer.render(parse_document(make_source(path, text), config))[0] for path, text in files]
        assembler = SiteAssembler(config, LayoutResolver(config), registered_generators(config))
        artifacts, index = assembler.assemble(rendered)
        return config, {a.path: a for a in artifacts}, index
    return _site


POSTS = [
    ('_posts/2023-01-01-first.md', "---\ntitle: First\ndate: 2023-01-01\ntags: [python]\n---\nFirst body.\n"),
    ('_posts/2023-03-05-second.md', "---\ntitle: Second <b>bold</b>\ndate: 2023-03-05 10:00:00\n---\nSecond body.\n"),
    ('about.md', "---\ntitle: About\n---\nAbout.\n"),
    ('hidden.md', "---\ntitle: Hidden\nsitemap: false\n---\nHidden.\n"),
    ('404.md', "---\ntitle: Not Found\n---\nGone.\n"),
]


class TestFeedGenerator:
    """Test cases for the Atom feed."""

    def test_feed_entries(self, site):
        config, artifacts, _ = site(POSTS, plugins=['feed'])
        root = ET.fromstring(artifacts['feed.xml'].content)

        entries = root.findall(f'{ATOM}entry')
        assert [e.find(f'{ATOM}title').text for e in entries] == ['Second <b>bold</b>', 'First']
        assert root.find(f'{ATOM}title').text == 'Blog & Notes'
        assert root.find(f'{ATOM}updated').text == '2023-03-05T10:00:00+00:00'
        links = [e.find(f'{ATOM}link').get('href') for e in entries]
        assert links == ['https://example.com/2023/03/05/second/', 'https://example.com/2023/01/01/first/']
        assert entries[1].find(f'{ATOM}category').get('term') == 'python'
        assert artifacts['feed.xml'].content_type == 'application/atom+xml'

    def test_feed_limit(self, site):
        posts = [(f'_posts/2023-01-{d:02d}-p{d}.md', f"---\ntitle: P{d}\n---\nBody\n") for d in range(1, 8)]
        _, artifacts, _ = site(posts, plugins=['feed'], feed_limit=3)
        root = ET.fromstring(artifacts['feed.xml'].content)
        assert [e.find(f'{ATOM}title').text for e in root.findall(f'{ATOM}entry')] == ['P7', 'P6', 'P5']

    def test_feed_without_posts(self, site):
        _, artifacts, _ = site([('about.md', "About\n")], plugins=['feed'])
        root = ET.fromstring(artifacts['feed.xml'].content)
        assert root.findall(f'{ATOM}entry') == []
        assert root.find(f'{ATOM}updated').text == '1970-01-01T00:00:00+00:00'

    def test_disabled_by_default(self, site):
        _, artifacts, _ = site(POSTS)
        assert 'feed.xml' not in artifacts
        assert 'sitemap.xml' not in artifacts


class TestSitemapGenerator:
    """Test cases for the XML sitemap."""

    def test_sitemap_urls(self, site):
        _, artifacts, _ = site(POSTS, plugins=['sitemap'], baseurl='/blog')
        root = ET.fromstring(artifacts['sitemap.xml'].content)
        urls = [u.find(f'{SITEMAP}loc').text for u in root.findall(f'{SITEMAP}url')]

        assert 'https://example.com/blog/about/' in urls
        assert 'https://example.com/blog/2023/01/01/first/' in urls
        assert 'https://example.com/blog/' in urls
        assert 'https://example.com/blog/tags/python/' in urls
        assert not any('hidden' in u for u in urls)
        assert not any('404' in u for u in urls)

    def test_lastmod_for_posts(self, site):
        _, artifacts, _ = site(POSTS, plugins=['sitemap'])
        root = ET.fromstring(artifacts['sitemap.xml'].content)
        lastmods = {u.find(f'{SITEMAP}loc').text: u.find(f'{SITEMAP}lastmod') for u in root.findall(f'{SITEMAP}url')}
        assert lastmods['https://example.com/2023/03/05/second/'].text == '2023-03-05T10:00:00+00:00'
        assert lastmods['https://example.com/about/'] is None

    def test_drafts_excluded(self, site):
        files = POSTS + [('_drafts/wip.md', "---\ntitle: WIP\ndate: 2023-04-01\n---\nWIP\n")]
        _, artifacts, _ = site(files, plugins=['sitemap'], show_drafts=True)
        assert b'wip' not in artifacts['sitemap.xml'].content
        assert '2023/04/01/wip/index.html' in artifacts


class TestRobotsGenerator:
    def test_public_with_sitemap(self, site):
        _, artifacts, _ = site(POSTS, plugins=['sitemap'])
        assert artifacts['robots.txt'].content == (
            b"User-agent: *\nAllow: /\n\nSitemap: https://example.com/sitemap.xml\n")

    def test_private(self, site):
        _, artifacts, _ = site(POSTS, robots='private')
        assert artifacts['robots.txt'].content == b"User-agent: *\nDisallow: /\n"

    def test_disabled(self, site):
        _, artifacts, _ = site(POSTS, robots='none')
        assert 'robots.txt' not in artifacts


class TestRegistration:
    def test_fixed_order(self, make_config):
        config = make_config(plugins=['sitemap', 'feed'], highlighter='pygments')
        names = [g.name for g in registered_generators(config)]
        assert names == ['feed', 'sitemap', 'robots', 'syntax']

    def test_syntax_stylesheet(self, make_config):
        config = make_config(highlighter='pygments')
        artifact = SyntaxStylesheetGenerator(config).produce(None)
        assert artifact.path == 'assets/css/syntax.css'
        assert b'.highlight' in artifact.content

    def test_generators_are_deterministic(self, site):
        """Test that producing twice from the same index gives identical bytes."""
        config, _, index = site(POSTS, plugins=['feed', 'sitemap'])
        for generator in (FeedGenerator(config), SitemapGenerator(config), RobotsGenerator(config)):
            assert generator.produce(index).content == generator.produce(index).content
