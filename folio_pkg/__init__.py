"""
Folio - A static blog generator.

Folio turns a tree of Markdown posts and pages with YAML front matter into a
static website: layouts are Jinja2 templates resolved through explicit
inheritance chains, posts are indexed by date, category and tag, listings
are paginated, and feeds, sitemaps and SEO tags are derived from the full
set of rendered documents.
"""

__version__ = "1.0.0"

from .core import Folio, BuildReport
from .settings import FolioSettings, SiteConfig

__all__ = ['Folio', 'BuildReport', 'FolioSettings', 'SiteConfig']
