"""Records passed between the pipeline stages."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

POST = 'post'
PAGE = 'page'

HTML_CONTENT_TYPE = 'text/html'


@dataclass(frozen=True)
class SourceFile:
    """A candidate content file found by the scanner."""

    path: str
    relative_path: str
    raw: bytes
    kind: str
    draft: bool = False
    mtime: float = 0.0


@dataclass(frozen=True)
class Document:
    """One parsed source document. Never mutated after parsing."""

    source_path: str
    front_matter: Mapping[str, Any]
    body: str
    kind: str
    date: Optional[datetime]
    categories: FrozenSet[str]
    tags: FrozenSet[str]
    layout: Optional[str]
    draft: bool
    title: str
    slug: str
    url: str
    markup: str = 'markdown'

    @property
    def is_post(self) -> bool:
        return self.kind == POST

    @property
    def output_path(self) -> str:
        """Destination of the rendered page relative to the output root."""
        path = self.url.lstrip('/')
        if not path or path.endswith('/'):
            path += 'index.html'
        elif '.' not in path.rsplit('/', 1)[-1]:
            # /about is written as about.html, leaving about/ free for children
            path += '.html'
        return path


@dataclass(frozen=True)
class RenderedDocument:
    document: Document
    html: str
    excerpt: str
    reading_time: int = 1
    code_languages: Tuple[str, ...] = ()

    # Convenience accessors so templates can treat this like a page record
    @property
    def title(self):
        return self.document.title

    @property
    def url(self):
        return self.document.url

    @property
    def date(self):
        return self.document.date

    @property
    def source_path(self):
        return self.document.source_path

    def as_page(self) -> Dict[str, Any]:
        """Template view of the document: front matter plus derived fields."""
        page = dict(self.document.front_matter)
        page.update({
            'title': self.document.title,
            'url': self.document.url,
            'date': self.document.date,
            'categories': sorted(self.document.categories),
            'tags': sorted(self.document.tags),
            'layout': self.document.layout,
            'draft': self.document.draft,
            'kind': self.document.kind,
            'slug': self.document.slug,
            'path': self.document.source_path,
            'excerpt': self.excerpt,
            'reading_time': self.reading_time,
            'content': self.html,
        })
        return page


@dataclass(frozen=True)
class OutputArtifact:
    """A file to be written below the destination directory."""

    path: str
    content: bytes
    content_type: str
    document: Optional[RenderedDocument] = field(default=None, compare=False)

    @property
    def is_html(self) -> bool:
        return self.content_type == HTML_CONTENT_TYPE

    @property
    def origin(self) -> str:
        if self.document is not None:
            return self.document.source_path
        return f"generated {self.path}"


@dataclass(frozen=True)
class PaginationGroup:
    """One page of the chronological post listing."""

    number: int
    total_pages: int
    posts: Tuple[RenderedDocument, ...]
    path: str
    previous_path: Optional[str] = None
    next_path: Optional[str] = None


@dataclass(frozen=True)
class SiteIndex:
    posts: Tuple[RenderedDocument, ...]
    pages: Tuple[RenderedDocument, ...]
    categories: Mapping[str, Tuple[RenderedDocument, ...]]
    tags: Mapping[str, Tuple[RenderedDocument, ...]]
    pagination: Tuple[PaginationGroup, ...]
    html_artifacts: Tuple[OutputArtifact, ...] = ()
