import logging
from collections import OrderedDict
from dataclasses import replace

from .errors import ArtifactCollisionError
from .frontmatter import slugify
from .models import HTML_CONTENT_TYPE, OutputArtifact, PaginationGroup, SiteIndex


def sort_posts(posts):
    """
    Newest first.

    Posts sharing a date come out in reverse source-path order: the list is
    sorted ascending by (date, path) and then reversed as a whole.
    """
    ordered = sorted(posts, key=lambda p: (p.date, p.source_path))
    ordered.reverse()
    return ordered


def paginate(posts, per_page):
    """Split posts into consecutive groups of per_page; the last may be short."""
    posts = list(posts)
    if not per_page:
        return [posts]
    return [posts[i:i + per_page] for i in range(0, len(posts), per_page)] or [[]]


def pagination_path(config, number):
    if number == 1:
        return 'index.html'
    path = config.paginate_path.replace(':num', str(number)).strip('/')
    return f"{path}/index.html"


def nav_order(value):
    """Numeric menu position from 'order' front matter; 1000 when absent or not a number."""
    if isinstance(value, bool):
        return 1000
    try:
        return float(value)
    except (TypeError, ValueError):
        return 1000


def url_for(path):
    if path == 'index.html':
        return '/'
    if path.endswith('/index.html'):
        return '/' + path[:-len('index.html')]
    return '/' + path


def get_pagination_links(current_page, total_pages):
    """
    Page numbers (or ellipses) to show around the current page.
    Always shows page 1 and total_pages, and two pages on each side of current.
    """
    delta = 2
    links = [1]
    start = max(current_page - delta, 2)
    end = min(current_page + delta, total_pages - 1)
    if start > 2:
        links.append('...')
    links.extend(range(start, end + 1))
    if end < total_pages - 1:
        links.append('...')
    if total_pages > 1:
        links.append(total_pages)
    return links


class SiteAssembler:
    """Turn the full set of rendered documents into the output artifact set."""

    def __init__(self, config, layouts, generators=()):
        self.config = config
        self.layouts = layouts
        self.generators = list(generators)
        self.logger = logging.getLogger('folio.assembler')

    def visible(self, rendered):
        return [r for r in rendered if self.config.show_drafts or not r.document.draft]

    def build_index(self, rendered):
        """Compute the SiteIndex from scratch for the given documents."""
        visible = self.visible(rendered)
        posts = sort_posts(r for r in visible if r.document.is_post)
        pages = sorted((r for r in visible if not r.document.is_post), key=lambda r: r.source_path)

        categories = {}
        tags = {}
        for post in posts:
            for label in post.document.categories:
                categories.setdefault(label, []).append(post)
            for label in post.document.tags:
                tags.setdefault(label, []).append(post)

        groups = paginate(posts, self.config.paginate)
        total = len(groups)
        pagination = []
        for number, group in enumerate(groups, start=1):
            pagination.append(PaginationGroup(
                number=number,
                total_pages=total,
                posts=tuple(group),
                path=pagination_path(self.config, number),
                previous_path=pagination_path(self.config, number - 1) if number > 1 else None,
                next_path=pagination_path(self.config, number + 1) if number < total else None,
            ))

        return SiteIndex(
            posts=tuple(posts),
            pages=tuple(pages),
            categories=OrderedDict((k, tuple(categories[k])) for k in sorted(categories)),
            tags=OrderedDict((k, tuple(tags[k])) for k in sorted(tags)),
            pagination=tuple(pagination),
        )

    def resolve_chains(self, documents):
        """Resolve every layout chain up front; any LayoutError aborts assembly."""
        chains = {}
        for rendered in documents:
            layout = rendered.document.layout
            chains[rendered.source_path] = self.layouts.chain(layout, rendered.source_path) if layout else []
        return chains

    def assemble(self, rendered, static_artifacts=()):
        """
        Produce every output artifact, sorted by path.

        Raises:
            LayoutError: If a document's layout chain cannot be resolved
            ArtifactCollisionError: If two outputs share a destination, or one
                needs another's file path as a directory
        """
        index = self.build_index(rendered)
        documents = list(index.posts) + list(index.pages)
        chains = self.resolve_chains(documents)

        artifacts = OrderedDict()
        for artifact in static_artifacts:
            self.add(artifacts, artifact)

        post_views = [p.as_page() for p in index.posts]
        view_of = {p.source_path: view for p, view in zip(index.posts, post_views)}
        shared = {
            'posts': post_views,
            'pages': self.navigation(index.pages),
            'categories': OrderedDict((k, [view_of[p.source_path] for p in v]) for k, v in index.categories.items()),
            'tags': OrderedDict((k, [view_of[p.source_path] for p in v]) for k, v in index.tags.items()),
        }

        host = None
        if index.posts:
            host = next((p for p in index.pages if p.document.output_path == 'index.html'), None)

        for position, rendered_doc in enumerate(documents):
            if rendered_doc is host:
                continue
            page = rendered_doc.as_page()
            if rendered_doc.document.is_post:
                page['previous'] = post_views[position + 1] if position + 1 < len(index.posts) else None
                page['next'] = post_views[position - 1] if position > 0 else None
            context = dict(shared, page=page, paginator=None)
            html = self.layouts.render(chains[rendered_doc.source_path], rendered_doc.html,
                                       context, rendered_doc.source_path)
            self.add(artifacts, OutputArtifact(rendered_doc.document.output_path, html.encode('utf-8'),
                                               HTML_CONTENT_TYPE, rendered_doc))

        if index.posts:
            self.emit_listings(artifacts, index, host, chains, view_of, shared)
            self.emit_label_pages(artifacts, index.categories, 'categories', 'category', view_of, shared)
            self.emit_label_pages(artifacts, index.tags, 'tags', 'tag', view_of, shared)

        html_artifacts = tuple(a for a in artifacts.values() if a.content_type == HTML_CONTENT_TYPE)
        full_index = replace(index, html_artifacts=html_artifacts)
        for generator in self.generators:
            self.add(artifacts, generator.produce(full_index))

        self.check_file_directory_clashes(artifacts)
        self.logger.info(f"Assembled {len(artifacts)} output artifacts")
        return [artifacts[path] for path in sorted(artifacts)], full_index

    def add(self, artifacts, artifact):
        existing = artifacts.get(artifact.path)
        if existing is not None:
            raise ArtifactCollisionError(artifact.path, existing.origin, artifact.origin)
        artifacts[artifact.path] = artifact

    def check_file_directory_clashes(self, artifacts):
        """Reject a file whose path is also needed as a directory by another artifact."""
        for path, artifact in artifacts.items():
            parts = path.split('/')
            for depth in range(1, len(parts)):
                parent = artifacts.get('/'.join(parts[:depth]))
                if parent is not None:
                    raise ArtifactCollisionError(parent.path, parent.origin, artifact.origin)

    def navigation(self, pages):
        """Titled pages for menus, by their 'order' front matter then path."""
        titled = [p for p in pages if p.document.front_matter.get('title') and p.document.output_path != '404.html']
        titled.sort(key=lambda p: (nav_order(p.document.front_matter.get('order')), p.source_path))
        return [{'title': p.title, 'url': p.url, 'order': p.document.front_matter.get('order')} for p in titled]

    def emit_listings(self, artifacts, index, host, chains, view_of, shared):
        if host is not None and 'layout' in host.document.front_matter:
            chain = chains[host.source_path]
        else:
            chain = self.layouts.chain('index', host.source_path if host else 'index.html')
        base_page = host.as_page() if host is not None else {'title': self.config.title or 'Home'}
        content = host.html if host is not None else ''

        for group in index.pagination:
            page = dict(base_page, url=url_for(group.path))
            if group.number > 1:
                page['title'] = f"{base_page.get('title') or 'Home'} - Page {group.number}"
            paginator = {
                'page': group.number,
                'per_page': self.config.paginate or len(index.posts),
                'posts': [view_of[p.source_path] for p in group.posts],
                'total_posts': len(index.posts),
                'total_pages': group.total_pages,
                'previous_page': group.number - 1 if group.previous_path else None,
                'previous_page_path': url_for(group.previous_path) if group.previous_path else None,
                'next_page': group.number + 1 if group.next_path else None,
                'next_page_path': url_for(group.next_path) if group.next_path else None,
                'page_numbers': get_pagination_links(group.number, group.total_pages),
                'page_paths': {n: url_for(pagination_path(self.config, n))
                               for n in range(1, group.total_pages + 1)},
            }
            context = dict(shared, page=page, paginator=paginator)
            html = self.layouts.render(chain, content, context, host.source_path if host else group.path)
            self.add(artifacts, OutputArtifact(group.path, html.encode('utf-8'), HTML_CONTENT_TYPE, host))

    def emit_label_pages(self, artifacts, labels, directory, layout, view_of, shared):
        if not labels:
            return
        chain = self.layouts.chain(layout, f"{directory}/")
        for label, posts in labels.items():
            path = f"{directory}/{slugify(label)}/index.html"
            page = {'title': label, 'url': url_for(path), 'kind': layout, 'label': label}
            context = dict(shared, page=page, paginator=None,
                           label_posts=[view_of[p.source_path] for p in posts])
            html = self.layouts.render(chain, '', context, path)
            self.add(artifacts, OutputArtifact(path, html.encode('utf-8'), HTML_CONTENT_TYPE))
