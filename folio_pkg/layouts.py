import os
import logging
from datetime import datetime

import yaml
from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound

from .errors import LayoutError
from .frontmatter import locate_front_matter, split_front_matter, slugify

PACKAGE_TEMPLATES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


class FrontMatterLoader(FileSystemLoader):
    """FileSystemLoader that hides a template's own front matter from Jinja."""

    def get_source(self, environment, template):
        source, filename, uptodate = super().get_source(environment, template)
        _, body = locate_front_matter(source)
        return body, filename, uptodate

    def get_metadata(self, environment, template):
        source, filename, _ = super().get_source(environment, template)
        try:
            metadata, _ = split_front_matter(source)
        except (ValueError, yaml.YAMLError):
            metadata = None
        return metadata or {}


def template_name(layout):
    return layout if layout.endswith(('.html', '.xml')) else f"{layout}.html"


class LayoutResolver:
    """Resolve layout names to explicit inheritance chains and render through them."""

    def __init__(self, config, theme=None, seo=None):
        self.config = config
        self.logger = logging.getLogger('folio.layouts')
        search_path = [config.layouts, config.includes]
        if theme is not None:
            search_path.extend([theme.layouts_dir, theme.includes_dir])
        search_path.append(PACKAGE_TEMPLATES)
        self.search_path = [p for p in search_path if p and os.path.isdir(p)]

        self.loader = FrontMatterLoader(self.search_path)
        self.env = Environment(loader=self.loader, keep_trailing_newline=True)
        self.env.filters.update({
            'relative_url': config.relative_url,
            'absolute_url': config.absolute_url,
            'date_to_xmlschema': date_to_xmlschema,
            'date_to_string': date_to_string,
            'slugify': slugify,
        })
        self.env.globals.update({
            'site': site_context(config),
            'seo': seo.render if seo is not None else (lambda page=None: ''),
        })
        self._parents = {}

    def exists(self, layout):
        try:
            self.loader.get_source(self.env, template_name(layout))
            return True
        except TemplateNotFound:
            return False

    def parent_of(self, layout):
        if layout not in self._parents:
            metadata = self.loader.get_metadata(self.env, template_name(layout))
            parent = metadata.get('layout')
            self._parents[layout] = str(parent).strip() if parent else None
        return self._parents[layout]

    def chain(self, layout, document):
        """
        Return the resolution list ``[layout, parent, grandparent, ...]``.

        Raises:
            LayoutError: When a layout in the chain is missing or the chain loops
        """
        chain = []
        current = layout
        while current:
            if current in chain:
                raise LayoutError(document, current, chain=chain)
            if not self.exists(current):
                raise LayoutError(document, current)
            chain.append(current)
            current = self.parent_of(current)
        return chain

    def render(self, chain, content, context, document):
        """Apply each layout of the chain in turn, innermost first."""
        for layout in chain:
            try:
                template = self.env.get_template(template_name(layout))
                layout_meta = self.loader.get_metadata(self.env, template_name(layout))
                content = template.render(context, content=content, layout=layout_meta)
            except TemplateNotFound as e:
                raise LayoutError(document, layout, reason=f"missing template {e.name}")
            except TemplateError as e:
                raise LayoutError(document, layout, reason=str(e))
        return content


def site_context(config):
    return {
        'title': config.title,
        'description': config.description,
        'author': config.author,
        'url': config.url,
        'baseurl': config.baseurl,
        'lang': config.lang,
        'highlighter': config.highlighter,
        'plugins': sorted(config.plugins),
        'feed_path': config.relative_url('/feed.xml') if config.plugin_enabled('feed') else None,
    }


def date_to_xmlschema(value):
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%dT%H:%M:%S+00:00')
    return ''


def date_to_string(value, fmt='%d %b %Y'):
    if isinstance(value, datetime):
        return value.strftime(fmt)
    return ''
