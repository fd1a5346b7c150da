import os
import json
import logging
from datetime import datetime
from xml.sax.saxutils import quoteattr, escape

from PIL import Image, UnidentifiedImageError

DESCRIPTION_LIMIT = 200


class SeoTags:
    """Build the <head> metadata block for a page: title, canonical link, Open Graph, Twitter, JSON-LD."""

    def __init__(self, config):
        self.config = config
        self.logger = logging.getLogger('folio.seo')
        self._image_sizes = {}

    def image_size(self, path):
        """Pixel size of a local image, or None when it cannot be read."""
        if path in self._image_sizes:
            return self._image_sizes[path]
        size = None
        candidates = [os.path.join(self.config.source, path.lstrip('/'))]
        if self.config.assets:
            candidates.append(os.path.join(os.path.dirname(self.config.assets), path.lstrip('/')))
        for candidate in candidates:
            if not os.path.isfile(candidate):
                continue
            try:
                with Image.open(candidate) as img:
                    size = img.size
                break
            except (UnidentifiedImageError, OSError) as e:
                self.logger.debug(f"Cannot read image size of {candidate}: {e}")
        self._image_sizes[path] = size
        return size

    def _image(self, page):
        image = page.get('image')
        if isinstance(image, dict):
            image = image.get('path')
        if not image:
            return None, None
        image = str(image)
        if image.startswith(('http://', 'https://')):
            return image, None
        return self.config.absolute_url(image), self.image_size(image)

    def _description(self, page):
        text = page.get('description') or page.get('excerpt') or self.config.description or ''
        text = ' '.join(str(text).split())
        if len(text) > DESCRIPTION_LIMIT:
            text = text[:DESCRIPTION_LIMIT - 3].rstrip() + '...'
        return text

    def render(self, page):
        if not self.config.plugin_enabled('seo'):
            return ''
        page = page or {}
        site_title = self.config.title or ''
        page_title = page.get('title') or ''
        if page_title and site_title and page_title != site_title:
            full_title = f"{page_title} | {site_title}"
        else:
            full_title = page_title or site_title
        description = self._description(page)
        url = self.config.absolute_url(page.get('url') or '/')
        is_post = page.get('kind') == 'post'
        image_url, image_size = self._image(page)

        tags = [f"<title>{escape(full_title)}</title>"]
        meta = [
            ('name', 'generator', 'Folio'),
            ('property', 'og:title', page_title or site_title),
            ('property', 'og:locale', self.config.lang.replace('-', '_')),
        ]
        if description:
            meta.append(('name', 'description', description))
            meta.append(('property', 'og:description', description))
        meta.append(('property', 'og:url', url))
        if site_title:
            meta.append(('property', 'og:site_name', site_title))
        meta.append(('property', 'og:type', 'article' if is_post else 'website'))

        published = page.get('date')
        if is_post and isinstance(published, datetime):
            meta.append(('property', 'article:published_time', published.strftime('%Y-%m-%dT%H:%M:%S+00:00')))
        if image_url:
            meta.append(('property', 'og:image', image_url))
            if image_size:
                meta.append(('property', 'og:image:width', str(image_size[0])))
                meta.append(('property', 'og:image:height', str(image_size[1])))
        meta.append(('name', 'twitter:card', 'summary_large_image' if image_url else 'summary'))
        meta.append(('property', 'twitter:title', page_title or site_title))
        if self.config.twitter:
            meta.append(('name', 'twitter:site', '@' + str(self.config.twitter).lstrip('@')))

        tags.extend(f"<meta {attr}={quoteattr(key)} content={quoteattr(value)} />" for attr, key, value in meta)
        tags.append(f"<link rel=\"canonical\" href={quoteattr(url)} />")

        structured = {
            '@context': 'https://schema.org',
            '@type': 'BlogPosting' if is_post else 'WebPage',
            'headline': page_title or site_title,
            'url': url,
        }
        if description:
            structured['description'] = description
        if is_post and isinstance(published, datetime):
            structured['datePublished'] = published.strftime('%Y-%m-%dT%H:%M:%S+00:00')
        author = page.get('author') or self.config.author
        if author:
            structured['author'] = {'@type': 'Person', 'name': str(author)}
        if image_url:
            structured['image'] = image_url
        payload = json.dumps(structured, sort_keys=True, ensure_ascii=False).replace('</', '<\\/')
        tags.append(f'<script type="application/ld+json">{payload}</script>')
        return '\n'.join(tags) + '\n'
