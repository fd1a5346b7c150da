import os
import logging
import mimetypes

import csscompressor
import rjsmin

from .models import OutputArtifact

logger = logging.getLogger('folio.assets')


def content_type_for(path):
    content_type, _ = mimetypes.guess_type(path)
    return content_type or 'application/octet-stream'


def minify(path, content):
    """Minify CSS and JS sources; everything else is returned unchanged."""
    if path.endswith(('.min.css', '.min.js')):
        return content
    try:
        if path.endswith('.css'):
            return csscompressor.compress(content.decode('utf-8')).encode('utf-8')
        if path.endswith('.js'):
            return rjsmin.jsmin(content.decode('utf-8')).encode('utf-8')
    except UnicodeDecodeError as e:
        logger.warning(f"Not minifying {path}: {e}")
    return content


def _read(path):
    try:
        with open(path, 'rb') as f:
            return f.read()
    except (IOError, OSError, PermissionError) as e:
        logger.error(f"Failed to read asset {path}: {e}")
        return None


def _walk_assets(directory, prefix):
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
        for filename in sorted(filenames):
            if filename.startswith('.'):
                continue
            path = os.path.join(dirpath, filename)
            relative = os.path.relpath(path, directory).replace(os.sep, '/')
            yield path, f"{prefix}/{relative}" if prefix else relative


def collect_static_artifacts(config, scanner, theme=None):
    """
    Gather files copied verbatim into the output.

    Theme assets come first and are overridden by the site's own assets
    directory. Static files living in the content tree are returned
    separately so a clash with an asset surfaces as a collision.
    """
    assets = {}
    sources = []
    if theme is not None and os.path.isdir(theme.assets_dir):
        sources.append(theme.assets_dir)
    if config.assets and os.path.isdir(config.assets):
        sources.append(config.assets)

    for directory in sources:
        for path, relative in _walk_assets(directory, 'assets'):
            assets[relative] = path

    artifacts = []
    for relative in sorted(assets):
        content = _read(assets[relative])
        if content is None:
            continue
        if config.minify:
            content = minify(relative, content)
        artifacts.append(OutputArtifact(relative, content, content_type_for(relative)))

    for path, relative in scanner.static_files():
        content = _read(path)
        if content is None:
            continue
        if config.minify:
            content = minify(relative, content)
        artifacts.append(OutputArtifact(relative, content, content_type_for(relative)))

    if assets:
        logger.info(f"Collected {len(assets)} asset files")
    return artifacts
