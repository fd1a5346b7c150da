"""
Front matter parsing.

A document optionally starts with a YAML block delimited by ``---`` lines.
``parse_document`` turns a scanned SourceFile into an immutable Document,
applying the metadata policy for posts and pages.
"""

import os
import re
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple

import yaml

from .errors import MetadataError
from .models import POST, Document, SourceFile
from .scanner import HTML_EXTENSIONS

logger = logging.getLogger('folio.frontmatter')

DELIMITER = '---'
FILENAME_DATE_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})-(.+)$')
HEADING_RE = re.compile(r'^#\s+(.+?)\s*#*\s*$')
DATE_FORMATS = [
    '%Y-%m-%d',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M:%S %z',
    '%Y-%m-%d %H:%M',
    '%b %d, %Y',
    '%B %d, %Y',
]
NO_LAYOUT = ('none', 'null', 'false')


def locate_front_matter(text: str) -> Tuple[Optional[str], str]:
    """Return the raw metadata block (None when absent) and the body."""
    text = text.lstrip('\ufeff')
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip() != DELIMITER:
        return None, text
    for index in range(1, len(lines)):
        if lines[index].rstrip() in (DELIMITER, '...'):
            return ''.join(lines[1:index]), ''.join(lines[index + 1:])
    return None, text


def split_front_matter(text: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """
    Separate the metadata block from the body.

    Returns:
        ``(mapping, body)``; mapping is None when the text has no block.

    Raises:
        yaml.YAMLError: If the block is present but is not valid YAML
        ValueError: If the block does not hold a mapping
    """
    block, body = locate_front_matter(text)
    if block is None:
        return None, body

    metadata = yaml.safe_load(block) if block.strip() else {}
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ValueError("front matter must be a mapping")
    return {str(k): v for k, v in metadata.items()}, body


def parse(text: str) -> Dict[str, Any]:
    """Return only the metadata mapping of a document (empty when absent)."""
    metadata, _ = split_front_matter(text)
    return metadata or {}


def serialize_front_matter(metadata: Dict[str, Any], body: str = '') -> str:
    dumped = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True,
                            default_flow_style=False) if metadata else ''
    return f"{DELIMITER}\n{dumped}{DELIMITER}\n{body}"


def slugify(text: str) -> str:
    text = str(text).lower()
    text = re.sub(r"[^\w]+", "-", text, flags=re.UNICODE)
    text = text.strip("-_").replace("_", "-")
    return text or "untitled"


def parse_date(value, document: str) -> datetime:
    """
    Coerce a front matter date into a naive datetime.

    Aware values are converted to UTC first.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        parsed = None
        candidate = value.strip()
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(candidate, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            try:
                parsed = datetime.fromisoformat(candidate)
            except ValueError:
                raise MetadataError(document, f"malformed date {value!r}")
    else:
        raise MetadataError(document, f"malformed date {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_labels(*values) -> FrozenSet[str]:
    """
    Collapse category/tag values into a set of labels.

    Lists are taken item by item; strings are split on commas when they
    contain one, otherwise on whitespace.
    """
    labels = set()
    for value in values:
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            items = value
        elif isinstance(value, str):
            items = value.split(',') if ',' in value else value.split()
        else:
            items = [value]
        for item in items:
            if item is None:
                continue
            label = str(item).strip()
            if label:
                labels.add(label)
    return frozenset(labels)


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y', 'on')
    return bool(value)


def _title_from_body(body: str) -> Optional[str]:
    for line in body.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = HEADING_RE.match(stripped)
        return match.group(1) if match else None
    return None


def _title_from_filename(stem: str) -> str:
    return stem.replace('-', ' ').replace('_', ' ').strip().title() or 'Untitled'


def _apply_defaults(config, kind: str, relative_path: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
    merged = {}
    for scope_kind, scope_path, values in config.defaults:
        if scope_kind is not None and scope_kind != kind:
            continue
        if scope_path and not (relative_path == scope_path or relative_path.startswith(scope_path + '/')):
            continue
        merged.update(values)
    merged.update(metadata)
    return merged


def _resolve_layout(metadata: Dict[str, Any], kind: str) -> Optional[str]:
    if 'layout' in metadata:
        layout = metadata['layout']
        if layout is None or layout is False or str(layout).strip().lower() in NO_LAYOUT:
            return None
        return str(layout).strip()
    return kind


def _build_url(config, kind, relative_path, metadata, slug, published, categories) -> str:
    permalink = metadata.get('permalink')
    if permalink:
        url = str(permalink)
        return url if url.startswith('/') else '/' + url

    if kind == POST:
        pattern = config.permalink
        replacements = {
            ':year': f"{published.year:04d}",
            ':month': f"{published.month:02d}",
            ':day': f"{published.day:02d}",
            ':title': slug,
            ':slug': slug,
            ':categories': '/'.join(slugify(c) for c in sorted(categories)),
        }
        # longest tokens first
        for token in sorted(replacements, key=len, reverse=True):
            pattern = pattern.replace(token, replacements[token])
        url = re.sub(r'/{2,}', '/', pattern)
        return url if url.startswith('/') else '/' + url

    stem, ext = os.path.splitext(relative_path)
    if os.path.basename(stem) == 'index':
        directory = os.path.dirname(stem)
        return f"/{directory}/" if directory else '/'
    if stem == '404':
        return '/404.html'
    return f"/{stem}/"


def parse_document(source: SourceFile, config) -> Document:
    """
    Build a Document from a scanned file.

    Raises:
        MetadataError: For a post without front matter or date, or any
            document with a malformed date
    """
    name = source.relative_path
    try:
        text = source.raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise MetadataError(name, f"not valid UTF-8 ({e})")

    try:
        metadata, body = split_front_matter(text)
    except (yaml.YAMLError, ValueError) as e:
        if source.kind == POST:
            raise MetadataError(name, f"invalid front matter: {e}")
        logger.warning(f"{name}: invalid front matter, using defaults ({e})")
        metadata, body = None, locate_front_matter(text)[1]

    if metadata is None and source.kind == POST:
        raise MetadataError(name, "posts require front matter")
    metadata = _apply_defaults(config, source.kind, name, metadata or {})

    stem = os.path.splitext(os.path.basename(name))[0]
    filename_match = FILENAME_DATE_RE.match(stem)
    base_slug = filename_match.group(4) if filename_match else stem

    draft = source.draft or _truthy(metadata.get('draft')) or metadata.get('published') is False

    published = None
    if metadata.get('date') is not None:
        published = parse_date(metadata['date'], name)
    elif filename_match:
        published = parse_date('-'.join(filename_match.group(1, 2, 3)), name)
    elif source.kind == POST:
        if not draft:
            raise MetadataError(name, "posts require a date")
        published = datetime.fromtimestamp(source.mtime).replace(microsecond=0)

    title = metadata.get('title')
    if title is None or str(title).strip() == '':
        title = _title_from_body(body) or _title_from_filename(base_slug)
    title = str(title)

    slug = slugify(metadata.get('slug') or base_slug)
    categories = normalize_labels(metadata.get('categories'), metadata.get('category'))
    tags = normalize_labels(metadata.get('tags'), metadata.get('tag'))
    ext = os.path.splitext(name)[1].lower()

    return Document(
        source_path=name,
        front_matter=metadata,
        body=body,
        kind=source.kind,
        date=published,
        categories=categories,
        tags=tags,
        layout=_resolve_layout(metadata, source.kind),
        draft=draft,
        title=title,
        slug=slug,
        url=_build_url(config, source.kind, name, metadata, slug, published, categories),
        markup='html' if ext in HTML_EXTENSIONS else 'markdown',
    )
