#!/usr/bin/env python3
"""
Settings loader for the Folio site generator.
Supports configuration from _config.yml, _config.yaml or _config.json files.

The loader produces a plain dictionary of merged settings; ``SiteConfig``
freezes that dictionary into the object handed to every build stage.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger('folio.settings')

# Jekyll plugin names accepted as aliases for the built-in generators
PLUGIN_ALIASES = {
    'jekyll-feed': 'feed',
    'jekyll-sitemap': 'sitemap',
    'jekyll-seo-tag': 'seo',
    'jekyll-paginate': 'paginate',
    'jekyll-remote-theme': 'remote-theme',
    'jemoji': 'emoji',
}
KNOWN_PLUGINS = frozenset({'feed', 'sitemap', 'seo', 'paginate', 'remote-theme', 'emoji'})


class FolioSettings:
    """Load and manage Folio configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'title': None,
        'description': None,
        'author': None,
        'url': None,
        'baseurl': '',
        'lang': 'en',
        'source': 'content',
        'destination': '_site',
        'layouts': '_layouts',
        'includes': '_includes',
        'assets': 'assets',
        'paginate': None,
        'paginate_path': '/page:num/',
        'permalink': '/:year/:month/:day/:title/',
        'plugins': [],
        'theme': None,
        'remote_theme': None,
        'exclude': [],
        'keep_files': ['.git', '.nojekyll', 'CNAME'],
        'show_drafts': False,
        'excerpt_separator': '\n\n',
        'excerpt_words': 30,
        'feed_limit': 10,
        'highlighter': None,
        'sanitize': True,
        'minify': False,
        'robots': 'public',
        'defaults': [],
        'twitter': None,
        'log_dir': None,
        'watch_interval': 0.5,
        'debounce': 0.2,
        'workers': None,
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['_config.yml', '_config.yaml', '_config.json']

    def __init__(self, config_dir: str = None, config_file: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
            config_file: Explicit config file path, bypassing the lookup.
        """
        self.config_dir = config_dir or os.getcwd()
        self.explicit_file = config_file
        self.settings = self.DEFAULT_SETTINGS.copy()
        self.config_file_path = None

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from the configuration file if it exists.

        Returns:
            Dictionary of configuration settings

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        config_file = self.explicit_file or self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            loaded_settings = self._load_config_file(config_file)
            if not isinstance(loaded_settings, dict):
                raise ConfigError(f"Configuration file {config_file} must contain a mapping")
            self.settings.update(loaded_settings)
            logger.info(f"Loaded configuration from: {os.path.relpath(config_file)}")

        return self.settings.copy()

    def _find_config_file(self) -> Optional[str]:
        """Return the first configuration file present in config_dir."""
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    return yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    return json.load(f) or {}
                else:
                    raise ConfigError(f"Unsupported config file format: {file_ext}")
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {config_path}")
        except PermissionError:
            raise ConfigError(f"Permission denied reading configuration file: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file {config_path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in configuration file {config_path}: {e}")
        except (IOError, OSError) as e:
            raise ConfigError(f"Error reading configuration file {config_path}: {e}")

    def create_sample_config(self) -> str:
        """
        Write a commented sample _config.yml into config_dir.

        Returns:
            Path to the created file
        """
        config_path = os.path.join(self.config_dir, '_config.yml')
        if os.path.exists(config_path):
            raise ConfigError(f"Configuration file already exists: {config_path}")

        sample = (
            "# Folio configuration\n\n"
            "# Site information\n"
            "title: My Blog\n"
            "description: Notes, projects and the occasional essay\n"
            "author: Your Name\n"
            "url: https://example.com\n"
            "baseurl: ''\n\n"
            "# Build settings\n"
            "source: content\n"
            "destination: _site\n"
            "layouts: _layouts\n"
            "includes: _includes\n"
            "assets: assets\n"
            "permalink: /:year/:month/:day/:title/\n\n"
            "# Listings\n"
            "paginate: 5\n"
            "paginate_path: /page:num/\n\n"
            "# Derived artifacts and content plugins\n"
            "plugins:\n"
            "  - feed\n"
            "  - sitemap\n"
            "  - seo\n"
            "  - emoji\n\n"
            "# Theme (local directory) or remote_theme: owner/repo@ref\n"
            "# theme: themes/minimal\n\n"
            "robots: public  # public or private\n"
            "minify: false\n"
        )
        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                f.write(sample)
        except (IOError, OSError) as e:
            raise ConfigError(f"Error writing configuration file {config_path}: {e}")
        return config_path

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments

        Returns:
            Merged configuration dictionary
        """
        merged = self.settings.copy()
        for key, value in args_dict.items():
            if value is None or key not in self.DEFAULT_SETTINGS:
                continue
            if key == 'plugins' and isinstance(value, str):
                merged[key] = [plugin.strip() for plugin in value.split(',')]
            else:
                merged[key] = value
        return merged


def normalize_plugins(plugins) -> FrozenSet[str]:
    """Map configured plugin names onto the built-in generator names."""
    if plugins is None:
        return frozenset()
    if isinstance(plugins, str):
        plugins = [plugins]
    enabled = set()
    for name in plugins:
        name = PLUGIN_ALIASES.get(str(name).strip(), str(name).strip())
        if name in KNOWN_PLUGINS:
            enabled.add(name)
        else:
            logger.warning(f"Ignoring unknown plugin: {name}")
    return frozenset(enabled)


def _as_list(value, key):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ConfigError(f"'{key}' must be a list")


def _as_positive_int(value, key, allow_none=False):
    if value is None or value == '':
        if allow_none:
            return None
        raise ConfigError(f"'{key}' is required")
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    if number < 1:
        if allow_none:
            return None
        raise ConfigError(f"'{key}' must be at least 1")
    return number


def _parse_defaults(entries):
    """
    Parse Jekyll-style front matter defaults.

    Each entry is ``{'scope': {'path': ..., 'type': 'posts'|'pages'}, 'values': {...}}``.
    Returns a tuple of ``(type_or_None, path_prefix, values)`` triples.
    """
    parsed = []
    for entry in _as_list(entries, 'defaults'):
        if not isinstance(entry, dict) or not isinstance(entry.get('values'), dict):
            raise ConfigError("Each 'defaults' entry needs a 'values' mapping")
        scope = entry.get('scope') or {}
        kind = scope.get('type')
        if kind in ('posts', 'post'):
            kind = 'post'
        elif kind in ('pages', 'page'):
            kind = 'page'
        elif kind is not None:
            raise ConfigError(f"Unsupported defaults scope type: {kind}")
        parsed.append((kind, str(scope.get('path') or '').strip('/'), dict(entry['values'])))
    return tuple(parsed)


@dataclass(frozen=True)
class SiteConfig:
    """Immutable per-build configuration passed explicitly to each stage."""

    root: str
    source: str
    destination: str
    layouts: str
    includes: str
    assets: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    url: str = ''
    baseurl: str = ''
    lang: str = 'en'
    paginate: Optional[int] = None
    paginate_path: str = '/page:num/'
    permalink: str = '/:year/:month/:day/:title/'
    plugins: FrozenSet[str] = frozenset()
    theme: Optional[str] = None
    remote_theme: Optional[str] = None
    exclude: Tuple[str, ...] = ()
    keep_files: Tuple[str, ...] = ()
    show_drafts: bool = False
    excerpt_separator: str = '\n\n'
    excerpt_words: int = 30
    feed_limit: int = 10
    highlighter: Optional[str] = None
    sanitize: bool = True
    minify: bool = False
    robots: Optional[str] = 'public'
    defaults: Tuple[Tuple[Optional[str], str, Dict[str, Any]], ...] = ()
    twitter: Optional[str] = None
    log_dir: Optional[str] = None
    watch_interval: float = 0.5
    debounce: float = 0.2
    workers: Optional[int] = None
    cache_dir: str = field(default='')

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], root: str = None) -> 'SiteConfig':
        """Validate a merged settings dictionary and freeze it."""
        root = os.path.abspath(root or os.getcwd())
        merged = dict(FolioSettings.DEFAULT_SETTINGS)
        merged.update(settings or {})

        def resolve(path):
            if path is None:
                return None
            path = os.path.expanduser(str(path))
            return os.path.normpath(os.path.join(root, path))

        highlighter = merged.get('highlighter')
        if highlighter in (None, False, 'none', ''):
            highlighter = None
        elif highlighter != 'pygments':
            raise ConfigError(f"Unsupported highlighter: {highlighter}")

        robots = merged.get('robots')
        if robots in (None, False, 'none', ''):
            robots = None
        elif robots not in ('public', 'private'):
            raise ConfigError(f"'robots' must be 'public' or 'private', got {robots!r}")

        paginate_path = str(merged.get('paginate_path') or '/page:num/')
        if ':num' not in paginate_path:
            raise ConfigError("'paginate_path' must contain ':num'")

        workers = merged.get('workers')
        if workers is not None:
            workers = _as_positive_int(workers, 'workers')

        source = resolve(merged.get('source') or '.')
        destination = resolve(merged.get('destination') or '_site')
        if os.path.commonpath([source, destination]) == destination:
            raise ConfigError("Destination directory must not contain the source directory")

        return cls(
            root=root,
            source=source,
            destination=destination,
            layouts=resolve(merged.get('layouts') or '_layouts'),
            includes=resolve(merged.get('includes') or '_includes'),
            assets=resolve(merged.get('assets')),
            title=merged.get('title'),
            description=merged.get('description'),
            author=merged.get('author'),
            url=str(merged.get('url') or '').rstrip('/'),
            baseurl=str(merged.get('baseurl') or '').rstrip('/'),
            lang=str(merged.get('lang') or 'en'),
            paginate=_as_positive_int(merged.get('paginate'), 'paginate', allow_none=True),
            paginate_path=paginate_path,
            permalink=str(merged.get('permalink') or '/:year/:month/:day/:title/'),
            plugins=normalize_plugins(merged.get('plugins')),
            theme=resolve(merged.get('theme')),
            remote_theme=merged.get('remote_theme') or None,
            exclude=tuple(str(p) for p in _as_list(merged.get('exclude'), 'exclude')),
            keep_files=tuple(str(p) for p in _as_list(merged.get('keep_files'), 'keep_files')),
            show_drafts=bool(merged.get('show_drafts')),
            excerpt_separator=str(merged.get('excerpt_separator') or '\n\n'),
            excerpt_words=_as_positive_int(merged.get('excerpt_words'), 'excerpt_words'),
            feed_limit=_as_positive_int(merged.get('feed_limit'), 'feed_limit'),
            highlighter=highlighter,
            sanitize=bool(merged.get('sanitize')),
            minify=bool(merged.get('minify')),
            robots=robots,
            defaults=_parse_defaults(merged.get('defaults')),
            twitter=merged.get('twitter'),
            log_dir=resolve(merged.get('log_dir')),
            watch_interval=float(merged.get('watch_interval') or 0.5),
            debounce=float(merged.get('debounce') or 0.2),
            workers=workers,
            cache_dir=os.path.join(root, '.folio-cache'),
        )

    def plugin_enabled(self, name: str) -> bool:
        return name in self.plugins

    def absolute_url(self, path: str) -> str:
        """Join a site-relative path onto url and baseurl."""
        return f"{self.url}{self.relative_url(path)}"

    def relative_url(self, path: str) -> str:
        if not path.startswith('/'):
            path = '/' + path
        return f"{self.baseurl}{path}"
