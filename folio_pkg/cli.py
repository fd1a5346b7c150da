#!/usr/bin/env python3
"""
Command-line interface for Folio - static blog generator.
"""

import os
import sys
import argparse
from datetime import datetime
from typing import List, Optional

from . import __version__
from .core import Folio, setup_logging
from .errors import ConfigError, FolioError
from .frontmatter import serialize_front_matter, slugify
from .server import serve
from .settings import FolioSettings, SiteConfig
from .watcher import Watcher

STARTER_DIRECTORIES = [
    'content/_posts',
    'content/_drafts',
    '_layouts',
    '_includes',
    'assets/css',
    'assets/images',
]


def scaffold_document(config: SiteConfig, kind: str, title: str, draft: bool = False,
                      now: Optional[datetime] = None) -> str:
    """
    Create a new post or page with default front matter.

    Returns:
        Path of the created file

    Raises:
        FileExistsError: If a document already exists at that path
    """
    now = now or datetime.now()
    slug = slugify(title)

    if kind == 'post':
        metadata = {'title': title, 'layout': 'post'}
        if draft:
            path = os.path.join(config.source, '_drafts', f"{slug}.md")
        else:
            metadata['date'] = now.strftime('%Y-%m-%d %H:%M:%S')
            path = os.path.join(config.source, '_posts', f"{now:%Y-%m-%d}-{slug}.md")
        metadata.update({'categories': [], 'tags': []})
    else:
        metadata = {'title': title, 'layout': 'page'}
        path = os.path.join(config.source, f"{slug}.md")

    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'x', encoding='utf-8') as f:
        f.write(serialize_front_matter(metadata, f"Write your {kind} here.\n"))
    return path


def create_starter_structure(root: str) -> None:
    """Create starter directories and sample content."""
    for directory in STARTER_DIRECTORIES:
        dir_path = os.path.join(root, directory)
        if os.path.exists(dir_path):
            print(f"Directory already exists: {directory}")
        else:
            os.makedirs(dir_path, exist_ok=True)
            print(f"Created directory: {directory}")

    index_path = os.path.join(root, 'content', 'index.md')
    if os.path.exists(index_path):
        print("Home page already exists: content/index.md")
    else:
        with open(index_path, 'w', encoding='utf-8') as f:
            f.write(serialize_front_matter({'title': 'Home'}, "Welcome to my blog.\n"))
        print("Created home page: content/index.md")

    config = SiteConfig.from_settings({'source': 'content'}, root)
    try:
        path = scaffold_document(config, 'post', 'Welcome to Folio')
        print(f"Created sample post: {os.path.relpath(path, root)}")
    except FileExistsError:
        print("Sample post already exists")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='folio', description='Folio - Static Blog Generator')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--config', type=str,
                        help='Configuration file (defaults to _config.yml in the current directory)')
    common.add_argument('--source', type=str,
                        help='Content directory containing markdown files')
    common.add_argument('--destination', type=str,
                        help='Output directory for the generated site')
    common.add_argument('--layouts', type=str,
                        help='Layouts directory')
    common.add_argument('--paginate', type=int,
                        help='Number of posts per listing page')
    common.add_argument('--url', type=str,
                        help='Site URL for feeds, sitemaps and canonical links')
    common.add_argument('--drafts', dest='show_drafts', action='store_true', default=None,
                        help='Include drafts in the build')
    common.add_argument('--verbose', action='store_true',
                        help='Show all progress messages')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('build', parents=[common], help='Build the site once')

    serve_parser = subparsers.add_parser('serve', parents=[common],
                                         help='Build, serve the output and rebuild on change')
    serve_parser.add_argument('--host', type=str, default='127.0.0.1', help='Address to bind')
    serve_parser.add_argument('--port', type=int, default=4000, help='Port to listen on')
    serve_parser.add_argument('--no-watch', dest='watch', action='store_false',
                              help='Serve without rebuilding on change')

    subparsers.add_parser('watch', parents=[common], help='Rebuild the site on change')

    new_parser = subparsers.add_parser('new', parents=[common], help='Create a new post or page')
    new_parser.add_argument('kind', choices=['post', 'page'])
    new_parser.add_argument('title', type=str)
    new_parser.add_argument('--draft', action='store_true', help='Create the post under _drafts')

    subparsers.add_parser('init', help='Create a sample configuration and starter directories')
    return parser


def load_config(args) -> SiteConfig:
    """Merge the configuration file with command-line overrides."""
    config_dir = os.path.dirname(os.path.abspath(args.config)) if args.config else os.getcwd()
    settings_loader = FolioSettings(config_dir=config_dir, config_file=args.config)
    settings_loader.load_settings()

    # Exclude None values so config file settings survive
    args_dict = {k: v for k, v in vars(args).items() if v is not None}
    final_settings = settings_loader.merge_with_args(args_dict)
    return SiteConfig.from_settings(final_settings, config_dir)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(['build'])
    command = args.command

    if command == 'init':
        try:
            config_path = FolioSettings().create_sample_config()
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Created sample configuration file: {config_path}")
        print("\nCreating starter project structure...")
        create_starter_structure(os.getcwd())
        print("\nYour new Folio site is ready! Run 'folio serve' to preview it.")
        return 0

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if command == 'new':
        try:
            path = scaffold_document(config, args.kind, args.title, draft=args.draft)
        except FileExistsError as e:
            print(f"Error: {e.filename} already exists", file=sys.stderr)
            return 1
        except (ValueError, IOError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Created {args.kind}: {os.path.relpath(path)}")
        return 0

    setup_logging(config.log_dir, verbose=args.verbose)
    generator = Folio(config)

    if command == 'build':
        try:
            generator.build()
        except (FolioError, IOError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    try:
        if command == 'serve':
            serve(generator, host=args.host, port=args.port, watch=args.watch)
        else:
            Watcher(generator).run()
    except KeyboardInterrupt:
        return 0
    except (FolioError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
