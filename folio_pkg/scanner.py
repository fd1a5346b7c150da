import os
import fnmatch
import logging

from .errors import ScanError
from .models import POST, PAGE, SourceFile
from .publisher import lock_path

MARKDOWN_EXTENSIONS = ('.md', '.markdown', '.mkd', '.mkdn')
HTML_EXTENSIONS = ('.html', '.htm')
POST_DIRS = ('_posts', 'posts')
DRAFT_DIRS = ('_drafts',)
FRONT_MATTER_PREFIXES = (b'---\n', b'---\r\n', b'\xef\xbb\xbf---')


class SourceScanner:
    """Walk the content tree and yield candidate documents."""

    def __init__(self, config):
        self.config = config
        self.root = config.source
        self.logger = logging.getLogger('folio.scanner')
        self.problems = []

    def check_root(self):
        if not os.path.isdir(self.root):
            raise ScanError(self.root, "content directory does not exist")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise ScanError(self.root, "content directory is not readable")

    def scan(self):
        """
        Lazily yield a SourceFile per content document.

        Each call starts a fresh walk. Unreadable files are logged, recorded
        in ``problems`` and skipped.
        """
        self.check_root()
        self.problems = []
        for path, relative_path in self._walk():
            if not self._is_content_file(path):
                continue
            try:
                with open(path, 'rb') as f:
                    raw = f.read()
                mtime = os.path.getmtime(path)
            except (IOError, OSError, PermissionError) as e:
                problem = ScanError(relative_path, f"unreadable: {e}")
                self.logger.warning(f"Skipping {problem}")
                self.problems.append(problem)
                continue
            kind, draft = self._classify(relative_path)
            yield SourceFile(path=path, relative_path=relative_path, raw=raw,
                             kind=kind, draft=draft, mtime=mtime)

    def static_files(self):
        """Yield (absolute, relative) paths of files copied verbatim."""
        self.check_root()
        for path, relative_path in self._walk():
            if not self._is_content_file(path):
                yield path, relative_path

    def _walk(self):
        reserved = {os.path.abspath(p) for p in (self.config.destination, self.config.assets,
                                                 self.config.layouts, self.config.includes,
                                                 self.config.cache_dir) if p}
        reserved_files = {lock_path(self.config.destination)}

        def on_error(error):
            # os.walk swallows errors unless told otherwise
            if os.path.abspath(error.filename) == os.path.abspath(self.root):
                raise ScanError(self.root, str(error))
            problem = ScanError(os.path.relpath(error.filename, self.root), f"unreadable: {error}")
            self.logger.warning(f"Skipping {problem}")
            self.problems.append(problem)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames[:] = sorted(
                d for d in dirnames
                if not self._is_hidden(d, directory=True)
                and os.path.abspath(os.path.join(dirpath, d)) not in reserved
                and not self._is_excluded(os.path.relpath(os.path.join(dirpath, d), self.root))
            )
            for filename in sorted(filenames):
                if self._is_hidden(filename):
                    continue
                path = os.path.join(dirpath, filename)
                if os.path.abspath(path) in reserved_files:
                    continue
                relative_path = os.path.relpath(path, self.root).replace(os.sep, '/')
                if self._is_excluded(relative_path):
                    continue
                yield path, relative_path

    def _is_hidden(self, name, directory=False):
        if directory and name in POST_DIRS + DRAFT_DIRS:
            return False
        return name.startswith(('.', '_', '#')) or name.endswith('~')

    def _is_excluded(self, relative_path):
        relative_path = relative_path.replace(os.sep, '/')
        return any(fnmatch.fnmatch(relative_path, pattern) or
                   fnmatch.fnmatch(relative_path, pattern.rstrip('/') + '/*')
                   for pattern in self.config.exclude)

    def _is_content_file(self, path):
        ext = os.path.splitext(path)[1].lower()
        if ext in MARKDOWN_EXTENSIONS:
            return True
        if ext in HTML_EXTENSIONS:
            # HTML is only a document when it carries front matter
            try:
                with open(path, 'rb') as f:
                    head = f.read(8)
            except (IOError, OSError):
                return True
            return head.startswith(FRONT_MATTER_PREFIXES)
        return False

    def _classify(self, relative_path):
        parts = relative_path.split('/')[:-1]
        if any(part in DRAFT_DIRS for part in parts):
            return POST, True
        if any(part in POST_DIRS for part in parts):
            return POST, False
        return PAGE, False
