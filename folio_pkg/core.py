import os
import time
import hashlib
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from .assembler import SiteAssembler
from .assets import collect_static_artifacts
from .errors import BuildCancelled, FolioError, RenderWarning
from .frontmatter import parse_document
from .generators import registered_generators
from .layouts import LayoutResolver
from .publisher import OutputLock, Publisher
from .renderer import RenderOptions, render_all
from .scanner import SourceScanner
from .seo import SeoTags
from .themes import ThemeResolver


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages to be shown in the console."""
    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        allowed_messages = [
            "Starting site build",
            "Site build completed in",
            "Documents processed:",
            "Total posts generated:",
            "Total pages generated:",
            "Drafts skipped:",
            "Files written:",
            "Build finished with",
            "Rendering",
            "Generating Atom feed",
            "Generating XML sitemap",
            "Generating robots.txt",
            "Using theme",
            "Watching",
            "Serving",
            "Change detected",
        ]
        return any(msg in record.getMessage() for msg in allowed_messages)


def setup_logging(log_dir=None, verbose=False):
    """
    Configure the 'folio' logger.

    The console shows warnings and a filtered set of progress messages (all
    INFO messages with ``verbose``). When ``log_dir`` is set, every record
    down to DEBUG also goes to a timestamped log file there.
    """
    logger = logging.getLogger('folio')
    logger.setLevel(logging.DEBUG if log_dir or verbose else logging.INFO)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        if not verbose:
            console_handler.addFilter(InfoFilter())
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(console_handler)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            log_filename = datetime.now().strftime('folio_%Y-%m-%d_%H-%M-%S.log')
            file_handler = logging.FileHandler(os.path.join(log_dir, log_filename))
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            logger.addHandler(file_handler)
    return logger


@dataclass
class BuildReport:
    documents: int = 0
    posts: int = 0
    pages: int = 0
    drafts_skipped: int = 0
    rendered: int = 0
    cached: int = 0
    written: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed: float = 0.0
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None


class RenderCache:
    """Rendered documents keyed by source path and the hash of the source bytes."""

    def __init__(self):
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    @staticmethod
    def fingerprint(raw: bytes) -> str:
        return hashlib.sha256(raw).hexdigest()

    def get(self, path, fingerprint):
        with self._lock:
            entry = self._entries.get(path)
        if entry is None or entry[0] != fingerprint:
            return None
        return entry[1], entry[2]

    def put(self, path, fingerprint, rendered, warnings):
        with self._lock:
            self._entries[path] = (fingerprint, rendered, list(warnings))

    def invalidate(self, paths=None):
        with self._lock:
            if paths is None:
                self._entries.clear()
            else:
                for path in paths:
                    self._entries.pop(path, None)

    def prune(self, live_paths):
        with self._lock:
            for path in set(self._entries) - set(live_paths):
                del self._entries[path]

    def __len__(self):
        return len(self._entries)


class Folio:
    """Build a site: scan -> parse -> render -> assemble -> publish."""

    def __init__(self, config, requestor=None):
        self.config = config
        self.logger = logging.getLogger('folio.core')
        self.scanner = SourceScanner(config)
        self.options = RenderOptions.from_config(config)
        self.publisher = Publisher(config)
        self.theme_resolver = ThemeResolver(config, requestor)
        self.cache = RenderCache()
        self._theme = None
        self._theme_resolved = False
        self._cancelled = threading.Event()
        self.last_report = None

    def cancel(self):
        """Ask the running build to stop at its next stage boundary."""
        self._cancelled.set()

    def check_cancelled(self, stage):
        if self._cancelled.is_set():
            raise BuildCancelled(f"Build cancelled before {stage}")

    @property
    def theme(self):
        if not self._theme_resolved:
            self._theme = self.theme_resolver.resolve()
            self._theme_resolved = True
            if self._theme is not None:
                self.logger.info(f"Using theme {self._theme.name}")
        return self._theme

    def build(self, changed=None) -> BuildReport:
        """
        Run one build.

        Args:
            changed: Source paths (relative to the content root) known to have
                changed since the previous build. When given, the output is
                published incrementally; otherwise the whole site is swapped in.

        Raises:
            FolioError: Any fatal build error, after it has been logged and
                recorded on the report
        """
        report = self.last_report = BuildReport()
        start_time = time.time()
        self._cancelled.clear()
        self.logger.info("Starting site build...")
        if changed is not None:
            self.cache.invalidate(changed)

        try:
            with OutputLock(self.config.destination):
                self._build(report, incremental=changed is not None)
        except FolioError as e:
            report.error = e
            report.elapsed = time.time() - start_time
            if isinstance(e, BuildCancelled):
                self.logger.warning(str(e))
            else:
                self.logger.error(f"Build failed: {e}")
            raise
        except (IOError, OSError) as e:
            report.error = e
            report.elapsed = time.time() - start_time
            self.logger.error(f"Build failed writing output: {e}")
            raise

        report.elapsed = time.time() - start_time
        self.log_summary(report)
        return report

    def _build(self, report, incremental):
        self.check_cancelled('scanning')
        theme = self.theme
        sources = list(self.scanner.scan())
        report.warnings.extend(str(problem) for problem in self.scanner.problems)

        self.check_cancelled('parsing')
        documents = []
        fingerprints = {}
        for source in sources:
            document = parse_document(source, self.config)
            if document.draft and not self.config.show_drafts:
                report.drafts_skipped += 1
                continue
            documents.append(document)
            fingerprints[document.source_path] = RenderCache.fingerprint(source.raw)
        report.documents = len(documents)

        self.check_cancelled('rendering')
        rendered = self.render(documents, fingerprints, report)

        self.check_cancelled('assembly')
        layouts = LayoutResolver(self.config, theme, SeoTags(self.config))
        assembler = SiteAssembler(self.config, layouts, registered_generators(self.config))
        static_artifacts = collect_static_artifacts(self.config, self.scanner, theme)
        artifacts, site_index = assembler.assemble(rendered, static_artifacts)
        report.posts = len(site_index.posts)
        report.pages = len(site_index.pages)

        self.check_cancelled('publishing')
        result = self.publisher.publish(artifacts, incremental=incremental)
        report.written = result.written
        report.unchanged = result.unchanged
        report.removed = result.removed

    def render(self, documents, fingerprints, report):
        results = [None] * len(documents)
        pending = []
        for position, document in enumerate(documents):
            hit = self.cache.get(document.source_path, fingerprints[document.source_path])
            if hit is not None:
                rendered, warnings = hit
                # mtime-derived dates can change without the source bytes changing
                results[position] = (replace(rendered, document=document), warnings)
                report.cached += 1
            else:
                pending.append(position)

        if pending:
            self.logger.info(f"Rendering {len(pending)} documents")
        fresh = render_all([documents[i] for i in pending], self.options, self.config.workers)
        for position, (rendered, warnings) in zip(pending, fresh):
            self.cache.put(rendered.source_path, fingerprints[rendered.source_path], rendered, warnings)
            results[position] = (rendered, warnings)
        report.rendered = len(pending)
        self.cache.prune(fingerprints)

        output = []
        for rendered, warnings in results:
            for warning in warnings:
                self.log_warning(warning)
                report.warnings.append(str(warning))
            output.append(rendered)
        return output

    def log_warning(self, warning: RenderWarning):
        self.logger.warning(f"Warning: {warning}")

    def log_summary(self, report):
        self.logger.info(f"Documents processed: {report.documents}")
        self.logger.info(f"Total posts generated: {report.posts}")
        self.logger.info(f"Total pages generated: {report.pages}")
        if report.drafts_skipped:
            self.logger.info(f"Drafts skipped: {report.drafts_skipped}")
        self.logger.info(f"Files written: {len(report.written)}, unchanged: {len(report.unchanged)}, "
                         f"removed: {len(report.removed)}")
        if report.warnings:
            self.logger.info(f"Build finished with {len(report.warnings)} warning(s)")
        self.logger.info(f"Site build completed in {report.elapsed:.2f} seconds")
