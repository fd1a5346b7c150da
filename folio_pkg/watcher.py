import os
import queue
import logging
import threading

from .errors import BuildCancelled, FolioError


class Watcher:
    """
    Poll the site's source trees and rebuild on change.

    A background thread compares mtime/size snapshots and queues the changed
    paths. The foreground loop drains the queue, waits for a quiet window of
    ``debounce`` seconds, then runs one build at a time. Changes confined to
    the content tree rebuild incrementally; anything else (layouts, includes,
    assets, theme files) re-assembles the whole site.
    """

    def __init__(self, folio, interval=None, debounce=None):
        self.folio = folio
        self.config = folio.config
        self.interval = interval if interval is not None else self.config.watch_interval
        self.debounce = debounce if debounce is not None else self.config.debounce
        self.logger = logging.getLogger('folio.watcher')
        self.events = queue.Queue()
        self._stop = threading.Event()
        self._building = threading.Event()
        self._snapshot = {}

    def watched_roots(self):
        roots = [self.config.source, self.config.layouts, self.config.includes, self.config.assets]
        theme = self.folio._theme
        if theme is not None:
            roots.append(theme.root)
        seen = []
        for root in roots:
            if root and os.path.isdir(root) and root not in seen:
                seen.append(root)
        return seen

    def ignored(self, path):
        path = os.path.abspath(path)
        for directory in (self.config.destination, self.config.cache_dir):
            directory = os.path.abspath(directory)
            if path == directory or path.startswith(directory + os.sep):
                return True
        return False

    def snapshot(self):
        """Map every watched file to its (mtime, size)."""
        state = {}
        for root in self.watched_roots():
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = [d for d in dirnames
                               if not d.startswith('.') and not self.ignored(os.path.join(dirpath, d))]
                for filename in filenames:
                    if filename.startswith('.') or filename.endswith('~'):
                        continue
                    path = os.path.join(dirpath, filename)
                    try:
                        stat = os.stat(path)
                    except OSError:
                        continue
                    state[path] = (stat.st_mtime, stat.st_size)
        return state

    @staticmethod
    def diff(old, new):
        changed = {path for path, stamp in new.items() if old.get(path) != stamp}
        changed.update(path for path in old if path not in new)
        return changed

    def poll_once(self):
        """Take a fresh snapshot and return the paths changed since the last one."""
        current = self.snapshot()
        changed = self.diff(self._snapshot, current)
        self._snapshot = current
        return changed

    def classify(self, paths):
        """
        Split changed paths into content changes and a full-rebuild flag.

        Returns:
            (content_paths, full): content paths relative to the content root,
            and whether anything outside the content documents changed
        """
        content = set()
        full = False
        non_content_roots = [r for r in (self.config.layouts, self.config.includes, self.config.assets) if r]
        if self.folio._theme is not None:
            non_content_roots.append(self.folio._theme.root)
        source = os.path.abspath(self.config.source)

        for path in paths:
            path = os.path.abspath(path)
            inside_other = any(path == os.path.abspath(r) or path.startswith(os.path.abspath(r) + os.sep)
                               for r in non_content_roots)
            if not inside_other and path.startswith(source + os.sep):
                content.add(os.path.relpath(path, source).replace(os.sep, '/'))
            else:
                full = True
        return content, full

    def rebuild(self, paths):
        """Run one build for a batch of changed paths. Errors are logged, never raised."""
        content, full = self.classify(paths)
        self.logger.info(f"Change detected in {len(paths)} file(s), rebuilding"
                         f"{'' if full else ' incrementally'}")
        self._building.set()
        try:
            return self.folio.build(changed=None if full else sorted(content))
        except BuildCancelled:
            self.events.put(set(paths))
        except (FolioError, IOError, OSError) as e:
            self.logger.error(f"Rebuild failed, still watching: {e}")
        finally:
            self._building.clear()
        return None

    def _poll_loop(self):
        while not self._stop.wait(self.interval):
            try:
                changed = self.poll_once()
            except OSError as e:
                self.logger.error(f"Polling failed: {e}")
                continue
            if changed:
                if self._building.is_set():
                    self.folio.cancel()
                self.events.put(changed)

    def next_batch(self):
        """Block until a change arrives, then collect until the quiet window passes."""
        batch = set()
        while not batch:
            try:
                batch.update(self.events.get(timeout=self.interval))
            except queue.Empty:
                if self._stop.is_set():
                    return None
        while True:
            try:
                batch.update(self.events.get(timeout=self.debounce))
            except queue.Empty:
                return batch

    def run(self, initial_build=True):
        """Watch until stop() is called or the process is interrupted."""
        if initial_build:
            try:
                self.folio.build()
            except (FolioError, IOError, OSError) as e:
                self.logger.error(f"Initial build failed, still watching: {e}")
        self._snapshot = self.snapshot()
        poller = threading.Thread(target=self._poll_loop, name='folio-poller', daemon=True)
        poller.start()
        self.logger.info(f"Watching {', '.join(self.watched_roots())} for changes")
        try:
            while not self._stop.is_set():
                batch = self.next_batch()
                if batch:
                    self.rebuild(batch)
        finally:
            self._stop.set()
            poller.join(timeout=self.interval * 2)

    def stop(self):
        self._stop.set()
