"""
Writing artifacts to the destination directory.

A full publish renders into a sibling staging directory and swaps it into
place, so readers of the destination never see a half-written site. Watch
mode rebuilds publish incrementally against the manifest of content hashes
left by the previous build.
"""

import os
import json
import errno
import shutil
import hashlib
import logging
import tempfile
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import FolioError, LockError

MANIFEST_NAME = 'manifest.json'
# Lock files this old with unreadable content are treated as abandoned
STALE_LOCK_SECONDS = 30


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def lock_path(destination: str) -> str:
    """Path of the lock file guarding a destination directory."""
    return os.path.abspath(destination).rstrip(os.sep) + '.lock'


def load_manifest(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (IOError, OSError, ValueError):
        return {}


def write_manifest(path: str, data: dict) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    write_atomic(path, json.dumps(data, indent=2, sort_keys=True, ensure_ascii=True).encode('utf-8'))


def write_atomic(path: str, content: bytes) -> None:
    """Write through a temp file in the same directory, then rename over the target."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix='.folio-', dir=directory)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def target_path(root: str, relative: str) -> str:
    path = os.path.normpath(os.path.join(root, relative))
    if os.path.commonpath([os.path.abspath(root), os.path.abspath(path)]) != os.path.abspath(root):
        raise FolioError(f"Path traversal attempt detected: {relative}")
    return path


class OutputLock:
    """
    Exclusive lock on a destination directory, held as ``<destination>.lock``.

    The lock file holds the owner's pid. A lock whose owner is no longer
    running is taken over.
    """

    def __init__(self, destination: str):
        self.destination = os.path.abspath(destination)
        self.path = lock_path(destination)
        self.held = False
        self.logger = logging.getLogger('folio.publisher')

    def acquire(self) -> 'OutputLock':
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self.is_stale():
                    self.logger.warning(f"Removing stale lock {self.path}")
                    try:
                        os.remove(self.path)
                    except FileNotFoundError:
                        pass
                    continue
                raise LockError(f"Another build is writing to {self.destination} (lock: {self.path})")
            with os.fdopen(fd, 'w') as f:
                f.write(str(os.getpid()))
            self.held = True
            return self
        raise LockError(f"Could not acquire lock {self.path}")

    def is_stale(self) -> bool:
        try:
            with open(self.path, 'r') as f:
                pid = int(f.read().strip())
        except FileNotFoundError:
            return True
        except (IOError, OSError, ValueError):
            # the owner may still be writing its pid
            try:
                return time.time() - os.path.getmtime(self.path) > STALE_LOCK_SECONDS
            except OSError:
                return True
        if pid == os.getpid():
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return True
        except PermissionError:
            return False
        return False

    def release(self) -> None:
        if not self.held:
            return
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        self.held = False

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


@dataclass
class PublishResult:
    written: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    incremental: bool = False


class Publisher:
    """Write an artifact set to the destination directory."""

    def __init__(self, config):
        self.config = config
        self.destination = config.destination
        self.manifest_path = os.path.join(config.cache_dir, MANIFEST_NAME)
        self.logger = logging.getLogger('folio.publisher')

    def previous_hashes(self) -> Optional[Dict[str, str]]:
        manifest = load_manifest(self.manifest_path)
        if manifest.get('destination') != os.path.abspath(self.destination):
            return None
        files = manifest.get('files')
        return files if isinstance(files, dict) else None

    def save_hashes(self, hashes: Dict[str, str]) -> None:
        write_manifest(self.manifest_path, {
            'destination': os.path.abspath(self.destination),
            'files': hashes,
        })

    def publish(self, artifacts, incremental=False) -> PublishResult:
        if incremental:
            previous = self.previous_hashes()
            if previous is not None and os.path.isdir(self.destination):
                return self.publish_incremental(artifacts, previous)
            self.logger.info("No previous build manifest, publishing in full")
        return self.publish_full(artifacts)

    def publish_full(self, artifacts) -> PublishResult:
        """
        Write every artifact into a staging directory and swap it into place.

        Raises:
            OSError: If writing fails; the previous output is left untouched
        """
        previous = self.previous_hashes() or {}
        result = PublishResult()
        hashes = {}
        parent = os.path.dirname(os.path.abspath(self.destination))
        name = os.path.basename(os.path.abspath(self.destination))
        os.makedirs(parent, exist_ok=True)
        staging = tempfile.mkdtemp(prefix=f'.{name}.staging-', dir=parent)

        try:
            for artifact in artifacts:
                path = target_path(staging, artifact.path)
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, 'wb') as f:
                    f.write(artifact.content)
                digest = hash_bytes(artifact.content)
                hashes[artifact.path] = digest
                if previous.get(artifact.path) == digest:
                    result.unchanged.append(artifact.path)
                else:
                    result.written.append(artifact.path)
            self.carry_over_kept_files(staging, hashes)
            result.removed = sorted(set(previous) - set(hashes))
            self.swap_into_place(staging)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        self.save_hashes(hashes)
        self.logger.info(f"Published {len(hashes)} files to {self.destination}")
        return result

    def carry_over_kept_files(self, staging, hashes):
        if not os.path.isdir(self.destination):
            return
        for name in self.config.keep_files:
            source = target_path(self.destination, name)
            target = target_path(staging, name)
            if not os.path.lexists(source) or name in hashes or os.path.lexists(target):
                continue
            self.logger.debug(f"Keeping {name} from previous output")
            os.makedirs(os.path.dirname(target), exist_ok=True)
            if os.path.isdir(source) and not os.path.islink(source):
                shutil.copytree(source, target, symlinks=True)
            else:
                shutil.copy2(source, target, follow_symlinks=False)

    def swap_into_place(self, staging):
        if not os.path.exists(self.destination):
            os.rename(staging, self.destination)
            return
        backup = staging.replace('.staging-', '.old-')
        os.rename(self.destination, backup)
        try:
            os.rename(staging, self.destination)
        except OSError:
            os.rename(backup, self.destination)
            raise
        shutil.rmtree(backup, ignore_errors=True)

    def publish_incremental(self, artifacts, previous) -> PublishResult:
        """Rewrite only artifacts whose content hash changed and drop vanished ones."""
        result = PublishResult(incremental=True)
        hashes = {}
        for artifact in artifacts:
            path = target_path(self.destination, artifact.path)
            digest = hash_bytes(artifact.content)
            hashes[artifact.path] = digest
            if previous.get(artifact.path) == digest and os.path.isfile(path):
                result.unchanged.append(artifact.path)
                continue
            write_atomic(path, artifact.content)
            result.written.append(artifact.path)

        for relative in sorted(set(previous) - set(hashes)):
            path = target_path(self.destination, relative)
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            result.removed.append(relative)
            self.prune_empty_dirs(os.path.dirname(path))

        self.save_hashes(hashes)
        self.logger.info(f"Updated {len(result.written)} files, removed {len(result.removed)} "
                         f"({len(result.unchanged)} unchanged)")
        return result

    def prune_empty_dirs(self, directory):
        root = os.path.abspath(self.destination)
        directory = os.path.abspath(directory)
        while directory != root and directory.startswith(root + os.sep):
            try:
                os.rmdir(directory)
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST, errno.ENOENT):
                    return
                raise
            directory = os.path.dirname(directory)
