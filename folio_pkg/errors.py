"""
Error types raised by the Folio build pipeline.

Every exception keeps its fields in ``args`` so instances survive pickling
when they cross the render worker pool.
"""

from typing import Optional, Sequence


class FolioError(Exception):
    """Base class for fatal build errors."""


class ConfigError(FolioError):
    """Invalid value in the site configuration."""


class ScanError(FolioError):
    """
    The content tree could not be read.

    Fatal when raised for the content root. For an individual file the
    scanner records the error and skips the file.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(path, reason)
        self.path = path
        self.reason = reason

    def __str__(self):
        return f"{self.path}: {self.reason}"


class MetadataError(FolioError):
    """Missing or malformed front matter in a document."""

    def __init__(self, document: str, reason: str):
        super().__init__(document, reason)
        self.document = document
        self.reason = reason

    def __str__(self):
        return f"{self.document}: {self.reason}"


class LayoutError(FolioError):
    """A document references a layout that cannot be resolved."""

    def __init__(self, document: str, layout: str, chain: Optional[Sequence[str]] = None,
                 reason: Optional[str] = None):
        super().__init__(document, layout, tuple(chain) if chain else None, reason)
        self.document = document
        self.layout = layout
        self.chain = tuple(chain) if chain else None
        self.reason = reason

    def __str__(self):
        if self.reason:
            return f"{self.document}: layout '{self.layout}' failed to render: {self.reason}"
        if self.chain:
            cycle = ' -> '.join(self.chain + (self.layout,))
            return f"{self.document}: layout cycle detected ({cycle})"
        return f"{self.document}: layout '{self.layout}' does not exist"


class ArtifactCollisionError(FolioError):
    """Two outputs were assigned the same destination path."""

    def __init__(self, path: str, first: str, second: str):
        super().__init__(path, first, second)
        self.path = path
        self.first = first
        self.second = second

    def __str__(self):
        return f"Output path '{self.path}' produced by both {self.first} and {self.second}"


class ThemeError(FolioError):
    """The configured theme could not be resolved or fetched."""


class LockError(FolioError):
    """Another build holds the destination directory."""


class BuildCancelled(FolioError):
    """The build was cancelled between stages."""


class RenderWarning(UserWarning):
    """Non-fatal rendering problem in a single document."""

    def __init__(self, document: str, message: str):
        super().__init__(document, message)
        self.document = document
        self.message = message

    def __str__(self):
        return f"{self.document}: {self.message}"
