"""Typed errors surfaced to query callers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fmemo.memo.schema import FileContent


class FmemoError(Exception):
    """Base class for all fmemo errors."""


class NotFound(FmemoError):
    """A file or directory does not exist under the memo root."""

    def __init__(self, path: str, reason: str = "not found") -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedFileType(NotFound):
    """The file exists (or might) but its extension is not on the allow-list."""

    def __init__(self, path: str) -> None:
        super().__init__(path, "unsupported file type")


class FileReadError(FmemoError):
    """Reading a file or directory failed for a reason other than absence."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ParseDegraded(FmemoError):
    """A parse succeeded but had to apply degradation rules.

    Only raised when a caller asks for strict parsing; ``content`` holds the
    best-effort result either way.
    """

    def __init__(self, content: FileContent) -> None:
        super().__init__(f"{content.path}: {'; '.join(content.issues)}")
        self.content = content
        self.issues = content.issues
