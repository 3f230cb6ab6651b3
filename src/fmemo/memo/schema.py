"""Memo tree and directory tree types.

Everything here is immutable once built: parsers and scanners assemble
values bottom-up and publish them whole, so concurrent readers never see a
half-built tree.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block. ``code`` keeps the original line breaks."""

    language: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"language": self.language, "code": self.code}


@dataclass(frozen=True)
class MemoNode:
    """One heading section of a memo document."""

    level: int
    title: str
    description: str | None = None
    path: str | None = None
    content: str = ""
    code_blocks: tuple[CodeBlock, ...] = ()
    children: tuple[MemoNode, ...] = ()

    @property
    def is_prologue(self) -> bool:
        return self.level == 0

    def walk(self) -> Iterator[MemoNode]:
        """Yield this node and its descendants in document order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "title": self.title,
            "description": self.description,
            "path": self.path,
            "content": self.content,
            "code_blocks": [block.to_dict() for block in self.code_blocks],
            "children": [child.to_dict() for child in self.children],
        }


Forest = tuple[MemoNode, ...]


def forest_to_list(memos: Forest) -> list[dict[str, Any]]:
    return [memo.to_dict() for memo in memos]


def walk_forest(memos: Forest) -> Iterator[MemoNode]:
    for memo in memos:
        yield from memo.walk()


@dataclass(frozen=True)
class DirectoryTree:
    """One directory under the memo root.

    ``path`` is relative to the root in POSIX form; the root itself is ``""``.
    """

    path: str
    files: tuple[str, ...] = ()
    subdirectories: tuple[DirectoryTree, ...] = ()

    def is_empty(self) -> bool:
        """True when no supported file exists anywhere beneath this node."""
        return not self.files and all(sub.is_empty() for sub in self.subdirectories)

    def iter_files(self) -> Iterator[str]:
        """Root-relative paths of every file in the tree."""
        for name in self.files:
            yield join_relative(self.path, name)
        for sub in self.subdirectories:
            yield from sub.iter_files()

    def iter_dirs(self) -> Iterator[str]:
        """Root-relative paths of every subdirectory in the tree."""
        for sub in self.subdirectories:
            yield sub.path
            yield from sub.iter_dirs()

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "files": list(self.files),
            "subdirectories": [sub.to_dict() for sub in self.subdirectories],
        }


@dataclass(frozen=True)
class FileContent:
    """Result of a file query: raw text plus its parsed memo forest."""

    path: str
    content: str
    memos: Forest
    metadata: dict[str, Any] = field(default_factory=dict)
    last_modified: int | None = None
    issues: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return bool(self.issues)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "memos": forest_to_list(self.memos),
            "metadata": self.metadata,
            "last_modified": self.last_modified,
            "issues": list(self.issues),
        }


def join_relative(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name
