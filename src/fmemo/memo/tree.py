"""Directory scanning and per-file parsing under a memo root.

All methods are blocking; async callers run them through asyncio.to_thread.
Paths crossing this boundary are root-relative POSIX strings ("" = root).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import frontmatter

from fmemo.config import TreeConfig
from fmemo.errors import FileReadError, NotFound, UnsupportedFileType
from fmemo.memo.parser import parse_document
from fmemo.memo.schema import DirectoryTree, FileContent, Forest, join_relative

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    """Stat fingerprint of one entry, used to detect changes between scans."""

    is_dir: bool
    mtime_ns: int = 0
    size: int = 0


@dataclass
class ParsedFile:
    """One file read from disk and parsed."""

    path: str
    text: str
    memos: Forest
    stat: FileStat
    metadata: dict[str, Any] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)

    def to_content(self) -> FileContent:
        return FileContent(
            path=self.path,
            content=self.text,
            memos=self.memos,
            metadata=self.metadata,
            last_modified=self.stat.mtime_ns // 1_000_000_000,
            issues=tuple(self.issues),
        )


def normalize_path(path: str) -> str:
    """Turn user input into a root-relative POSIX path without leading slash."""
    return path.replace("\\", "/").strip().strip("/")


class TreeBuilder:
    """Builds DirectoryTree snapshots and parses memo files under one root."""

    def __init__(self, root: Path, config: TreeConfig | None = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self.config = config or TreeConfig()

    # ── Paths ─────────────────────────────────────────────────

    def is_supported(self, name: str) -> bool:
        parts = name.split("/")
        if not all(self._visible(part) for part in parts if part not in ("", ".", "..")):
            return False
        return Path(parts[-1]).suffix.lower() in self.config.extensions

    def resolve(self, path: str) -> Path:
        """Map a root-relative path to an absolute one, refusing escapes."""
        rel = normalize_path(path)
        if not rel:
            return self.root
        candidate = (self.root / rel).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise NotFound(rel, "outside memo root")
        # Hidden anywhere on the path means absent from build() too
        if not all(self._visible(part) for part in rel.split("/") if part not in ("", ".", "..")):
            raise NotFound(rel)
        return candidate

    def _visible(self, name: str) -> bool:
        return self.config.include_hidden or not name.startswith(".")

    # ── Directory tree ────────────────────────────────────────

    def build(self, path: str = "") -> DirectoryTree:
        """Scan ``path`` (root by default) into a DirectoryTree."""
        rel = normalize_path(path)
        directory = self.resolve(rel)
        if not directory.is_dir():
            raise NotFound(rel or ".", "not a directory")
        try:
            return self._scan_dir(directory, rel)
        except FileNotFoundError as e:
            raise NotFound(rel or ".") from e
        except OSError as e:
            raise FileReadError(rel or ".", e.strerror or str(e)) from e

    def _scan_dir(self, directory: Path, rel: str) -> DirectoryTree:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)

        files: list[str] = []
        subdirectories: list[DirectoryTree] = []
        for entry in entries:
            if not self._visible(entry.name) or entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                child_rel = join_relative(rel, entry.name)
                try:
                    subtree = self._scan_dir(Path(entry.path), child_rel)
                except FileNotFoundError:
                    # Removed while scanning
                    continue
                except OSError as e:
                    logger.error("Cannot scan %s: %s", child_rel, e)
                    subdirectories.append(DirectoryTree(path=child_rel))
                    continue
                if self.config.prune_empty and subtree.is_empty():
                    continue
                subdirectories.append(subtree)
            elif entry.is_file(follow_symlinks=False) and self.is_supported(entry.name):
                files.append(entry.name)

        return DirectoryTree(path=rel, files=tuple(files), subdirectories=tuple(subdirectories))

    def scan(self) -> dict[str, FileStat]:
        """Flat stat snapshot of every supported file and visible directory.

        Raises NotFound if the root itself is gone; unreadable subdirectories
        are skipped.
        """
        if not self.root.is_dir():
            raise NotFound(".", "memo root is missing")

        snapshot: dict[str, FileStat] = {}
        pending = [(self.root, "")]
        while pending:
            directory, rel = pending.pop()
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError as e:
                if not rel:
                    raise NotFound(".", "memo root is unreadable") from e
                logger.debug("Skipping %s during scan: %s", rel, e)
                continue

            for entry in entries:
                if not self._visible(entry.name) or entry.is_symlink():
                    continue
                child_rel = join_relative(rel, entry.name)
                try:
                    if entry.is_dir(follow_symlinks=False):
                        snapshot[child_rel] = FileStat(is_dir=True)
                        pending.append((Path(entry.path), child_rel))
                    elif self.is_supported(entry.name):
                        st = entry.stat(follow_symlinks=False)
                        snapshot[child_rel] = FileStat(
                            is_dir=False, mtime_ns=st.st_mtime_ns, size=st.st_size
                        )
                except OSError:
                    # Entry vanished between listing and stat
                    continue
        return snapshot

    # ── Files ─────────────────────────────────────────────────

    def stat_file(self, path: str) -> FileStat:
        rel = normalize_path(path)
        if not self.is_supported(rel):
            raise UnsupportedFileType(rel)
        try:
            st = self.resolve(rel).stat()
        except FileNotFoundError as e:
            raise NotFound(rel) from e
        except OSError as e:
            raise FileReadError(rel, e.strerror or str(e)) from e
        return FileStat(is_dir=False, mtime_ns=st.st_mtime_ns, size=st.st_size)

    def build_file(self, path: str) -> ParsedFile:
        """Read one memo file and parse it into a forest."""
        rel = normalize_path(path)
        if not self.is_supported(rel):
            raise UnsupportedFileType(rel)
        file_path = self.resolve(rel)

        try:
            st = file_path.stat()
            raw = file_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise NotFound(rel) from e
        except OSError as e:
            raise FileReadError(rel, e.strerror or str(e)) from e

        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FileReadError(rel, "not valid UTF-8") from e

        metadata, body, issues = self._split_front_matter(rel, text)
        result = parse_document(body)
        return ParsedFile(
            path=rel,
            text=text,
            memos=result.memos,
            stat=FileStat(is_dir=False, mtime_ns=st.st_mtime_ns, size=st.st_size),
            metadata=metadata,
            issues=issues + result.issues,
        )

    def _split_front_matter(self, rel: str, text: str) -> tuple[dict[str, Any], str, list[str]]:
        """Separate a leading YAML/TOML front matter block from the memo body."""
        if not frontmatter.checks(text):
            return {}, text, []
        try:
            post = frontmatter.loads(text)
        except Exception as e:
            logger.warning("Invalid front matter in %s: %s", rel, e)
            return {}, text, [f"front matter could not be parsed: {e}"]
        return dict(post.metadata), post.content, []
