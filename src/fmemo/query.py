"""Query façade used by the HTTP layer: directory tree and per-file memos."""

from __future__ import annotations

import asyncio
import logging

from fmemo.errors import NotFound, ParseDegraded
from fmemo.memo.schema import DirectoryTree, FileContent
from fmemo.memo.tree import FileStat, TreeBuilder, normalize_path

logger = logging.getLogger(__name__)


class QueryService:
    """Pull side of the sync contract. Composes TreeBuilder; adds a parse cache."""

    def __init__(self, builder: TreeBuilder) -> None:
        self._builder = builder
        self._cache: dict[str, tuple[FileStat, FileContent]] = {}

    @property
    def root(self):
        return self._builder.root

    async def get_tree(self, path: str = "") -> DirectoryTree:
        """Directory tree rooted at ``path`` (the memo root when empty)."""
        return await asyncio.to_thread(self._builder.build, path)

    async def get_file(self, path: str, *, strict: bool = False) -> FileContent:
        """Parsed memos of one file.

        Raises NotFound / FileReadError. With ``strict`` a degraded parse
        raises ParseDegraded, which still carries the result.
        """
        rel = normalize_path(path)
        content = await asyncio.to_thread(self._load, rel)
        if strict and content.degraded:
            raise ParseDegraded(content)
        return content

    def _load(self, rel: str) -> FileContent:
        try:
            stat = self._builder.stat_file(rel)
        except NotFound:
            self._cache.pop(rel, None)
            raise
        cached = self._cache.get(rel)
        if cached is not None and cached[0] == stat:
            return cached[1]

        parsed = self._builder.build_file(rel)
        content = parsed.to_content()
        if parsed.issues:
            logger.info("Parsed %s with %d issue(s)", rel, len(parsed.issues))
        # Keyed by the stat taken during the read, so an edit racing the
        # read invalidates the entry on the next lookup.
        self._cache[rel] = (parsed.stat, content)
        return content

    def invalidate(self, path: str | None = None) -> None:
        """Drop one cached parse, or all of them."""
        if path is None:
            self._cache = {}
        else:
            self._cache.pop(normalize_path(path), None)

    def retain(self, tree: DirectoryTree) -> None:
        """Drop cached parses of files that are no longer in ``tree``."""
        known = set(tree.iter_files())
        # _load writes from worker threads; iterate a copy of the keys
        stale = [rel for rel in list(self._cache) if rel not in known]
        for rel in stale:
            self._cache.pop(rel, None)
        if stale:
            logger.debug("Evicted %d stale parse(s)", len(stale))

    @property
    def cached_paths(self) -> list[str]:
        return sorted(self._cache)
