"""Tests for QueryService."""

from __future__ import annotations

from pathlib import Path

import pytest

from fmemo.errors import NotFound, ParseDegraded, UnsupportedFileType
from fmemo.memo.tree import TreeBuilder
from fmemo.query import QueryService


@pytest.fixture
def service(tmp_path: Path) -> QueryService:
    (tmp_path / "a.md").write_text("# A\nbody\n", encoding="utf-8")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.fmemo").write_text("# B\n## C\n", encoding="utf-8")
    (tmp_path / "intro.md").write_text("loose intro\n# Heading\n", encoding="utf-8")
    return QueryService(TreeBuilder(tmp_path))


class TestGetTree:
    @pytest.mark.asyncio
    async def test_root(self, service: QueryService):
        tree = await service.get_tree()
        assert tree.files == ("a.md", "intro.md")
        assert tree.subdirectories[0].files == ("b.fmemo",)

    @pytest.mark.asyncio
    async def test_subdirectory(self, service: QueryService):
        tree = await service.get_tree("sub")
        assert tree.path == "sub"
        assert tree.files == ("b.fmemo",)

    @pytest.mark.asyncio
    async def test_missing_directory(self, service: QueryService):
        with pytest.raises(NotFound):
            await service.get_tree("nope")


class TestGetFile:
    @pytest.mark.asyncio
    async def test_nested_file(self, service: QueryService):
        content = await service.get_file("sub/b.fmemo")
        assert content.path == "sub/b.fmemo"
        assert content.memos[0].title == "B"
        assert content.memos[0].children[0].title == "C"
        assert content.content == "# B\n## C\n"
        assert not content.degraded

    @pytest.mark.asyncio
    async def test_missing_file(self, service: QueryService):
        with pytest.raises(NotFound):
            await service.get_file("missing.md")

    @pytest.mark.asyncio
    async def test_unsupported_file(self, service: QueryService, tmp_path: Path):
        (tmp_path / "notes.txt").write_text("x", encoding="utf-8")
        with pytest.raises(UnsupportedFileType):
            await service.get_file("notes.txt")

    @pytest.mark.asyncio
    async def test_degraded_parse_is_returned(self, service: QueryService):
        content = await service.get_file("intro.md")
        assert content.degraded
        assert content.memos[0].is_prologue

    @pytest.mark.asyncio
    async def test_strict_raises_with_result(self, service: QueryService):
        with pytest.raises(ParseDegraded) as excinfo:
            await service.get_file("intro.md", strict=True)
        assert excinfo.value.content.memos[1].title == "Heading"
        assert excinfo.value.issues

    @pytest.mark.asyncio
    async def test_strict_clean_file(self, service: QueryService):
        content = await service.get_file("a.md", strict=True)
        assert content.memos[0].content == "body"


class TestCache:
    @pytest.mark.asyncio
    async def test_unchanged_file_is_served_from_cache(self, service: QueryService):
        first = await service.get_file("a.md")
        second = await service.get_file("/a.md")
        assert first is second

    @pytest.mark.asyncio
    async def test_edit_refreshes(self, service: QueryService, tmp_path: Path):
        first = await service.get_file("a.md")
        (tmp_path / "a.md").write_text("# A\nlonger body text\n", encoding="utf-8")
        second = await service.get_file("a.md")
        assert second is not first
        assert second.memos[0].content == "longer body text"

    @pytest.mark.asyncio
    async def test_invalidate(self, service: QueryService):
        first = await service.get_file("a.md")
        service.invalidate("a.md")
        assert await service.get_file("a.md") is not first

        cached = await service.get_file("sub/b.fmemo")
        service.invalidate()
        assert await service.get_file("sub/b.fmemo") is not cached

    @pytest.mark.asyncio
    async def test_deleted_file_is_not_served_stale(self, service: QueryService, tmp_path: Path):
        await service.get_file("a.md")
        (tmp_path / "a.md").unlink()
        with pytest.raises(NotFound):
            await service.get_file("a.md")

    @pytest.mark.asyncio
    async def test_deleted_files_are_evicted(self, service: QueryService, tmp_path: Path):
        for i in range(20):
            (tmp_path / f"n{i}.md").write_text(f"# N{i}\n", encoding="utf-8")
            await service.get_file(f"n{i}.md")
        assert len(service.cached_paths) == 20

        for i in range(20):
            (tmp_path / f"n{i}.md").unlink()
            with pytest.raises(NotFound):
                await service.get_file(f"n{i}.md")
        assert service.cached_paths == []

    @pytest.mark.asyncio
    async def test_retain_drops_files_missing_from_tree(
        self, service: QueryService, tmp_path: Path
    ):
        await service.get_file("a.md")
        await service.get_file("sub/b.fmemo")
        (tmp_path / "sub" / "b.fmemo").unlink()

        service.retain(await service.get_tree())
        assert service.cached_paths == ["a.md"]

    @pytest.mark.asyncio
    async def test_hidden_directory_is_not_served(self, service: QueryService, tmp_path: Path):
        (tmp_path / ".private").mkdir()
        (tmp_path / ".private" / "secret.md").write_text("# Secret\n", encoding="utf-8")
        tree = await service.get_tree()
        assert ".private/secret.md" not in list(tree.iter_files())
        with pytest.raises(NotFound):
            await service.get_file(".private/secret.md")
