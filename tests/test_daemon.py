"""Tests for the daemon wiring."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fmemo.config import FmemoConfig, ServerConfig, WatchConfig
from fmemo.daemon import FmemoDaemon
from fmemo.sync.watcher import WatchState


def make_config(root: Path, **watch) -> FmemoConfig:
    return FmemoConfig(
        root_dir=root,
        server=ServerConfig(host="127.0.0.1", port=0),
        watch=WatchConfig(debounce_ms=20, poll_interval=0.05, **watch),
    )


class TestDaemon:
    def test_components_share_root(self, tmp_path: Path):
        daemon = FmemoDaemon(make_config(tmp_path))
        assert daemon.builder.root == tmp_path.resolve()
        assert daemon.query.root == daemon.builder.root
        assert daemon.watcher.debounce == pytest.approx(0.02)
        assert daemon.broadcaster.queue_size == 64

    @pytest.mark.asyncio
    async def test_deleted_file_leaves_parse_cache(self, tmp_path: Path):
        (tmp_path / "a.md").write_text("# A\n", encoding="utf-8")
        (tmp_path / "b.md").write_text("# B\n", encoding="utf-8")
        daemon = FmemoDaemon(make_config(tmp_path))
        await daemon.query.get_file("a.md")
        await daemon.query.get_file("b.md")
        subscription = daemon.broadcaster.subscribe()

        await daemon.watcher.start()
        try:
            (tmp_path / "b.md").unlink()
            await asyncio.wait_for(subscription.get(), timeout=2)
            assert daemon.query.cached_paths == ["a.md"]
        finally:
            await daemon.watcher.stop()

    @pytest.mark.asyncio
    async def test_missing_root(self, tmp_path: Path):
        daemon = FmemoDaemon(make_config(tmp_path / "missing"))
        with pytest.raises(FileNotFoundError):
            await daemon.run()

    @pytest.mark.asyncio
    async def test_run_and_shutdown(self, tmp_path: Path):
        (tmp_path / "a.md").write_text("# A\n", encoding="utf-8")
        daemon = FmemoDaemon(make_config(tmp_path))
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.2)
        assert daemon.watcher.state == WatchState.IDLE

        subscription = daemon.broadcaster.subscribe()
        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2)
        assert daemon.watcher.state == WatchState.STOPPED
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_watch_disabled(self, tmp_path: Path):
        daemon = FmemoDaemon(make_config(tmp_path, enabled=False))
        task = asyncio.create_task(daemon.run())
        await asyncio.sleep(0.1)
        daemon.request_shutdown()
        await asyncio.wait_for(task, timeout=2)
        assert daemon.watcher.snapshot is None
