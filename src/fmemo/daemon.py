"""Daemon process — serve a memo root and push live updates.

Usage: python -m fmemo serve [ROOT]

Manages:
- TreeBuilder / QueryService (pull side)
- ChangeWatcher → SyncBroadcaster (push side)
- aiohttp server exposing both
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import signal

from fmemo.config import FmemoConfig, load_config
from fmemo.memo.tree import TreeBuilder
from fmemo.query import QueryService
from fmemo.server import MemoServer
from fmemo.sync.broadcaster import SyncBroadcaster
from fmemo.sync.watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class FmemoDaemon:
    """Always-on server process for one memo root."""

    def __init__(self, config: FmemoConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

        self.builder = TreeBuilder(self.config.root_dir, self.config.tree)
        self.query = QueryService(self.builder)
        self.broadcaster = SyncBroadcaster(self.config.broadcast.queue_size)
        self.watcher = ChangeWatcher(
            self.builder,
            self.broadcaster,
            debounce=self.config.watch.debounce,
            poll_interval=self.config.watch.poll_interval,
            on_rebuild=self.query.retain,
        )
        self.server = MemoServer(self.query, self.broadcaster, self.config.server)

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        if not self.builder.root.is_dir():
            raise FileNotFoundError(f"Root directory '{self.builder.root}' does not exist")

        self._setup_signals()
        await self.server.start()

        logger.info("fmemo daemon starting (root=%s)", self.builder.root)

        try:
            if self.config.watch.enabled:
                await self.watcher.run(self._shutdown_event)
            else:
                logger.info("File watching disabled")
                await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            self.broadcaster.close()
            await self.server.stop()
            logger.info("fmemo daemon stopped.")
