"""Change watcher — turn noisy filesystem events into settled notifications.

State per watched root:

    IDLE ──event──▶ PENDING ──debounce expires──▶ SETTLED ──processed──▶ IDLE
                      ▲  │
                      └──┘ every new event restarts the timer

FAILED and STOPPED are terminal: no events are produced afterwards and the
watcher is never restarted automatically.

Raw events come from a polling source that diffs successive stat snapshots
of the root, or from anything that calls feed() directly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fmemo.errors import FmemoError, NotFound
from fmemo.memo.schema import DirectoryTree
from fmemo.memo.tree import FileStat, TreeBuilder
from fmemo.sync.broadcaster import DirectoryUpdated, FileUpdated, SyncBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.3
DEFAULT_POLL_INTERVAL = 0.5


class WatchState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SETTLED = "settled"
    STOPPED = "stopped"
    FAILED = "failed"


class EventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"


@dataclass(frozen=True)
class RawEvent:
    """One unprocessed filesystem event for a root-relative path."""

    kind: EventKind
    path: str
    is_dir: bool = False


def diff_snapshots(old: dict[str, FileStat], new: dict[str, FileStat]) -> list[RawEvent]:
    """Raw events that explain the difference between two scan() snapshots."""
    events: list[RawEvent] = []
    for path in sorted(new):
        stat = new[path]
        previous = old.get(path)
        if previous is None or previous.is_dir != stat.is_dir:
            events.append(RawEvent(EventKind.CREATED, path, stat.is_dir))
        elif not stat.is_dir and previous != stat:
            events.append(RawEvent(EventKind.MODIFIED, path))
    for path in sorted(old.keys() - new.keys()):
        events.append(RawEvent(EventKind.DELETED, path, old[path].is_dir))
    return events


@dataclass
class _PendingPath:
    kinds: set[EventKind]
    is_dir: bool


class ChangeWatcher:
    """Debounces raw events for one root and publishes what changed."""

    def __init__(
        self,
        builder: TreeBuilder,
        broadcaster: SyncBroadcaster,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        poll: bool = True,
        on_rebuild: Callable[[DirectoryTree], None] | None = None,
    ) -> None:
        self._builder = builder
        self._broadcaster = broadcaster
        self._on_rebuild = on_rebuild
        self.debounce = debounce
        self.poll_interval = poll_interval
        self._poll_enabled = poll

        self._state = WatchState.IDLE
        self._snapshot: DirectoryTree | None = None
        self._stats_snapshot: dict[str, FileStat] = {}
        self.error: Exception | None = None

        self._pending: dict[str, _PendingPath] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._batches: asyncio.Queue[dict[str, _PendingPath]] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self.stats = {"events": 0, "batches": 0, "reparses": 0, "rebuilds": 0}

    @property
    def state(self) -> WatchState:
        return self._state

    @property
    def snapshot(self) -> DirectoryTree | None:
        """Last known directory tree (replaced whole, never mutated)."""
        return self._snapshot

    @property
    def active(self) -> bool:
        return self._state not in (WatchState.STOPPED, WatchState.FAILED)

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Take the initial snapshot and start the worker (and poller)."""
        if self._tasks:
            raise RuntimeError("Watcher already started")
        try:
            self._snapshot = await asyncio.to_thread(self._builder.build)
            if self._poll_enabled:
                self._stats_snapshot = await asyncio.to_thread(self._builder.scan)
        except FmemoError as e:
            self._fail(e)
            return

        self._tasks.append(asyncio.create_task(self._worker(), name="fmemo-watch-worker"))
        if self._poll_enabled:
            self._tasks.append(asyncio.create_task(self._poll(), name="fmemo-watch-poll"))
        logger.info(
            "Watching %s (debounce=%.0fms, poll=%s)",
            self._builder.root,
            self.debounce * 1000,
            f"{self.poll_interval}s" if self._poll_enabled else "off",
        )

    async def stop(self) -> None:
        if self._state != WatchState.FAILED:
            self._state = WatchState.STOPPED
        self._cancel_timer()
        self._pending.clear()
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        for task in self._tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Watcher for %s stopped.", self._builder.root)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Watch until shutdown_event is set."""
        await self.start()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()

    def _fail(self, error: Exception) -> None:
        logger.error("Watcher for %s failed, no further events: %s", self._builder.root, error)
        self.error = error
        self._state = WatchState.FAILED
        self._cancel_timer()
        self._pending.clear()
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

    # ── Raw events & debounce ─────────────────────────────────

    def feed(self, event: RawEvent) -> None:
        """Accept one raw event and (re)start the debounce timer."""
        if not self.active:
            return
        self.stats["events"] += 1
        entry = self._pending.get(event.path)
        if entry is None:
            self._pending[event.path] = _PendingPath({event.kind}, event.is_dir)
        else:
            entry.kinds.add(event.kind)
            entry.is_dir = entry.is_dir or event.is_dir

        self._state = WatchState.PENDING
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().call_later(self.debounce, self._settle)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _settle(self) -> None:
        self._timer = None
        if not self._pending or not self.active:
            return
        batch, self._pending = self._pending, {}
        self._state = WatchState.SETTLED
        self._batches.put_nowait(batch)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                current = await asyncio.to_thread(self._builder.scan)
            except FmemoError as e:
                self._fail(e)
                return
            for event in diff_snapshots(self._stats_snapshot, current):
                self.feed(event)
            self._stats_snapshot = current

    # ── Settled batches ───────────────────────────────────────

    def classify(self, batch: dict[str, _PendingPath]) -> tuple[list[str], bool]:
        """Split a batch into content-changed files and a structural flag."""
        known_files = set(self._snapshot.iter_files()) if self._snapshot else set()
        known_dirs = set(self._snapshot.iter_dirs()) if self._snapshot else set()

        content: list[str] = []
        structural = False
        for path, entry in batch.items():
            is_dir = entry.is_dir or path in known_dirs
            if not is_dir and not self._builder.is_supported(path):
                continue
            if not is_dir and entry.kinds == {EventKind.MODIFIED} and path in known_files:
                content.append(path)
            else:
                structural = True
        return content, structural

    async def _worker(self) -> None:
        while True:
            batch = await self._batches.get()
            try:
                await self._process(batch)
            except Exception as e:
                logger.error("Failed to process change batch: %s", e)
            if self._state == WatchState.SETTLED and self._batches.empty():
                self._state = WatchState.IDLE

    async def _process(self, batch: dict[str, _PendingPath]) -> None:
        self.stats["batches"] += 1
        content, structural = self.classify(batch)

        for path in content:
            self.stats["reparses"] += 1
            try:
                parsed = await asyncio.to_thread(self._builder.build_file, path)
            except NotFound:
                # Gone between the event and the read; the rebuild covers it
                structural = True
                continue
            except FmemoError as e:
                logger.warning("Re-parse of %s failed: %s", path, e)
                continue
            self._broadcaster.publish(FileUpdated(file_path=path, memos=parsed.memos))
            logger.debug("Published file update for %s", path)

        if structural:
            await self._rebuild()

    async def _rebuild(self) -> None:
        self.stats["rebuilds"] += 1
        try:
            tree = await asyncio.to_thread(self._builder.build)
        except NotFound as e:
            self._fail(e)
            return
        except FmemoError as e:
            logger.error("Directory rebuild failed, keeping stale tree: %s", e)
            return
        if tree == self._snapshot:
            return
        self._snapshot = tree
        if self._on_rebuild is not None:
            self._on_rebuild(tree)
        self._broadcaster.publish(DirectoryUpdated(tree=tree))
        logger.debug("Published directory update for %s", self._builder.root)
