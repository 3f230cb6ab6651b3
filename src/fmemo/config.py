"""Configuration loading from environment variables and fmemo.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "fmemo.toml"
_DEFAULT_EXTENSIONS = (".fmemo", ".md")


@dataclass
class ServerConfig:
    """HTTP / WebSocket listener."""

    host: str = "127.0.0.1"
    port: int = 3030


@dataclass
class WatchConfig:
    """Change watcher timing."""

    enabled: bool = True
    debounce_ms: int = 300
    poll_interval: float = 0.5

    @property
    def debounce(self) -> float:
        return self.debounce_ms / 1000


@dataclass
class TreeConfig:
    """Which directory entries count as memo files."""

    extensions: tuple[str, ...] = _DEFAULT_EXTENSIONS
    include_hidden: bool = False
    prune_empty: bool = True


@dataclass
class BroadcastConfig:
    """Push channel limits."""

    queue_size: int = 64


@dataclass
class FmemoConfig:
    """Top-level fmemo configuration."""

    root_dir: Path = field(default_factory=Path.cwd)
    server: ServerConfig = field(default_factory=ServerConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    log_level: str = "INFO"


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_extensions(value: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    items = value.split(",") if isinstance(value, str) else value
    exts = []
    for item in items:
        item = item.strip().lower()
        if not item:
            continue
        exts.append(item if item.startswith(".") else f".{item}")
    return tuple(exts)


def load_config(config_path: Path | None = None) -> FmemoConfig:
    """Load configuration from environment variables and optional fmemo.toml.

    Priority: environment variables > fmemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.fmemo/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".fmemo" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    server_data = file_data.get("server", {})
    watch_data = file_data.get("watch", {})
    tree_data = file_data.get("tree", {})
    broadcast_data = file_data.get("broadcast", {})

    config = FmemoConfig(
        root_dir=Path(os.getenv("FMEMO_ROOT", file_data.get("root_dir", "."))).expanduser(),
        server=ServerConfig(
            host=os.getenv("FMEMO_HOST", server_data.get("host", "127.0.0.1")),
            port=int(os.getenv("FMEMO_PORT", server_data.get("port", 3030))),
        ),
        watch=WatchConfig(
            enabled=_parse_bool(os.getenv("FMEMO_WATCH", watch_data.get("enabled", True))),
            debounce_ms=int(os.getenv("FMEMO_DEBOUNCE_MS", watch_data.get("debounce_ms", 300))),
            poll_interval=float(
                os.getenv("FMEMO_POLL_INTERVAL", watch_data.get("poll_interval", 0.5))
            ),
        ),
        tree=TreeConfig(
            extensions=_parse_extensions(
                os.getenv("FMEMO_EXTENSIONS", tree_data.get("extensions", _DEFAULT_EXTENSIONS))
            ),
            include_hidden=_parse_bool(tree_data.get("include_hidden", False)),
            prune_empty=_parse_bool(tree_data.get("prune_empty", True)),
        ),
        broadcast=BroadcastConfig(
            queue_size=int(os.getenv("FMEMO_QUEUE_SIZE", broadcast_data.get("queue_size", 64))),
        ),
        log_level=os.getenv("FMEMO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
