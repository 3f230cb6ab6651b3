"""Entry point: python -m fmemo [serve|tree|parse]

- No args / "serve [ROOT]": HTTP + WebSocket server with live updates
- "tree [ROOT]":             Print the directory tree as JSON
- "parse FILE":              Print a file's memo forest as JSON
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from fmemo.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve(root: str | None) -> None:
    """Daemon mode: API, push channel and watcher."""
    config = load_config()
    if root:
        config.root_dir = Path(root)
    _setup_logging(config.log_level)

    from fmemo.daemon import FmemoDaemon

    daemon = FmemoDaemon(config)
    try:
        asyncio.run(daemon.run())
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _run_tree(root: str | None) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from fmemo.memo.tree import TreeBuilder

    builder = TreeBuilder(Path(root) if root else config.root_dir, config.tree)
    print(json.dumps(builder.build().to_dict(), ensure_ascii=False, indent=2))


def _run_parse(path: str) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from fmemo.memo.parser import parse_document
    from fmemo.memo.schema import forest_to_list

    text = Path(path).read_text(encoding="utf-8")
    result = parse_document(text)
    for issue in result.issues:
        logging.getLogger("fmemo").warning("%s: %s", path, issue)
    print(json.dumps(forest_to_list(result.memos), ensure_ascii=False, indent=2))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"
    arg = sys.argv[2] if len(sys.argv) > 2 else None

    if cmd == "serve":
        _run_serve(arg)
    elif cmd == "tree":
        _run_tree(arg)
    elif cmd == "parse" and arg:
        _run_parse(arg)
    else:
        print("Usage: python -m fmemo [serve|tree|parse] [ROOT|FILE]")
        print("  serve [ROOT]  — Serve memos with live updates (default)")
        print("  tree [ROOT]   — Print the directory tree as JSON")
        print("  parse FILE    — Print a file's memo forest as JSON")
        sys.exit(1)


if __name__ == "__main__":
    main()
