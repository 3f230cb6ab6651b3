"""Markdown heading parser: text to a forest of MemoNode.

Recognised syntax:
- ``#`` headings (number of ``#`` = level, followed by whitespace + title)
- ``<desc>...</desc>`` and ``<path>...</path>`` tag lines (first one wins)
- fenced code blocks opened by three or more backticks or tildes

Anything else is section body text. Parsing is total: malformed input is
degraded (implicit fence close, duplicate tag dropped, level skip nested
under the nearest shallower heading) and reported as an issue, never raised.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from fmemo.memo.schema import CodeBlock, Forest, MemoNode

_HEADING_RE = re.compile(r"^(#+)(?:[ \t]+(.*?))?[ \t]*$")
_TAG_RE = re.compile(r"^<(desc|path)>(.*?)</\1>$")
_FENCE_OPEN_RE = re.compile(r"^(`{3,}|~{3,})(.*)$")
_TAG_FIELDS = {"desc": "description", "path": "path"}

PROLOGUE_LEVEL = 0


@dataclass
class ParseResult:
    """Parsed forest plus notes on every degradation rule that was applied."""

    memos: Forest
    issues: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.issues)


@dataclass
class _Section:
    level: int
    title: str
    description: str | None = None
    path: str | None = None
    lines: list[str] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    children: list[_Section] = field(default_factory=list)

    def body(self) -> str:
        lines = list(self.lines)
        while lines and not lines[0].strip():
            lines.pop(0)
        while lines and not lines[-1].strip():
            lines.pop()
        return "".join(lines).rstrip("\r\n")

    def has_payload(self) -> bool:
        return bool(
            self.body() or self.code_blocks or self.description is not None or self.path is not None
        )


@dataclass
class _Fence:
    char: str
    length: int
    language: str
    opened_at: int
    lines: list[str] = field(default_factory=list)

    def closes_on(self, stripped: str) -> bool:
        return (
            len(stripped) >= self.length
            and stripped[0] == self.char
            and stripped == self.char * len(stripped)
        )


class HeadingParser:
    """Single-pass line scanner. Each parse() call starts from a clean state."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._roots: list[_Section] = []
        self._stack: list[_Section] = []
        self._order: list[_Section] = []
        self._prologue = _Section(level=PROLOGUE_LEVEL, title="")
        self._fence: _Fence | None = None
        self._issues: list[str] = []

    @property
    def _current(self) -> _Section:
        return self._stack[-1] if self._stack else self._prologue

    def parse(self, text: str) -> ParseResult:
        self._reset()
        for lineno, line in enumerate(text.splitlines(keepends=True), start=1):
            self._feed(lineno, line)

        if self._fence is not None:
            self._issues.append(
                f"line {self._fence.opened_at}: code fence never closed, closed at end of input"
            )
            self._close_fence()

        if self._prologue.has_payload():
            self._issues.append("content before the first heading kept in a level-0 node")
            self._roots.insert(0, self._prologue)
            self._order.insert(0, self._prologue)

        return ParseResult(memos=self._freeze(), issues=self._issues)

    # ── Line dispatch ─────────────────────────────────────────

    def _feed(self, lineno: int, line: str) -> None:
        stripped = line.strip()

        if self._fence is not None:
            if self._fence.closes_on(stripped):
                self._close_fence()
            else:
                self._fence.lines.append(line)
            return

        fence = _FENCE_OPEN_RE.match(stripped)
        if fence:
            marker = fence.group(1)
            self._fence = _Fence(
                char=marker[0],
                length=len(marker),
                language=fence.group(2).strip(),
                opened_at=lineno,
            )
            return

        heading = _HEADING_RE.match(line.rstrip("\r\n"))
        if heading:
            self._open_section(lineno, len(heading.group(1)), (heading.group(2) or "").strip())
            return

        tag = _TAG_RE.match(stripped)
        if tag:
            self._apply_tag(lineno, tag.group(1), tag.group(2).strip())
            return

        self._current.lines.append(line)

    def _open_section(self, lineno: int, level: int, title: str) -> None:
        while self._stack and self._stack[-1].level >= level:
            self._stack.pop()

        section = _Section(level=level, title=title)
        if self._stack:
            parent = self._stack[-1]
            if level > parent.level + 1:
                self._issues.append(
                    f"line {lineno}: heading level jumps from {parent.level} to {level}"
                )
            parent.children.append(section)
        else:
            self._roots.append(section)

        self._stack.append(section)
        self._order.append(section)

    def _apply_tag(self, lineno: int, name: str, value: str) -> None:
        section = self._current
        attr = _TAG_FIELDS[name]
        if getattr(section, attr) is None:
            setattr(section, attr, value)
        else:
            self._issues.append(f"line {lineno}: duplicate <{name}> tag ignored")

    def _close_fence(self) -> None:
        fence = self._fence
        self._fence = None
        self._current.code_blocks.append(
            CodeBlock(language=fence.language, code="".join(fence.lines))
        )

    # ── Freezing ──────────────────────────────────────────────

    def _freeze(self) -> Forest:
        # Children always follow their parent in _order, so walking it
        # backwards freezes every child before the node that owns it.
        frozen: dict[int, MemoNode] = {}
        for section in reversed(self._order):
            frozen[id(section)] = MemoNode(
                level=section.level,
                title=section.title,
                description=section.description,
                path=section.path,
                content=section.body(),
                code_blocks=tuple(section.code_blocks),
                children=tuple(frozen[id(child)] for child in section.children),
            )
        return tuple(frozen[id(root)] for root in self._roots)


def parse_document(text: str) -> ParseResult:
    """Parse ``text`` and return the forest together with degradation notes."""
    return HeadingParser().parse(text)


def parse(text: str) -> Forest:
    """Parse ``text`` into a forest of MemoNode. Never raises."""
    return parse_document(text).memos
