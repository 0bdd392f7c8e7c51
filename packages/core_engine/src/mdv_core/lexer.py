"""Line classifier for the Mermaid ``erDiagram`` subset.

Each line is classified by an ordered list of rules; the first match wins.
Relationship detection runs before attribute detection whenever the scan is
outside an entity body, which is what separates ``A ||--o{ B`` from a
malformed attribute.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, NamedTuple, Optional, Tuple

IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"

DIAGRAM_START_RE = re.compile(r"^erDiagram$")
ENTITY_OPEN_RE = re.compile(rf"^({IDENTIFIER})\s*\{{$")
ENTITY_INLINE_RE = re.compile(rf"^({IDENTIFIER})\s*\{{(.*)\}}$")
ENTITY_CLOSE_RE = re.compile(r"^\}$")
COMMENT_PREFIX = "%%"

LEFT_CARDINALITY = r"\|\||\|o|o\||\}o|\}\|"
RIGHT_CARDINALITY = r"\|\||o\||\|o|o\{|\|\{"
CARDINALITY_RE = re.compile(rf"(?:{LEFT_CARDINALITY})(?:--|\.\.)(?:{RIGHT_CARDINALITY})")
RELATIONSHIP_RE = re.compile(
    rf"^({IDENTIFIER})\s*((?:{LEFT_CARDINALITY})(?:--|\.\.)(?:{RIGHT_CARDINALITY}))\s*({IDENTIFIER})"
    r"(?:\s*:\s*(.*?))?\s*$"
)

_KEY = r"(?:PK|FK|UK)\b"
# One attribute: type (optionally parameterised), name, keys, quoted comment.
ATTRIBUTE_RE = re.compile(
    rf"(?P<type>{IDENTIFIER}(?:\([^()]*\))?(?:\[\])?)"
    rf"\s+(?P<name>{IDENTIFIER})"
    rf"(?P<keys>(?:\s+{_KEY}(?:(?:\s*,\s*|\s+){_KEY})*)?)"
    r"(?:\s+\"(?P<comment>[^\"]*)\")?"
    r"(?=\s|$)"
)
_SPACE_RE = re.compile(r"\s*")


class LineKind(str, Enum):
    DIAGRAM_START = "diagram_start"
    ENTITY_OPEN = "entity_open"
    ENTITY_INLINE = "entity_inline"
    ENTITY_CLOSE = "entity_close"
    ATTRIBUTE = "attribute"
    RELATIONSHIP = "relationship"
    COMMENT = "comment"
    BLANK = "blank"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedLine:
    number: int
    kind: LineKind
    raw: str
    offset: int
    entity: Optional[str] = None
    parseable: bool = True

    @property
    def text(self) -> str:
        return self.raw.strip()

    @property
    def indent(self) -> str:
        return self.raw[: len(self.raw) - len(self.raw.lstrip())]

    @property
    def content_start(self) -> int:
        """Absolute offset of the first non-blank character."""
        return self.offset + len(self.indent)


class ScanState(NamedTuple):
    stack: Tuple[str, ...] = ()
    index: int = 0

    @property
    def current_entity(self) -> Optional[str]:
        return self.stack[-1] if self.stack else None


def split_lines(text: str) -> Iterator[Tuple[int, str]]:
    """Yield ``(offset, raw_line)`` pairs; carriage returns are not part of the line."""
    offset = 0
    for chunk in text.split("\n"):
        yield offset, chunk[:-1] if chunk.endswith("\r") else chunk
        offset += len(chunk) + 1


def match_attribute_run(text: str) -> Optional[List["re.Match[str]"]]:
    """Match one or more attributes covering all of ``text``, or return None."""
    matches: List[re.Match[str]] = []
    pos = _SPACE_RE.match(text).end()
    while pos < len(text):
        match = ATTRIBUTE_RE.match(text, pos)
        if not match:
            return None
        matches.append(match)
        pos = _SPACE_RE.match(text, match.end()).end()
    return matches or None


def _classify_line(stripped: str, state: ScanState) -> Tuple[LineKind, Optional[str], bool]:
    if DIAGRAM_START_RE.match(stripped):
        return LineKind.DIAGRAM_START, None, True

    inline = ENTITY_INLINE_RE.match(stripped)
    if inline:
        body = inline.group(2)
        parseable = not body.strip() or match_attribute_run(body) is not None
        return LineKind.ENTITY_INLINE, inline.group(1), parseable

    opened = ENTITY_OPEN_RE.match(stripped)
    if opened:
        return LineKind.ENTITY_OPEN, opened.group(1), True

    if ENTITY_CLOSE_RE.match(stripped):
        if state.stack:
            return LineKind.ENTITY_CLOSE, state.current_entity, True
        return LineKind.UNKNOWN, None, False

    if not stripped:
        return LineKind.BLANK, state.current_entity, True
    if stripped.startswith(COMMENT_PREFIX):
        return LineKind.COMMENT, state.current_entity, True

    if not state.stack:
        if CARDINALITY_RE.search(stripped):
            return LineKind.RELATIONSHIP, None, RELATIONSHIP_RE.match(stripped) is not None
        return LineKind.UNKNOWN, None, False

    parseable = match_attribute_run(stripped) is not None
    return LineKind.ATTRIBUTE, state.current_entity, parseable


def _advance(state: ScanState, kind: LineKind, entity: Optional[str]) -> ScanState:
    if kind is LineKind.ENTITY_OPEN and entity:
        return ScanState(stack=state.stack + (entity,), index=state.index + 1)
    if kind is LineKind.ENTITY_CLOSE:
        return ScanState(stack=state.stack[:-1], index=state.index + 1)
    return ScanState(stack=state.stack, index=state.index + 1)


def classify(text: str) -> Tuple[ClassifiedLine, ...]:
    """Classify every line of ``text``. Never raises on malformed input."""
    classified: List[ClassifiedLine] = []
    state = ScanState()
    for offset, raw in split_lines(text):
        kind, entity, parseable = _classify_line(raw.strip(), state)
        classified.append(
            ClassifiedLine(
                number=state.index + 1,
                kind=kind,
                raw=raw,
                offset=offset,
                entity=entity,
                parseable=parseable,
            )
        )
        state = _advance(state, kind, entity)
    return tuple(classified)
