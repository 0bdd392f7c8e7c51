"""Text-preserving fixes for validator warnings.

Every fix parses the *current* text, computes a list of edits against it and
applies them back-to-front, so offsets from earlier parses are never reused.
A fix whose target is gone produces no edits and leaves the text untouched.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from mdv_core.cdm import RESERVED_COLUMNS
from mdv_core.issues import ValidationWarning
from mdv_core.lexer import ATTRIBUTE_RE
from mdv_core.model import (
    FOREIGN_KEY,
    KEY_ORDER,
    PRIMARY_KEY,
    Attribute,
    Entity,
    ErdModel,
    Relationship,
    entity_occurrences,
)
from mdv_core.parser import parse_erd
from mdv_core import validator as rules

logger = logging.getLogger(__name__)

_SIMPLE_LABEL_RE = re.compile(r"^\w+$")
DEFAULT_INDENT = "    "


@dataclass(frozen=True)
class Edit:
    start: int
    end: int
    replacement: str


@dataclass(frozen=True)
class FixResult:
    text: str
    resolved_ids: Tuple[str, ...] = ()

    @property
    def resolved_id(self) -> Optional[str]:
        return self.resolved_ids[0] if self.resolved_ids else None


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """Apply non-overlapping edits, last offset first."""
    ordered = sorted(edits, key=lambda edit: (edit.start, edit.end), reverse=True)
    result = text
    boundary = len(text)
    for edit in ordered:
        if edit.start < 0 or edit.end < edit.start or edit.end > boundary:
            raise ValueError(f"Edit [{edit.start}, {edit.end}) overlaps another edit or is out of range")
        result = result[: edit.start] + edit.replacement + result[edit.end :]
        boundary = edit.start
    return result


# ── text helpers ───────────────────────────────────────────────────────────────


def _newline(text: str) -> str:
    return "\r\n" if "\r\n" in text else "\n"


def _line_bounds(text: str, pos: int) -> Tuple[int, int, int]:
    """Return (line start, content end, end including the newline) around ``pos``."""
    start = text.rfind("\n", 0, pos) + 1
    newline = text.find("\n", pos)
    if newline == -1:
        return start, len(text), len(text)
    content_end = newline - 1 if newline > start and text[newline - 1] == "\r" else newline
    return start, content_end, newline + 1


def _line_indent(text: str, pos: int) -> str:
    start, content_end, _ = _line_bounds(text, pos)
    line = text[start:content_end]
    return line[: len(line) - len(line.lstrip())]


def _format_keys(constraints: Sequence[str]) -> str:
    ordered = [key for key in KEY_ORDER if key in constraints]
    return " " + ", ".join(ordered) if ordered else ""


def _format_label(label: str) -> str:
    return label if _SIMPLE_LABEL_RE.match(label) else f'"{label}"'


def _attribute_match(text: str, attr: Attribute) -> "re.Match[str]":
    # Bounded by the attribute's own span: inline bodies may end in '}' right after it.
    match = ATTRIBUTE_RE.match(text, attr.span.start, attr.span.end)
    if match is None:
        raise ValueError(f"Attribute '{attr.name}' no longer matches at offset {attr.span.start}")
    return match


def _set_constraints(text: str, attr: Attribute, constraints: Sequence[str]) -> Edit:
    match = _attribute_match(text, attr)
    start, end = match.span("keys")
    return Edit(start, end, _format_keys(constraints))


def _rename(text: str, attr: Attribute, new_name: str) -> Edit:
    match = _attribute_match(text, attr)
    start, end = match.span("name")
    return Edit(start, end, new_name)


def _shares_line(entity: Entity, attr: Attribute) -> bool:
    return entity.inline or any(
        other.line == attr.line and other is not attr for other in entity.attributes
    )


def _delete_attribute(text: str, entity: Entity, attr: Attribute) -> Edit:
    if not _shares_line(entity, attr):
        start, _, end = _line_bounds(text, attr.span.start)
        return Edit(start, end, "")
    end = attr.span.end
    while end < len(text) and text[end] in " \t":
        end += 1
    return Edit(attr.span.start, end, "")


def _insert_attribute(text: str, model: ErdModel, entity: Entity, declaration: str) -> Edit:
    newline = _newline(text)
    if entity.inline:
        pos = entity.close_offset
        prefix = "" if text[pos - 1] in " \t" else " "
        return Edit(pos, pos, f"{prefix}{declaration} ")

    if entity.attributes:
        indent = _line_indent(text, entity.attributes[-1].span.start)
    else:
        indent = entity.indent + DEFAULT_INDENT

    if entity.close_offset is None:
        prefix = "" if not text or text.endswith("\n") else newline
        return Edit(len(text), len(text), f"{prefix}{indent}{declaration}{newline}")

    line_start, _, _ = _line_bounds(text, entity.close_offset)
    return Edit(line_start, line_start, f"{indent}{declaration}{newline}")


def _unique_column(entity: Entity, wanted: str) -> str:
    candidate, counter = wanted, 2
    while entity.attribute(candidate) is not None:
        candidate = f"{wanted}_{counter}"
        counter += 1
    return candidate


def _with(attr: Attribute, key: str) -> Tuple[str, ...]:
    return tuple(k for k in KEY_ORDER if k in attr.constraints or k == key)


def _without(attr: Attribute, key: str) -> Tuple[str, ...]:
    return tuple(k for k in attr.constraints if k != key)


def _target_entity(model: ErdModel, warning: ValidationWarning) -> Optional[Entity]:
    name = warning.fix_data.get("entity", warning.entity)
    if not name:
        return None
    matches = entity_occurrences(model, name)
    occurrence = int(warning.fix_data.get("occurrence", 0))
    if occurrence >= len(matches):
        return None
    return matches[occurrence]


def _target_column(entity: Entity, warning: ValidationWarning) -> Optional[Attribute]:
    column = warning.fix_data.get("column", warning.column)
    return entity.attribute(column) if column else None


# ── strategies ─────────────────────────────────────────────────────────────────

Strategy = Callable[[str, ErdModel, ValidationWarning], List[Edit]]


def _fix_missing_header(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    if model.has_header:
        return []
    return [Edit(0, 0, f"erDiagram{_newline(text)}")]


def _fix_missing_primary_key(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None or entity.primary_keys:
        return []
    if entity.is_junction:
        return [_set_constraints(text, attr, _with(attr, PRIMARY_KEY)) for attr in entity.foreign_keys]
    candidate = rules.primary_key_candidate(entity)
    if candidate:
        attr = entity.attribute(candidate)
        return [_set_constraints(text, attr, _with(attr, PRIMARY_KEY))]
    column = f"{entity.name.lower()}_id"
    return [_insert_attribute(text, model, entity, f'string {column} PK "Primary key"')]


def _fix_multiple_primary_keys(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None or entity.is_junction:
        return []
    pks = entity.primary_keys
    if len(pks) < 2:
        return []
    keep = entity.attribute(warning.fix_data.get("keep", "")) or pks[0]
    if not keep.is_primary_key:
        keep = pks[0]
    return [
        _set_constraints(text, attr, _without(attr, PRIMARY_KEY))
        for attr in pks
        if attr is not keep
    ]


def _fix_composite_key(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None or entity.is_junction:
        return []
    attr = _target_column(entity, warning)
    if attr is None or not (attr.is_primary_key and attr.is_foreign_key):
        return []
    return [_set_constraints(text, attr, _without(attr, FOREIGN_KEY))]


def _fix_duplicate_columns(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None:
        return []
    column = (warning.fix_data.get("column") or warning.column or "").lower()
    same = [attr for attr in entity.attributes if attr.name.lower() == column]
    return [_delete_attribute(text, entity, attr) for attr in same[1:]]


def _fix_naming_conflict(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None:
        return []
    attr = _target_column(entity, warning)
    if attr is None or attr.is_primary_key:
        return []
    if entity.primary_keys:
        return [_rename(text, attr, _unique_column(entity, f"{entity.name.lower()}_name"))]
    return [_set_constraints(text, attr, _with(attr, PRIMARY_KEY))]


def _fix_system_column(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None:
        return []
    attr = _target_column(entity, warning)
    if attr is None or attr.name.lower() not in RESERVED_COLUMNS:
        return []
    wanted = f"{entity.name.lower()}_{attr.name.lower()}"
    return [_rename(text, attr, _unique_column(entity, wanted))]


def _fix_missing_foreign_key(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    column = warning.fix_data.get("column", warning.column)
    if entity is None or not column:
        return []
    existing = entity.attribute(column)
    if existing is not None:
        if existing.is_foreign_key:
            return []
        return [_set_constraints(text, existing, _with(existing, FOREIGN_KEY))]
    references = warning.fix_data.get("references", "")
    declaration = f'string {column} FK "Foreign key to {references}"' if references else f"string {column} FK"
    return [_insert_attribute(text, model, entity, declaration)]


def _fix_foreign_key_naming(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    entity = _target_entity(model, warning)
    if entity is None:
        return []
    attr = _target_column(entity, warning)
    new_name = warning.fix_data.get("new_name")
    if attr is None or not new_name or entity.attribute(new_name) is not None:
        return []
    return [_rename(text, attr, new_name)]


def _matching_relationships(
    candidates: Sequence[Relationship], warning: ValidationWarning
) -> List[Relationship]:
    data = warning.fix_data
    label = (data.get("label") or "").lower()
    return [
        rel
        for rel in candidates
        if rel.from_entity == data.get("from")
        and rel.to_entity == data.get("to")
        and (rel.label or "").lower() == label
    ]


def _fix_duplicate_relationship(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    repeated = _matching_relationships(model.relationships, warning)[1:]
    edits = []
    for rel in repeated:
        start, _, end = _line_bounds(text, rel.span.start)
        edits.append(Edit(start, end, ""))
    return edits


def _junction_block(model: ErdModel, rel: Relationship, indent: str, newline: str) -> str:
    junction = rules.junction_name(model, rel)
    left = rel.from_entity.lower()
    right = rel.to_entity.lower()
    if left == right:
        right = f"related_{right}"
    label = rel.label or "has"
    second_label = label if rel.from_entity != rel.to_entity else f"related_{label}"
    inner = indent + DEFAULT_INDENT
    lines = [
        f"{indent}{junction} {{",
        f'{inner}string {left}_id PK, FK "Foreign key to {rel.from_entity}"',
        f'{inner}string {right}_id PK, FK "Foreign key to {rel.to_entity}"',
        f"{indent}}}",
        f"{indent}{rel.from_entity} ||--o{{ {junction} : {_format_label(label)}",
        f"{indent}{rel.to_entity} ||--o{{ {junction} : {_format_label(second_label)}",
    ]
    return newline.join(lines)


def _fix_many_to_many(text: str, model: ErdModel, warning: ValidationWarning) -> List[Edit]:
    matches = _matching_relationships(model.many_to_many, warning)
    if not matches:
        return []
    rel = matches[0]
    start, content_end, _ = _line_bounds(text, rel.span.start)
    indent = _line_indent(text, rel.span.start)
    return [Edit(start, content_end, _junction_block(model, rel, indent, _newline(text)))]


STRATEGIES: Dict[str, Strategy] = {
    rules.MISSING_DIAGRAM_HEADER: _fix_missing_header,
    rules.MISSING_PRIMARY_KEY: _fix_missing_primary_key,
    rules.MULTIPLE_PRIMARY_KEYS: _fix_multiple_primary_keys,
    rules.COMPOSITE_KEY: _fix_composite_key,
    rules.DUPLICATE_COLUMNS: _fix_duplicate_columns,
    rules.NAMING_CONFLICT: _fix_naming_conflict,
    rules.SYSTEM_COLUMN_CONFLICT: _fix_system_column,
    rules.MISSING_FOREIGN_KEY: _fix_missing_foreign_key,
    rules.FOREIGN_KEY_NAMING: _fix_foreign_key_naming,
    rules.DUPLICATE_RELATIONSHIP: _fix_duplicate_relationship,
    rules.MANY_TO_MANY_AUTO_CORRECTED: _fix_many_to_many,
    rules.MANY_TO_MANY_RELATIONSHIP: _fix_many_to_many,
}


def edits_for(text: str, warning: ValidationWarning) -> List[Edit]:
    """Edits that fix ``warning`` against ``text`` as it is now."""
    if not warning.auto_fixable:
        return []
    strategy = STRATEGIES.get(warning.type)
    if strategy is None:
        return []
    return strategy(text, parse_erd(text), warning)


def _apply(text: str, warning: ValidationWarning) -> Tuple[str, bool]:
    edits = edits_for(text, warning)
    if not edits:
        logger.debug("Nothing to fix for %s", warning.id)
        return text, False
    logger.debug("Fixing %s with %d edit(s)", warning.id, len(edits))
    return apply_edits(text, edits), True


def fix_one(text: str, warning_id: str, warnings: Iterable[ValidationWarning]) -> FixResult:
    """Apply the fix for a single warning id; unknown or stale ids leave ``text`` unchanged."""
    for warning in warnings:
        if warning.id != warning_id:
            continue
        fixed, changed = _apply(text, warning)
        return FixResult(fixed, (warning.id,) if changed else ())
    return FixResult(text)


def fix_all(text: str, warnings: Iterable[ValidationWarning]) -> FixResult:
    """Apply every auto-fixable warning in order, re-parsing between fixes."""
    resolved: List[str] = []
    for warning in warnings:
        if not warning.auto_fixable or warning.id in resolved:
            continue
        text, changed = _apply(text, warning)
        if changed:
            resolved.append(warning.id)
    return FixResult(text, tuple(resolved))
