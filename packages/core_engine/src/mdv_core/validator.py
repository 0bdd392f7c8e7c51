import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from mdv_core.cdm import CDM_ENTITIES, RESERVED_COLUMNS, STATUS_COLUMNS, match_cdm_entity
from mdv_core.issues import ERROR, INFO, WARNING, ValidationWarning, summarize, warning_id
from mdv_core.model import (
    Entity,
    ErdModel,
    Relationship,
    expected_foreign_key,
    plausible_foreign_keys,
)
from mdv_core.parser import parse_erd

logger = logging.getLogger(__name__)

MISSING_DIAGRAM_HEADER = "missing_diagram_header"
UNPARSEABLE_LINE = "unparseable_line"
CDM_ENTITY_DETECTED = "cdm_entity_detected"
DUPLICATE_ENTITY = "duplicate_entity"
MISSING_PRIMARY_KEY = "missing_primary_key"
MULTIPLE_PRIMARY_KEYS = "multiple_primary_keys"
COMPOSITE_KEY = "composite_key"
DUPLICATE_COLUMNS = "duplicate_columns"
NAMING_CONFLICT = "naming_conflict"
SYSTEM_COLUMN_CONFLICT = "system_column_conflict"
CHOICE_ISSUE = "choice_issue"
MISSING_ENTITY = "missing_entity"
DUPLICATE_RELATIONSHIP = "duplicate_relationship"
MISSING_FOREIGN_KEY = "missing_foreign_key"
FOREIGN_KEY_NAMING = "foreign_key_naming"
MANY_TO_MANY_AUTO_CORRECTED = "many_to_many_auto_corrected"
MANY_TO_MANY_RELATIONSHIP = "many_to_many_relationship"
STATUS_COLUMN_IGNORED = "status_column_ignored"
CIRCULAR_DEPENDENCY = "circular_dependency"

PRIMARY_KEY_CANDIDATES = ("id", "{entity}_id", "name")


def _make(
    kind: str,
    severity: str,
    message: str,
    *,
    entity: Optional[str] = None,
    column: Optional[str] = None,
    relationship: Optional[str] = None,
    variant: Optional[str] = None,
    suggestion: Optional[str] = None,
    fixable: bool = False,
    auto_fixed: bool = False,
    line: int = 0,
    fix_data: Optional[Dict[str, Any]] = None,
) -> ValidationWarning:
    return ValidationWarning(
        id=warning_id(kind, entity, column, relationship, variant),
        type=kind,
        severity=severity,
        message=message,
        entity=entity,
        column=column,
        relationship=relationship,
        suggestion=suggestion,
        auto_fixable=fixable,
        auto_fixed=auto_fixed,
        line=line,
        fix_data=fix_data or {},
    )


def junction_name(model: ErdModel, relationship: Relationship) -> str:
    """Name for the table that replaces a many-to-many line."""
    name = f"{relationship.from_entity}{relationship.to_entity}"
    taken = {entity.lower() for entity in model.entity_names()}
    if name.lower() in taken:
        name = f"{name}Link"
    candidate, counter = name, 2
    while candidate.lower() in taken:
        candidate = f"{name}{counter}"
        counter += 1
    return candidate


def primary_key_candidate(entity: Entity) -> Optional[str]:
    for pattern in PRIMARY_KEY_CANDIDATES:
        attr = entity.attribute(pattern.format(entity=entity.name.lower()))
        if attr is not None:
            return attr.name
    return None


def _document_rules(model: ErdModel) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    if not model.has_header:
        warnings.append(
            _make(
                MISSING_DIAGRAM_HEADER,
                WARNING,
                "Diagram does not start with 'erDiagram'.",
                suggestion="Add 'erDiagram' as the first line.",
                fixable=True,
            )
        )
    for unparsed in model.unparsed:
        if unparsed.entity is not None:
            continue
        warnings.append(
            _make(
                UNPARSEABLE_LINE,
                WARNING,
                f"Line {unparsed.line} is not a recognised entity or relationship and was ignored: "
                f"'{unparsed.raw.strip()}'",
                variant=unparsed.raw.strip(),
                suggestion="Check the relationship syntax, e.g. 'Customer ||--o{ Order : places'.",
                line=unparsed.line,
            )
        )
    return warnings


def _entity_rules(model: ErdModel, entity: Entity, occurrence: int) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    name = entity.name
    target = {"entity": name, "occurrence": occurrence}
    variant = str(occurrence) if occurrence else None

    cdm_match = match_cdm_entity(name)
    if cdm_match:
        if entity.is_cdm:
            message = f"Entity '{name}' uses the existing CDM table '{CDM_ENTITIES[cdm_match]}'."
        else:
            message = f"Entity '{name}' matches CDM entity '{cdm_match}'."
        warnings.append(
            _make(
                CDM_ENTITY_DETECTED,
                INFO,
                message,
                entity=name,
                variant=variant,
                suggestion=f"Consider using the existing CDM {cdm_match} entity instead of creating a custom one.",
                line=entity.start_line,
            )
        )
    if entity.is_cdm:
        return warnings

    if occurrence:
        warnings.append(
            _make(
                DUPLICATE_ENTITY,
                ERROR,
                f"Entity '{name}' is declared more than once (line {entity.start_line}).",
                entity=name,
                variant=variant,
                suggestion="Merge the attributes into a single entity block.",
                line=entity.start_line,
            )
        )

    for unparsed in model.unparsed:
        if unparsed.entity != name or not entity.start_line <= unparsed.line <= entity.end_line:
            continue
        warnings.append(
            _make(
                UNPARSEABLE_LINE,
                WARNING,
                f"Line {unparsed.line} in entity '{name}' could not be parsed and was ignored: "
                f"'{unparsed.raw.strip()}'",
                entity=name,
                variant=unparsed.raw.strip(),
                suggestion="Use the form: type name [PK|FK|UK] [\"description\"].",
                line=unparsed.line,
            )
        )

    pks = entity.primary_keys
    junction = entity.is_junction
    if not pks:
        candidate = primary_key_candidate(entity)
        if junction:
            suggestion = "Mark the foreign keys of this junction table as a composite primary key."
        elif candidate:
            suggestion = f"Mark '{candidate}' as the primary key (PK)."
        else:
            suggestion = f"Add 'string {name.lower()}_id PK' to the entity."
        warnings.append(
            _make(
                MISSING_PRIMARY_KEY,
                ERROR,
                f"Entity '{name}' has no primary key.",
                entity=name,
                variant=variant,
                suggestion=suggestion,
                fixable=True,
                line=entity.start_line,
                fix_data=dict(target),
            )
        )
    elif len(pks) > 1 and not junction:
        keep = pks[0].name
        warnings.append(
            _make(
                MULTIPLE_PRIMARY_KEYS,
                ERROR,
                f"Entity '{name}' has {len(pks)} primary keys: {', '.join(attr.name for attr in pks)}.",
                entity=name,
                variant=variant,
                suggestion=f"Keep '{keep}' as the only primary key.",
                fixable=True,
                line=entity.start_line,
                fix_data=dict(target, keep=keep),
            )
        )

    if not junction:
        for attr in entity.attributes:
            if attr.is_primary_key and attr.is_foreign_key:
                warnings.append(
                    _make(
                        COMPOSITE_KEY,
                        WARNING,
                        f"Column '{attr.name}' in '{name}' is both PK and FK; "
                        "composite keys are only kept on junction tables.",
                        entity=name,
                        column=attr.name,
                        variant=variant,
                        suggestion=f"Keep '{attr.name}' as PK and drop the FK marker.",
                        fixable=True,
                        line=attr.line,
                        fix_data=dict(target, column=attr.name),
                    )
                )

    counts = Counter(attr.name.lower() for attr in entity.attributes)
    reported: Set[str] = set()
    for attr in entity.attributes:
        lowered = attr.name.lower()
        if counts[lowered] < 2 or lowered in reported:
            continue
        reported.add(lowered)
        warnings.append(
            _make(
                DUPLICATE_COLUMNS,
                ERROR,
                f"Column '{attr.name}' appears {counts[lowered]} times in '{name}'.",
                entity=name,
                column=attr.name,
                variant=variant,
                suggestion=f"Remove the repeated '{attr.name}' columns.",
                fixable=True,
                line=attr.line,
                fix_data=dict(target, column=attr.name),
            )
        )

    for attr in entity.attributes:
        if attr.name.lower() != "name" or attr.is_primary_key:
            continue
        if not pks:
            warnings.append(
                _make(
                    NAMING_CONFLICT,
                    INFO,
                    f"Column '{attr.name}' in '{name}' collides with the Dataverse primary name column.",
                    entity=name,
                    column=attr.name,
                    variant="promote" if not occurrence else f"promote-{occurrence}",
                    suggestion=f"Mark '{attr.name}' as the primary key (PK).",
                    fixable=True,
                    line=attr.line,
                    fix_data=dict(target, column=attr.name, action="promote"),
                )
            )
        else:
            new_name = f"{name.lower()}_name"
            warnings.append(
                _make(
                    NAMING_CONFLICT,
                    WARNING,
                    f"Column '{attr.name}' in '{name}' collides with the Dataverse primary name column.",
                    entity=name,
                    column=attr.name,
                    variant="rename" if not occurrence else f"rename-{occurrence}",
                    suggestion=f"Rename '{attr.name}' to '{new_name}'.",
                    fixable=True,
                    line=attr.line,
                    fix_data=dict(target, column=attr.name, action="rename", new_name=new_name),
                )
            )

    for attr in entity.attributes:
        if attr.name.lower() not in RESERVED_COLUMNS:
            continue
        new_name = f"{name.lower()}_{attr.name.lower()}"
        warnings.append(
            _make(
                SYSTEM_COLUMN_CONFLICT,
                ERROR,
                f"Column '{attr.name}' in '{name}' conflicts with a system column Dataverse already provides.",
                entity=name,
                column=attr.name,
                variant=variant,
                suggestion=f"Rename '{attr.name}' to '{new_name}'.",
                fixable=True,
                line=attr.line,
                fix_data=dict(target, column=attr.name, new_name=new_name),
            )
        )

    for attr in entity.attributes:
        if attr.name.lower() not in STATUS_COLUMNS or attr.is_primary_key or attr.is_foreign_key:
            continue
        warnings.append(
            _make(
                STATUS_COLUMN_IGNORED,
                INFO,
                f"Column '{attr.name}' in '{name}' will be ignored; Dataverse tracks status "
                "with the built-in statecode/statuscode columns.",
                entity=name,
                column=attr.name,
                variant=variant,
                suggestion="Use the table's built-in Status Reason column, or rename the column "
                "(e.g. 'status_reason') to keep it as a custom column.",
                line=attr.line,
            )
        )

    for attr in entity.attributes:
        if not attr.is_choice or attr.name.lower() in STATUS_COLUMNS:
            continue
        if attr.options:
            detail = f"inline options ({', '.join(attr.options)}) cannot be created from the diagram"
        else:
            detail = f"type '{attr.raw_type}' has no option values in the diagram"
        warnings.append(
            _make(
                CHOICE_ISSUE,
                WARNING,
                f"Choice column '{attr.name}' in '{name}': {detail}.",
                entity=name,
                column=attr.name,
                variant=variant,
                suggestion=f"Provide a global choice set named '{attr.name}' in the choices file.",
                line=attr.line,
            )
        )

    return warnings


def _missing_entity_rules(model: ErdModel, rel: Relationship) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    names = set(model.entity_names())
    for side in dict.fromkeys((rel.from_entity, rel.to_entity)):
        if side in names:
            continue
        warnings.append(
            _make(
                MISSING_ENTITY,
                ERROR,
                f"Relationship references non-existent entity '{side}'.",
                relationship=rel.display,
                variant=side,
                suggestion="Declare every entity used in a relationship.",
                line=rel.line,
            )
        )
    return warnings


def _relationship_key(rel: Relationship) -> tuple:
    return rel.from_entity, rel.to_entity, (rel.label or "").lower()


def _relationship_rules(
    model: ErdModel, rel: Relationship, seen: Counter
) -> List[ValidationWarning]:
    warnings = _missing_entity_rules(model, rel)
    key = _relationship_key(rel)
    occurrence = seen[key]
    seen[key] += 1
    if occurrence:
        warnings.append(
            _make(
                DUPLICATE_RELATIONSHIP,
                WARNING,
                f"Relationship {rel.display} is declared more than once (line {rel.line}).",
                relationship=rel.display,
                variant=f"{rel.label or ''}#{occurrence}",
                suggestion="Remove the repeated relationship line.",
                fixable=True,
                line=rel.line,
                fix_data={"from": rel.from_entity, "to": rel.to_entity, "label": rel.label, "occurrence": occurrence},
            )
        )
        return warnings

    source = model.entity(rel.from_entity)
    target = model.entity(rel.to_entity)
    if source is None or target is None or target.is_cdm:
        return warnings

    expected = expected_foreign_key(rel)
    exact = target.attribute(expected)
    if exact is not None and exact.is_foreign_key:
        return warnings

    plausible = plausible_foreign_keys(target, rel)
    if plausible:
        current = plausible[0].name
        warnings.append(
            _make(
                FOREIGN_KEY_NAMING,
                INFO,
                f"Relationship {rel.display} has foreign key '{current}' in '{target.name}', "
                f"expected '{expected}'.",
                entity=target.name,
                column=current,
                relationship=rel.display,
                suggestion=f"Rename '{current}' to '{expected}'.",
                fixable=exact is None,
                line=plausible[0].line,
                fix_data={"entity": target.name, "occurrence": 0, "column": current, "new_name": expected},
            )
        )
        return warnings

    if exact is not None:
        suggestion = f"Mark '{expected}' in '{target.name}' as a foreign key (FK)."
    else:
        suggestion = f"Add 'string {expected} FK' to '{target.name}'."
    warnings.append(
        _make(
            MISSING_FOREIGN_KEY,
            WARNING,
            f"Relationship {rel.display} has no foreign key in '{target.name}'.",
            entity=target.name,
            column=expected,
            relationship=rel.display,
            suggestion=suggestion,
            fixable=True,
            line=rel.line,
            fix_data={
                "entity": target.name,
                "occurrence": 0,
                "column": expected,
                "references": rel.from_entity,
            },
        )
    )
    return warnings


def _find_cycles(model: ErdModel) -> List[Tuple[str, ...]]:
    """Cycles in the one-to-many graph, each rotated to start at its smallest name.

    Self references are hierarchies, not cycles.
    """
    graph: Dict[str, List[str]] = {}
    for rel in model.relationships:
        if rel.from_entity == rel.to_entity:
            continue
        targets = graph.setdefault(rel.from_entity, [])
        if rel.to_entity not in targets:
            targets.append(rel.to_entity)

    cycles: List[Tuple[str, ...]] = []
    visited: Set[str] = set()

    def visit(node: str, path: List[str]) -> None:
        if node in path:
            nodes = path[path.index(node):]
            start = nodes.index(min(nodes))
            cycle = tuple(nodes[start:] + nodes[:start])
            if cycle not in cycles:
                cycles.append(cycle)
            return
        if node in visited:
            return
        visited.add(node)
        for neighbor in graph.get(node, ()):
            visit(neighbor, path + [node])

    for node in list(graph):
        visit(node, [])
    return cycles


def _cycle_rules(model: ErdModel) -> List[ValidationWarning]:
    warnings: List[ValidationWarning] = []
    for cycle in _find_cycles(model):
        route = " → ".join(cycle + (cycle[0],))
        first = next(
            (rel for rel in model.relationships if rel.from_entity == cycle[0] and rel.to_entity == cycle[1]),
            None,
        )
        warnings.append(
            _make(
                CIRCULAR_DEPENDENCY,
                WARNING,
                f"Circular dependency detected: {route}.",
                relationship=route,
                variant="|".join(cycle),
                suggestion="Break the cycle by removing one relationship or routing it through a junction table.",
                line=first.line if first else 0,
                fix_data={"cycle": list(cycle)},
            )
        )
    return warnings


def _many_to_many_rules(
    model: ErdModel, rel: Relationship, auto_correct: bool
) -> List[ValidationWarning]:
    warnings = _missing_entity_rules(model, rel)
    junction = junction_name(model, rel)
    fix_data = {"from": rel.from_entity, "to": rel.to_entity, "label": rel.label, "junction": junction}
    if auto_correct:
        warnings.append(
            _make(
                MANY_TO_MANY_AUTO_CORRECTED,
                INFO,
                f"Many-to-many relationship {rel.display} was replaced by junction table '{junction}'.",
                relationship=rel.display,
                variant=rel.label,
                suggestion=f"Review the generated '{junction}' table and its two one-to-many relationships.",
                fixable=True,
                auto_fixed=True,
                line=rel.line,
                fix_data=fix_data,
            )
        )
    else:
        warnings.append(
            _make(
                MANY_TO_MANY_RELATIONSHIP,
                ERROR,
                f"Many-to-many relationship {rel.display} is not supported directly.",
                relationship=rel.display,
                variant=rel.label,
                suggestion=f"Create junction table '{junction}' with two one-to-many relationships.",
                fixable=True,
                line=rel.line,
                fix_data=fix_data,
            )
        )
    return warnings


def validate(model: ErdModel, *, auto_correct_many_to_many: bool = True) -> List[ValidationWarning]:
    """Run every rule against ``model`` in a fixed order."""
    warnings = _document_rules(model)

    occurrences: Counter = Counter()
    for entity in model.entities:
        warnings.extend(_entity_rules(model, entity, occurrences[entity.name]))
        occurrences[entity.name] += 1

    seen: Counter = Counter()
    for rel in model.relationships:
        warnings.extend(_relationship_rules(model, rel, seen))
    warnings.extend(_cycle_rules(model))

    for rel in model.many_to_many:
        warnings.extend(_many_to_many_rules(model, rel, auto_correct_many_to_many))

    unique: List[ValidationWarning] = []
    emitted: Set[str] = set()
    for warning in warnings:
        if warning.id in emitted:
            continue
        emitted.add(warning.id)
        unique.append(warning)
    logger.debug("Validation produced %d warnings", len(unique))
    return unique


@dataclass(frozen=True)
class ValidationReport:
    model: ErdModel
    warnings: List[ValidationWarning]
    summary: Dict[str, Any]
    corrected_text: str

    @property
    def is_valid(self) -> bool:
        return bool(self.summary["is_valid"])


def validate_text(
    text: str,
    cdm_entities: Iterable[str] = (),
    *,
    auto_correct_many_to_many: bool = True,
) -> ValidationReport:
    """Parse and validate ``text``; ``corrected_text`` already carries the auto-applied fixes."""
    from mdv_core.corrector import fix_all

    model = parse_erd(text, cdm_entities)
    warnings = validate(model, auto_correct_many_to_many=auto_correct_many_to_many)
    auto_applied = [warning for warning in warnings if warning.auto_fixed]
    corrected = fix_all(text, auto_applied).text if auto_applied else text
    return ValidationReport(
        model=model,
        warnings=warnings,
        summary=summarize(warnings),
        corrected_text=corrected,
    )
