"""Parsed ERD model: entities, attributes and relationships.

Every value here is immutable and rebuilt on each parse; nothing carries
identity between calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

PRIMARY_KEY = "PK"
FOREIGN_KEY = "FK"
UNIQUE_KEY = "UK"
KEY_ORDER = (PRIMARY_KEY, FOREIGN_KEY, UNIQUE_KEY)


class Cardinality(str, Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class Span:
    """Half-open character range ``[start, end)`` in the source text."""

    start: int
    end: int


@dataclass(frozen=True)
class Attribute:
    name: str
    type: str
    raw_type: str
    constraints: Tuple[str, ...] = ()
    description: Optional[str] = None
    options: Tuple[str, ...] = ()
    target: Optional[str] = None
    line: int = 0
    span: Optional[Span] = None

    @property
    def is_primary_key(self) -> bool:
        return PRIMARY_KEY in self.constraints

    @property
    def is_foreign_key(self) -> bool:
        return FOREIGN_KEY in self.constraints

    @property
    def is_unique(self) -> bool:
        return UNIQUE_KEY in self.constraints

    @property
    def is_choice(self) -> bool:
        return self.type == "choice"

    @property
    def is_lookup(self) -> bool:
        return self.type == "lookup"


@dataclass(frozen=True)
class Entity:
    name: str
    attributes: Tuple[Attribute, ...] = ()
    is_cdm: bool = False
    start_line: int = 0
    end_line: int = 0
    # Absolute offsets of the opening and closing braces. ``close_offset`` is
    # None when the block is never closed.
    open_offset: int = 0
    close_offset: Optional[int] = None
    inline: bool = False
    indent: str = ""

    def attribute(self, name: str) -> Optional[Attribute]:
        lowered = name.lower()
        for attr in self.attributes:
            if attr.name.lower() == lowered:
                return attr
        return None

    @property
    def primary_keys(self) -> List[Attribute]:
        return [attr for attr in self.attributes if attr.is_primary_key]

    @property
    def foreign_keys(self) -> List[Attribute]:
        return [attr for attr in self.attributes if attr.is_foreign_key]

    @property
    def is_junction(self) -> bool:
        pks = self.primary_keys
        fks = self.foreign_keys
        if len(fks) >= 2 and not pks:
            return True
        return len(pks) >= 2 and all(attr.is_foreign_key for attr in pks)


@dataclass(frozen=True)
class Relationship:
    from_entity: str
    to_entity: str
    cardinality: Cardinality
    label: Optional[str] = None
    symbols: str = ""
    line: int = 0
    span: Optional[Span] = None

    @property
    def display(self) -> str:
        return f"{self.from_entity} → {self.to_entity}"


@dataclass(frozen=True)
class UnparsedLine:
    line: int
    raw: str
    entity: Optional[str] = None


@dataclass(frozen=True)
class ErdModel:
    entities: Tuple[Entity, ...] = ()
    relationships: Tuple[Relationship, ...] = ()
    many_to_many: Tuple[Relationship, ...] = ()
    unparsed: Tuple[UnparsedLine, ...] = ()
    has_header: bool = False
    line_offsets: Tuple[int, ...] = field(default=(), repr=False)

    def entity(self, name: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def entity_names(self) -> List[str]:
        seen: List[str] = []
        for entity in self.entities:
            if entity.name not in seen:
                seen.append(entity.name)
        return seen


def mark_cdm(model: ErdModel, names: Iterable[str]) -> ErdModel:
    """Return a copy of ``model`` with the selected entities flagged as CDM."""
    selected = {name.lower() for name in names}
    if not selected:
        return model
    entities = tuple(
        replace(entity, is_cdm=entity.name.lower() in selected) for entity in model.entities
    )
    return replace(model, entities=entities)


def _attribute_as_dict(attr: Attribute) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": attr.name,
        "type": attr.type,
        "raw_type": attr.raw_type,
        "constraints": list(attr.constraints),
        "line": attr.line,
    }
    if attr.description is not None:
        payload["description"] = attr.description
    if attr.options:
        payload["options"] = list(attr.options)
    if attr.target:
        payload["target"] = attr.target
    return payload


def model_as_dict(model: ErdModel) -> Dict[str, Any]:
    """Serialise a model to a JSON-safe dict, keeping source order."""
    return {
        "entities": [
            {
                "name": entity.name,
                "is_cdm": entity.is_cdm,
                "start_line": entity.start_line,
                "end_line": entity.end_line,
                "attributes": [_attribute_as_dict(attr) for attr in entity.attributes],
            }
            for entity in model.entities
        ],
        "relationships": [
            {
                "from": rel.from_entity,
                "to": rel.to_entity,
                "cardinality": rel.cardinality.value,
                "label": rel.label,
                "line": rel.line,
            }
            for rel in model.relationships
        ],
        "rejected_relationships": [
            {
                "from": rel.from_entity,
                "to": rel.to_entity,
                "cardinality": rel.cardinality.value,
                "label": rel.label,
                "line": rel.line,
            }
            for rel in model.many_to_many
        ],
        "summary": {
            "entity_count": len(model.entities),
            "attribute_count": sum(len(entity.attributes) for entity in model.entities),
            "relationship_count": len(model.relationships),
            "unparsed_line_count": len(model.unparsed),
        },
    }


def expected_foreign_key(relationship: Relationship) -> str:
    """Conventional FK column name on the "many" side of ``relationship``."""
    base = relationship.from_entity.lower()
    if relationship.from_entity == relationship.to_entity:
        return f"parent_{base}_id"
    return f"{base}_id"


def plausible_foreign_keys(entity: Entity, relationship: Relationship) -> List[Attribute]:
    base = relationship.from_entity.lower()
    return [attr for attr in entity.attributes if attr.is_foreign_key and base in attr.name.lower()]


def entity_occurrences(model: ErdModel, name: str) -> List[Entity]:
    return [entity for entity in model.entities if entity.name == name]
