import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from mdv_core.lexer import (
    ENTITY_INLINE_RE,
    RELATIONSHIP_RE,
    ClassifiedLine,
    LineKind,
    classify,
    match_attribute_run,
)
from mdv_core.model import (
    KEY_ORDER,
    Attribute,
    Cardinality,
    Entity,
    ErdModel,
    Relationship,
    Span,
    UnparsedLine,
    mark_cdm,
)

logger = logging.getLogger(__name__)

TYPE_ALIASES = {
    "string": "string",
    "str": "string",
    "varchar": "string",
    "nvarchar": "string",
    "char": "string",
    "int": "int",
    "integer": "int",
    "bigint": "int",
    "smallint": "int",
    "decimal": "decimal",
    "numeric": "decimal",
    "float": "float",
    "double": "float",
    "money": "money",
    "currency": "money",
    "bool": "bool",
    "boolean": "bool",
    "bit": "bool",
    "datetime": "datetime",
    "timestamp": "datetime",
    "date": "date",
    "dateonly": "date",
    "text": "text",
    "memo": "text",
    "guid": "guid",
    "uuid": "guid",
    "uniqueidentifier": "guid",
    "email": "email",
    "phone": "phone",
    "url": "url",
    "choice": "choice",
    "category": "choice",
    "lookup": "lookup",
}

_KEYWORD_RE = re.compile(r"PK|FK|UK")
_CARDINALITY_SPLIT_RE = re.compile(r"^(.{2})(?:--|\.\.)(.{2})$")
LEFT_ONE = frozenset({"||", "|o", "o|"})
LEFT_MANY = frozenset({"}o", "}|"})
RIGHT_ONE = frozenset({"||", "o|", "|o"})
RIGHT_MANY = frozenset({"o{", "|{"})


def canonical_type(raw_type: str) -> Tuple[str, Tuple[str, ...]]:
    """Split ``choice(a,b)`` style types into the canonical keyword and its arguments."""
    base, _, rest = raw_type.partition("(")
    base = base.rstrip("[]")
    args: Tuple[str, ...] = ()
    if rest:
        args = tuple(arg.strip() for arg in rest.rstrip(")").split(",") if arg.strip())
    return TYPE_ALIASES.get(base.lower(), "string"), args


def _constraints(keys: str) -> Tuple[str, ...]:
    found = set(_KEYWORD_RE.findall(keys or ""))
    return tuple(key for key in KEY_ORDER if key in found)


def _attribute_from_match(match: "re.Match[str]", line: int, base_offset: int) -> Attribute:
    raw_type = match.group("type")
    kind, args = canonical_type(raw_type)
    return Attribute(
        name=match.group("name"),
        type=kind,
        raw_type=raw_type,
        constraints=_constraints(match.group("keys")),
        description=match.group("comment"),
        options=args if kind == "choice" else (),
        target=args[0] if kind == "lookup" and args else None,
        line=line,
        span=Span(base_offset + match.start(), base_offset + match.end()),
    )


def parse_attribute_run(text: str, line: int = 0, base_offset: int = 0) -> List[Attribute]:
    """Parse one or more attributes written on a single line.

    Returns an empty list when any part of ``text`` fails the attribute grammar.
    """
    matches = match_attribute_run(text)
    if not matches:
        return []
    return [_attribute_from_match(match, line, base_offset) for match in matches]


def parse_attribute(text: str) -> Optional[Attribute]:
    attributes = parse_attribute_run(text.strip())
    if len(attributes) != 1:
        return None
    return attributes[0]


def parse_cardinality(symbols: str) -> Optional[Cardinality]:
    match = _CARDINALITY_SPLIT_RE.match(symbols.strip())
    if not match:
        return None
    left, right = match.groups()
    if left not in LEFT_ONE | LEFT_MANY or right not in RIGHT_ONE | RIGHT_MANY:
        return None
    left_many = left in LEFT_MANY
    right_many = right in RIGHT_MANY
    if left_many and right_many:
        return Cardinality.MANY_TO_MANY
    if left_many or right_many:
        return Cardinality.ONE_TO_MANY
    return Cardinality.ONE_TO_ONE


def _clean_label(label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    label = label.strip()
    if len(label) >= 2 and label[0] == label[-1] == '"':
        label = label[1:-1].strip()
    return label or None


def parse_relationship(text: str, line: int = 0, span: Optional[Span] = None) -> Optional[Relationship]:
    """Parse ``A ||--o{ B : label``. Many-to-one lines are turned around."""
    match = RELATIONSHIP_RE.match(text.strip())
    if not match:
        return None
    left, symbols, right, label = match.groups()
    cardinality = parse_cardinality(symbols)
    if cardinality is None:
        return None
    if cardinality is Cardinality.ONE_TO_MANY and symbols[:2] in LEFT_MANY:
        left, right = right, left
    return Relationship(
        from_entity=left,
        to_entity=right,
        cardinality=cardinality,
        label=_clean_label(label),
        symbols=symbols,
        line=line,
        span=span,
    )


@dataclass
class _EntityBuilder:
    name: str
    start_line: int
    open_offset: int
    indent: str
    attributes: List[Attribute] = field(default_factory=list)

    def build(self, end_line: int, close_offset: Optional[int], inline: bool = False) -> Entity:
        return Entity(
            name=self.name,
            attributes=tuple(self.attributes),
            start_line=self.start_line,
            end_line=end_line,
            open_offset=self.open_offset,
            close_offset=close_offset,
            inline=inline,
            indent=self.indent,
        )


def _inline_entity(line: ClassifiedLine) -> Tuple[Entity, Optional[UnparsedLine]]:
    stripped = line.text
    match = ENTITY_INLINE_RE.match(stripped)
    builder = _EntityBuilder(
        name=match.group(1),
        start_line=line.number,
        open_offset=line.content_start + stripped.index("{"),
        indent=line.indent,
    )
    body = match.group(2)
    unparsed = None
    if body.strip():
        attributes = parse_attribute_run(body, line.number, line.content_start + match.start(2))
        if attributes:
            builder.attributes.extend(attributes)
        else:
            unparsed = UnparsedLine(line=line.number, raw=line.raw, entity=builder.name)
    close_offset = line.content_start + len(stripped) - 1
    return builder.build(line.number, close_offset, inline=True), unparsed


def build_model(lines: Iterable[ClassifiedLine]) -> ErdModel:
    """Assemble classified lines into entities and relationships, keeping source order."""
    entities: List[Entity] = []
    relationships: List[Relationship] = []
    many_to_many: List[Relationship] = []
    unparsed: List[UnparsedLine] = []
    open_blocks: List[_EntityBuilder] = []
    offsets: List[int] = []
    has_header = False
    last_line = 0

    for line in lines:
        offsets.append(line.offset)
        last_line = line.number
        if line.kind is LineKind.DIAGRAM_START:
            has_header = True
        elif line.kind is LineKind.ENTITY_OPEN:
            open_blocks.append(
                _EntityBuilder(
                    name=line.entity,
                    start_line=line.number,
                    open_offset=line.content_start + line.text.index("{"),
                    indent=line.indent,
                )
            )
        elif line.kind is LineKind.ENTITY_INLINE:
            entity, bad_body = _inline_entity(line)
            entities.append(entity)
            if bad_body:
                unparsed.append(bad_body)
        elif line.kind is LineKind.ENTITY_CLOSE:
            builder = open_blocks.pop()
            entities.append(builder.build(line.number, line.content_start))
        elif line.kind is LineKind.ATTRIBUTE:
            attributes = parse_attribute_run(line.text, line.number, line.content_start) if line.parseable else []
            if attributes:
                open_blocks[-1].attributes.extend(attributes)
            else:
                unparsed.append(UnparsedLine(line=line.number, raw=line.raw, entity=line.entity))
        elif line.kind is LineKind.RELATIONSHIP:
            span = Span(line.offset, line.offset + len(line.raw))
            relationship = parse_relationship(line.text, line.number, span)
            if relationship is None:
                unparsed.append(UnparsedLine(line=line.number, raw=line.raw))
            elif relationship.cardinality is Cardinality.MANY_TO_MANY:
                many_to_many.append(relationship)
            else:
                relationships.append(relationship)
        elif line.kind is LineKind.UNKNOWN:
            unparsed.append(UnparsedLine(line=line.number, raw=line.raw))

    for builder in reversed(open_blocks):
        logger.debug("Entity %s opened on line %d is never closed", builder.name, builder.start_line)
        entities.append(builder.build(last_line, None))

    entities.sort(key=lambda entity: entity.start_line)
    return ErdModel(
        entities=tuple(entities),
        relationships=tuple(relationships),
        many_to_many=tuple(many_to_many),
        unparsed=tuple(unparsed),
        has_header=has_header,
        line_offsets=tuple(offsets),
    )


def parse_erd(text: str, cdm_entities: Iterable[str] = ()) -> ErdModel:
    """Parse Mermaid ERD text into a fresh model. Never raises on malformed diagrams."""
    model = build_model(classify(text))
    logger.debug(
        "Parsed %d entities, %d relationships, %d unparsed lines",
        len(model.entities),
        len(model.relationships),
        len(model.unparsed),
    )
    return mark_cdm(model, cdm_entities)
