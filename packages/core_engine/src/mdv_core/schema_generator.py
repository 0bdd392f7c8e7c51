"""Map a validated ERD model onto Dataverse Web API metadata payloads."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from mdv_core.cdm import AUDIT_COLUMNS, STATUS_COLUMNS, cdm_logical_name
from mdv_core.choices import GlobalChoice, find_choice
from mdv_core.model import (
    Attribute,
    Entity,
    ErdModel,
    Relationship,
    expected_foreign_key,
    plausible_foreign_keys,
)

logger = logging.getLogger(__name__)

LANGUAGE_CODE = 1033
PREFIX_RE = re.compile(r"^[a-z][a-z0-9]{1,7}$")
STRING_TYPES = {"string", "guid"}
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_UNSAFE_RE = re.compile(r"[^a-z0-9_]+")

EMAIL_HINTS = ("email",)
PHONE_HINTS = ("phone", "mobile", "tel")
URL_HINTS = ("url", "website", "link")
TEXTAREA_HINTS = ("description", "notes", "comments")

CASCADE_REMOVE_LINK = {
    "Assign": "NoCascade",
    "Delete": "RemoveLink",
    "Merge": "NoCascade",
    "Reparent": "NoCascade",
    "Share": "NoCascade",
    "Unshare": "NoCascade",
}


def label(text: str) -> Dict[str, Any]:
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.Label",
        "LocalizedLabels": [
            {
                "@odata.type": "Microsoft.Dynamics.CRM.LocalizedLabel",
                "Label": text,
                "LanguageCode": LANGUAGE_CODE,
            }
        ],
    }


def display_name(name: str) -> str:
    words = _CAMEL_RE.sub(" ", name).replace("_", " ").replace("-", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def safe_name(name: str) -> str:
    return _UNSAFE_RE.sub("_", name.lower()).strip("_")


def validate_prefix(prefix: str) -> str:
    if not PREFIX_RE.match(prefix or ""):
        raise ValueError(
            f"Invalid publisher prefix '{prefix}': use 2-8 lowercase letters or digits, starting with a letter."
        )
    return prefix


def entity_logical_name(model: ErdModel, name: str, prefix: str) -> Optional[str]:
    entity = model.entity(name)
    if entity is None:
        return None
    if entity.is_cdm:
        return cdm_logical_name(name) or name.lower()
    return f"{prefix}_{safe_name(name)}"


def _has_hint(name: str, hints: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(hint in lowered for hint in hints)


def _max_length(attr: Attribute, default: int) -> int:
    _, _, rest = attr.raw_type.partition("(")
    digits = rest.rstrip(")").strip()
    return int(digits) if digits.isdigit() else default


def _string_column(attr: Attribute, schema_name: str, title: str) -> Dict[str, Any]:
    kind = attr.type
    fmt, length = "Text", _max_length(attr, 100)
    if kind == "email" or (kind == "string" and _has_hint(attr.name, EMAIL_HINTS)):
        fmt, length = "Email", 100
    elif kind == "phone" or (kind == "string" and _has_hint(attr.name, PHONE_HINTS)):
        fmt, length = "Phone", 50
    elif kind == "url" or (kind == "string" and _has_hint(attr.name, URL_HINTS)):
        fmt, length = "Url", 200
    elif kind == "string" and _has_hint(attr.name, TEXTAREA_HINTS):
        fmt, length = "TextArea", 2000
    elif kind == "guid":
        length = 36
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "SchemaName": schema_name,
        "RequiredLevel": {"Value": "None"},
        "MaxLength": length,
        "FormatName": {"Value": fmt},
        "DisplayName": label(title),
    }


def column_metadata(
    attr: Attribute, schema_name: str, choice: Optional[GlobalChoice] = None, prefix: str = ""
) -> Dict[str, Any]:
    """Attribute metadata payload for a single scalar or choice column."""
    title = display_name(attr.name)
    base = {"SchemaName": schema_name, "RequiredLevel": {"Value": "None"}, "DisplayName": label(title)}
    if attr.description:
        base["Description"] = label(attr.description)
    kind = attr.type

    if kind in STRING_TYPES or kind in {"email", "phone", "url"}:
        payload = _string_column(attr, schema_name, title)
        if attr.description:
            payload["Description"] = label(attr.description)
        return payload
    if kind == "text":
        return dict(base, **{"@odata.type": "Microsoft.Dynamics.CRM.MemoAttributeMetadata", "MaxLength": 2000})
    if kind == "int":
        return dict(
            base,
            **{
                "@odata.type": "Microsoft.Dynamics.CRM.IntegerAttributeMetadata",
                "Format": "None",
                "MinValue": -2147483648,
                "MaxValue": 2147483647,
            },
        )
    if kind == "decimal":
        return dict(base, **{"@odata.type": "Microsoft.Dynamics.CRM.DecimalAttributeMetadata", "Precision": 2})
    if kind == "float":
        return dict(base, **{"@odata.type": "Microsoft.Dynamics.CRM.DoubleAttributeMetadata", "Precision": 5})
    if kind == "money":
        return dict(base, **{"@odata.type": "Microsoft.Dynamics.CRM.MoneyAttributeMetadata", "Precision": 2})
    if kind == "bool":
        return dict(
            base,
            **{
                "@odata.type": "Microsoft.Dynamics.CRM.BooleanAttributeMetadata",
                "DefaultValue": False,
                "OptionSet": {
                    "TrueOption": {"Value": 1, "Label": label("Yes")},
                    "FalseOption": {"Value": 0, "Label": label("No")},
                },
            },
        )
    if kind in {"datetime", "date"}:
        return dict(
            base,
            **{
                "@odata.type": "Microsoft.Dynamics.CRM.DateTimeAttributeMetadata",
                "Format": "DateOnly" if kind == "date" else "DateAndTime",
            },
        )
    if kind == "choice" and choice is not None:
        return dict(
            base,
            **{
                "@odata.type": "Microsoft.Dynamics.CRM.PicklistAttributeMetadata",
                "GlobalOptionSet@odata.bind": f"/GlobalOptionSetDefinitions(Name='{choice_logical_name(choice, prefix)}')",
            },
        )
    raise ValueError(f"No column metadata for type '{kind}'")


def choice_logical_name(choice: GlobalChoice, prefix: str) -> str:
    return f"{prefix}_{safe_name(choice.name)}"


def global_choice_metadata(choice: GlobalChoice, prefix: str) -> Dict[str, Any]:
    options = []
    for option in choice.options:
        item: Dict[str, Any] = {"Value": option.value, "Label": label(option.label)}
        if option.description:
            item["Description"] = label(option.description)
        options.append(item)
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.OptionSetMetadata",
        "Name": choice_logical_name(choice, prefix),
        "DisplayName": label(choice.display_name),
        "Description": label(choice.description or choice.display_name),
        "IsGlobal": True,
        "OptionSetType": "Picklist",
        "Options": options,
    }


def _primary_name_column(entity: Entity, prefix: str) -> Dict[str, Any]:
    pks = entity.primary_keys
    if pks and pks[0].type == "string" and not pks[0].is_foreign_key:
        column = safe_name(pks[0].name)
        title = display_name(pks[0].name)
    else:
        column = "name"
        title = f"{display_name(entity.name)} Name"
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "AttributeType": "String",
        "AttributeTypeName": {"Value": "StringType"},
        "SchemaName": f"{prefix}_{column}",
        "RequiredLevel": {"Value": "ApplicationRequired"},
        "MaxLength": 100,
        "FormatName": {"Value": "Text"},
        "IsPrimaryName": True,
        "DisplayName": label(title),
    }


def entity_metadata(entity: Entity, prefix: str) -> Dict[str, Any]:
    title = display_name(entity.name)
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.EntityMetadata",
        "SchemaName": f"{prefix}_{entity.name}",
        "DisplayName": label(title),
        "DisplayCollectionName": label(f"{title}s"),
        "Description": label(f"{title} table generated from an ERD"),
        "OwnershipType": "UserOwned",
        "IsActivity": False,
        "HasActivities": False,
        "HasNotes": False,
        "Attributes": [_primary_name_column(entity, prefix)],
    }


def relationship_metadata(
    schema_name: str,
    referenced: str,
    referencing: str,
    lookup_name: str,
    lookup_title: str,
) -> Dict[str, Any]:
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata",
        "SchemaName": schema_name,
        "ReferencedEntity": referenced,
        "ReferencingEntity": referencing,
        "CascadeConfiguration": dict(CASCADE_REMOVE_LINK),
        "IsValidForAdvancedFind": True,
        "Lookup": {
            "@odata.type": "Microsoft.Dynamics.CRM.LookupAttributeMetadata",
            "AttributeType": "Lookup",
            "AttributeTypeName": {"Value": "LookupType"},
            "SchemaName": lookup_name,
            "RequiredLevel": {"Value": "None"},
            "DisplayName": label(lookup_title),
        },
    }


def _foreign_key_column(entity: Entity, rel: Relationship, claimed: Set[str]) -> str:
    """FK column backing ``rel``; columns already claimed by an earlier relationship are passed over."""
    expected = expected_foreign_key(rel)
    exact = entity.attribute(expected)
    if exact is not None and exact.name.lower() not in claimed:
        return exact.name
    plausible = [attr for attr in plausible_foreign_keys(entity, rel) if attr.name.lower() not in claimed]
    if plausible:
        return plausible[0].name
    return exact.name if exact is not None else expected


def _first_occurrences(model: ErdModel) -> List[Entity]:
    seen: Set[str] = set()
    entities = []
    for entity in model.entities:
        if entity.name in seen:
            continue
        seen.add(entity.name)
        entities.append(entity)
    return entities


def generate_schema(
    model: ErdModel,
    publisher_prefix: str,
    global_choices: Iterable[GlobalChoice] = (),
) -> Dict[str, Any]:
    prefix = validate_prefix(publisher_prefix)
    choices = list(global_choices)
    entities: List[Dict[str, Any]] = []
    attributes: List[Dict[str, Any]] = []
    relationships: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    skipped_relationships: List[Dict[str, Any]] = []
    used_lookups: Set[Tuple[str, str]] = set()
    used_choices: Set[str] = set()

    def skip(entity: Entity, attr: Attribute, reason: str) -> None:
        skipped.append({"entity": entity.name, "column": attr.name, "reason": reason})

    def add_relationship(
        source: str, target: str, rel_label: str, lookup_column: str
    ) -> None:
        referenced = entity_logical_name(model, source, prefix)
        referencing = entity_logical_name(model, target, prefix)
        if referenced is None or referencing is None:
            skipped_relationships.append(
                {"from": source, "to": target, "reason": "entity not declared in the diagram"}
            )
            return
        schema_name = f"{prefix}_{safe_name(source)}_{safe_name(target)}"
        if rel_label != f"{source}_{target}":
            schema_name = f"{schema_name}_{safe_name(rel_label)}"
        lookup_name = f"{prefix}_{safe_name(lookup_column)}"
        if (referencing, lookup_name) in used_lookups:
            lookup_name = f"{lookup_name}_{safe_name(rel_label)}"
        used_lookups.add((referencing, lookup_name))
        relationships.append(
            {
                "name": schema_name,
                "from": source,
                "to": target,
                "label": rel_label,
                "metadata": relationship_metadata(
                    schema_name, referenced, referencing, lookup_name, display_name(lookup_column)
                ),
            }
        )

    for entity in _first_occurrences(model):
        if entity.is_cdm:
            continue
        logical = entity_logical_name(model, entity.name, prefix)
        entities.append({"name": entity.name, "logical_name": logical, "metadata": entity_metadata(entity, prefix)})

        primary = entity.primary_keys[0] if entity.primary_keys else None
        for attr in entity.attributes:
            lowered = attr.name.lower()
            if attr is primary:
                continue
            if attr.is_primary_key:
                skip(entity, attr, "additional primary key column; Dataverse tables have a single key")
            elif lowered in AUDIT_COLUMNS:
                skip(entity, attr, "audit column provided by Dataverse")
            elif lowered in STATUS_COLUMNS and not attr.is_foreign_key:
                skip(entity, attr, "status is provided by statecode/statuscode")
            elif attr.is_foreign_key:
                skip(entity, attr, "foreign key; created as the relationship lookup")
            elif lowered == "name":
                skip(entity, attr, "collides with the primary name column")
            elif attr.is_lookup:
                if attr.target:
                    add_relationship(attr.target, entity.name, attr.name, attr.name)
                else:
                    skip(entity, attr, "lookup without a target entity")
            elif attr.is_choice:
                choice = find_choice(choices, attr.name)
                if choice is None:
                    skip(entity, attr, "choice column without a matching global choice set")
                    continue
                used_choices.add(choice.name)
                attributes.append(
                    {
                        "entity": logical,
                        "column": attr.name,
                        "metadata": column_metadata(attr, f"{prefix}_{safe_name(attr.name)}", choice, prefix),
                    }
                )
            else:
                attributes.append(
                    {
                        "entity": logical,
                        "column": attr.name,
                        "metadata": column_metadata(attr, f"{prefix}_{safe_name(attr.name)}"),
                    }
                )

    claimed: Dict[str, Set[str]] = {}
    for rel in model.relationships:
        rel_label = rel.label or f"{rel.from_entity}_{rel.to_entity}"
        target = model.entity(rel.to_entity)
        if target is None:
            lookup_column = expected_foreign_key(rel)
        else:
            taken = claimed.setdefault(target.name, set())
            lookup_column = _foreign_key_column(target, rel, taken)
            taken.add(lookup_column.lower())
        add_relationship(rel.from_entity, rel.to_entity, rel_label, lookup_column)

    logger.info(
        "Generated schema: %d entities, %d columns, %d relationships, %d skipped columns",
        len(entities),
        len(attributes),
        len(relationships),
        len(skipped),
    )
    return {
        "entities": entities,
        "attributes": attributes,
        "relationships": relationships,
        "global_choices": [
            {
                "name": choice.name,
                "logical_name": choice_logical_name(choice, prefix),
                "metadata": global_choice_metadata(choice, prefix),
            }
            for choice in choices
        ],
        "skipped_columns": skipped,
        "metadata": {
            "publisher_prefix": prefix,
            "entity_count": len(entities),
            "attribute_count": len(attributes),
            "relationship_count": len(relationships),
            "global_choice_count": len(choices),
            "referenced_global_choices": sorted(used_choices),
            "cdm_entities": [entity.name for entity in model.entities if entity.is_cdm],
            "skipped_relationships": skipped_relationships,
        },
    }
