import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator

from mdv_core.errors import ChoicesFormatError

logger = logging.getLogger(__name__)

OPTION_VALUE_BASE = 100000000

_OPTION_SCHEMA = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "required": ["label"],
            "properties": {
                "label": {"type": "string", "minLength": 1},
                "value": {"type": ["integer", "string"]},
                "description": {"type": "string"},
            },
        },
    ]
}

_CHOICE_SCHEMA = {
    "type": "object",
    "required": ["name", "options"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "displayName": {"type": "string"},
        "description": {"type": "string"},
        "options": {"type": "array", "minItems": 1, "items": _OPTION_SCHEMA},
    },
}

WRAPPED_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["globalChoices"],
    "properties": {"globalChoices": {"type": "array", "items": _CHOICE_SCHEMA}},
}

ARRAY_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "array",
    "items": _CHOICE_SCHEMA,
}

LEGACY_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "minProperties": 1,
    "additionalProperties": {
        "oneOf": [
            {"type": "array", "minItems": 1, "items": _OPTION_SCHEMA},
            {
                "type": "object",
                "required": ["options"],
                "properties": {
                    "displayName": {"type": "string"},
                    "description": {"type": "string"},
                    "options": {"type": "array", "minItems": 1, "items": _OPTION_SCHEMA},
                },
            },
        ]
    },
}


@dataclass(frozen=True)
class ChoiceOption:
    value: int
    label: str
    description: Optional[str] = None


@dataclass(frozen=True)
class GlobalChoice:
    name: str
    display_name: str
    options: Tuple[ChoiceOption, ...]
    description: Optional[str] = None

    def matches(self, column: str) -> bool:
        return self.name.lower() == column.lower()


def _display_name(name: str) -> str:
    return " ".join(part.capitalize() for part in name.replace("-", "_").split("_") if part)


def _check(data: Any, schema: Dict[str, Any], variant: str) -> None:
    errors = sorted(Draft202012Validator(schema).iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        path = "/" + "/".join(str(part) for part in first.absolute_path)
        raise ChoicesFormatError(f"Invalid {variant} global choice file at {path}: {first.message}")


def _option_value(raw: Any, index: int) -> int:
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    return OPTION_VALUE_BASE + index


def _options(items: List[Any]) -> Tuple[ChoiceOption, ...]:
    options = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            options.append(ChoiceOption(value=OPTION_VALUE_BASE + index, label=item))
            continue
        options.append(
            ChoiceOption(
                value=_option_value(item.get("value"), index),
                label=item["label"],
                description=item.get("description"),
            )
        )
    values = [option.value for option in options]
    if len(values) != len(set(values)):
        raise ChoicesFormatError(f"Duplicate option values: {values}")
    return tuple(options)


def _choice(entry: Dict[str, Any]) -> GlobalChoice:
    return GlobalChoice(
        name=entry["name"],
        display_name=entry.get("displayName") or _display_name(entry["name"]),
        options=_options(entry["options"]),
        description=entry.get("description"),
    )


def parse_wrapped(data: Dict[str, Any]) -> List[GlobalChoice]:
    _check(data, WRAPPED_SCHEMA, "wrapped")
    return [_choice(entry) for entry in data["globalChoices"]]


def parse_array(data: List[Any]) -> List[GlobalChoice]:
    _check(data, ARRAY_SCHEMA, "array")
    return [_choice(entry) for entry in data]


def parse_legacy(data: Dict[str, Any]) -> List[GlobalChoice]:
    _check(data, LEGACY_SCHEMA, "legacy")
    choices = []
    for name, body in data.items():
        if isinstance(body, list):
            body = {"options": body}
        choices.append(_choice(dict(body, name=name)))
    return choices


def parse_global_choices(data: Any) -> List[GlobalChoice]:
    """Normalise any of the accepted JSON shapes to a list of ``GlobalChoice``."""
    if isinstance(data, list):
        choices = parse_array(data)
    elif isinstance(data, dict) and "globalChoices" in data:
        choices = parse_wrapped(data)
    elif isinstance(data, dict):
        choices = parse_legacy(data)
    else:
        raise ChoicesFormatError("Global choice JSON must be an object or an array.")

    names = [choice.name.lower() for choice in choices]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ChoicesFormatError(f"Duplicate global choice names: {', '.join(duplicates)}")
    logger.debug("Loaded %d global choice sets", len(choices))
    return choices


def load_global_choices(path: str) -> List[GlobalChoice]:
    choices_path = Path(path)
    if not choices_path.exists():
        raise FileNotFoundError(f"Global choice file not found: {path}")
    with choices_path.open("r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ChoicesFormatError(f"Global choice file is not valid JSON: {exc}") from exc
    return parse_global_choices(data)


def find_choice(choices: List[GlobalChoice], column: str) -> Optional[GlobalChoice]:
    for choice in choices:
        if choice.matches(column):
            return choice
    return None
