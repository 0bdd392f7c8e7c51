import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from jsonschema import Draft202012Validator

from mdv_core.deployer import PublisherConfig, SolutionConfig
from mdv_core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "mdv.config.yaml"
URL_ENV = "DATAVERSE_URL"
TOKEN_ENV = "DATAVERSE_TOKEN"
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "environment_url": {"type": "string"},
        "diagram": {"type": "string"},
        "publisher": {
            "type": "object",
            "additionalProperties": False,
            "required": ["prefix"],
            "properties": {
                "unique_name": {"type": "string", "minLength": 1},
                "friendly_name": {"type": "string", "minLength": 1},
                "prefix": {"type": "string", "pattern": "^[a-z][a-z0-9]{1,7}$"},
                "option_value_prefix": {"type": "integer", "minimum": 10000, "maximum": 99999},
            },
        },
        "solution": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "unique_name": {"type": "string", "minLength": 1},
                "friendly_name": {"type": "string", "minLength": 1},
                "version": {"type": "string", "pattern": r"^\d+(\.\d+){1,3}$"},
            },
        },
        "choices_file": {"type": "string"},
        "cdm_entities": {"type": "array", "items": {"type": "string"}},
        "auto_correct_many_to_many": {"type": "boolean"},
        "log_level": {"type": "string", "enum": LOG_LEVELS},
    },
}

STARTER_CONFIG = """environment_url: https://yourorg.crm.dynamics.com
diagram: diagrams/starter.mmd
publisher:
  unique_name: mermaidpublisher
  friendly_name: Mermaid Publisher
  prefix: mdv
solution:
  unique_name: MermaidSolution
  friendly_name: Mermaid Solution
choices_file: ""
cdm_entities: []
auto_correct_many_to_many: true
log_level: WARNING
"""


@dataclass
class ProjectConfig:
    root: Path
    environment_url: str = ""
    token: str = field(default="", repr=False)
    diagram: str = ""
    publisher: PublisherConfig = field(
        default_factory=lambda: PublisherConfig("mermaidpublisher", "Mermaid Publisher", "mdv")
    )
    solution: SolutionConfig = field(default_factory=lambda: SolutionConfig("MermaidSolution", "Mermaid Solution"))
    choices_file: str = ""
    cdm_entities: List[str] = field(default_factory=list)
    auto_correct_many_to_many: bool = True
    log_level: str = "WARNING"

    def resolve(self, path: str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate


def config_issues(data: Dict[str, Any]) -> List[str]:
    validator = Draft202012Validator(CONFIG_SCHEMA)
    messages = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        path = "/" + "/".join(str(part) for part in error.absolute_path)
        messages.append(f"{path}: {error.message}")
    return messages


def _from_dict(root: Path, data: Dict[str, Any], environ: Mapping[str, str]) -> ProjectConfig:
    publisher = data.get("publisher") or {}
    solution = data.get("solution") or {}
    config = ProjectConfig(root=root)
    config.environment_url = data.get("environment_url", "")
    config.diagram = data.get("diagram", "")
    if publisher:
        config.publisher = PublisherConfig(
            unique_name=publisher.get("unique_name", config.publisher.unique_name),
            friendly_name=publisher.get("friendly_name", config.publisher.friendly_name),
            prefix=publisher["prefix"],
            option_value_prefix=publisher.get("option_value_prefix", 10000),
        )
    if solution:
        config.solution = SolutionConfig(
            unique_name=solution.get("unique_name", config.solution.unique_name),
            friendly_name=solution.get("friendly_name", config.solution.friendly_name),
            version=solution.get("version", "1.0.0.0"),
        )
    config.choices_file = data.get("choices_file") or ""
    config.cdm_entities = list(data.get("cdm_entities") or [])
    config.auto_correct_many_to_many = data.get("auto_correct_many_to_many", True)
    config.log_level = data.get("log_level", "WARNING")

    if environ.get(URL_ENV):
        config.environment_url = environ[URL_ENV]
    config.token = environ.get(TOKEN_ENV, "")
    return config


def find_config(start: str = ".") -> Optional[Path]:
    """Walk up from ``start`` looking for ``mdv.config.yaml``."""
    current = Path(start).resolve()
    for directory in [current, *current.parents]:
        candidate = directory / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return None


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> ProjectConfig:
    """Load project settings; with no file, defaults plus environment variables are used."""
    environ = os.environ if environ is None else environ
    config_path = Path(path) if path else find_config()
    if config_path is None:
        logger.debug("No %s found; using defaults", CONFIG_FILENAME)
        return _from_dict(Path.cwd(), {}, environ)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must parse to an object/map at root.")

    problems = config_issues(data)
    if problems:
        raise ConfigError(f"Invalid config {config_path}: " + "; ".join(problems))
    return _from_dict(config_path.resolve().parent, data, environ)
