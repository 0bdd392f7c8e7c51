from mdv_core.choices import ChoiceOption, GlobalChoice, load_global_choices, parse_global_choices
from mdv_core.completion import generate_bash_completion, generate_fish_completion, generate_zsh_completion
from mdv_core.config import ProjectConfig, load_config
from mdv_core.corrector import Edit, FixResult, apply_edits, fix_all, fix_one
from mdv_core.dataverse import DataverseClient
from mdv_core.deployer import DeploymentResult, PublisherConfig, SolutionConfig, deploy_schema
from mdv_core.doctor import diagnostics_as_json, format_diagnostics, run_diagnostics
from mdv_core.errors import ChoicesFormatError, ConfigError, DataverseError, MdvError
from mdv_core.issues import ValidationWarning, has_errors, summarize, to_lines
from mdv_core.lexer import ClassifiedLine, LineKind, classify
from mdv_core.model import Attribute, Cardinality, Entity, ErdModel, Relationship, model_as_dict
from mdv_core.parser import parse_attribute, parse_attribute_run, parse_cardinality, parse_erd, parse_relationship
from mdv_core.schema_generator import generate_schema
from mdv_core.validator import ValidationReport, validate, validate_text

__all__ = [
    "apply_edits",
    "Attribute",
    "Cardinality",
    "ChoiceOption",
    "ChoicesFormatError",
    "ClassifiedLine",
    "classify",
    "ConfigError",
    "DataverseClient",
    "DataverseError",
    "deploy_schema",
    "DeploymentResult",
    "diagnostics_as_json",
    "Edit",
    "Entity",
    "ErdModel",
    "fix_all",
    "fix_one",
    "FixResult",
    "format_diagnostics",
    "generate_bash_completion",
    "generate_fish_completion",
    "generate_schema",
    "generate_zsh_completion",
    "GlobalChoice",
    "has_errors",
    "LineKind",
    "load_config",
    "load_global_choices",
    "MdvError",
    "model_as_dict",
    "parse_attribute",
    "parse_attribute_run",
    "parse_cardinality",
    "parse_erd",
    "parse_global_choices",
    "parse_relationship",
    "ProjectConfig",
    "PublisherConfig",
    "Relationship",
    "run_diagnostics",
    "SolutionConfig",
    "summarize",
    "to_lines",
    "validate",
    "validate_text",
    "ValidationReport",
    "ValidationWarning",
]
