import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from mdv_core import (
    DataverseClient,
    deploy_schema,
    diagnostics_as_json,
    fix_all,
    fix_one,
    format_diagnostics,
    generate_bash_completion,
    generate_fish_completion,
    generate_schema,
    generate_zsh_completion,
    load_config,
    load_global_choices,
    model_as_dict,
    parse_erd,
    run_diagnostics,
    validate_text,
)
from mdv_core.config import CONFIG_FILENAME, STARTER_CONFIG, ProjectConfig
from mdv_core.errors import MdvError
from mdv_core.issues import ValidationWarning, has_errors, to_lines
from mdv_core.validator import MANY_TO_MANY_RELATIONSHIP

logger = logging.getLogger("mdv_cli")

MAX_FIX_PASSES = 10

STARTER_DIAGRAM = """erDiagram
    Customer {
        string customer_id PK "Customer number"
        string email
        string phone
    }
    Order {
        string order_id PK
        string customer_id FK "Foreign key to Customer"
        date order_date
        money total
    }
    Product {
        string product_id PK
        string product_name
    }
    Category {
        string category_id PK
        string category_name
    }
    Customer ||--o{ Order : places
    Product }o--o{ Category : categorizes
"""


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_project(args: argparse.Namespace) -> ProjectConfig:
    return load_config(getattr(args, "config", None))


def _read_diagram(path: str) -> str:
    diagram = Path(path)
    if not diagram.exists():
        raise FileNotFoundError(f"Diagram file not found: {path}")
    return diagram.read_text(encoding="utf-8")


def _write_output(text: str, out: Optional[str]) -> None:
    if out:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        Path(out).write_text(text, encoding="utf-8")
        print(f"Wrote {out}")
    else:
        print(text)


def _cdm_names(args: argparse.Namespace, config: ProjectConfig) -> List[str]:
    return list(getattr(args, "cdm", None) or config.cdm_entities)


def _auto_correct(args: argparse.Namespace, config: ProjectConfig) -> bool:
    if getattr(args, "no_auto_correct", False):
        return False
    return config.auto_correct_many_to_many


def _global_choices(args: argparse.Namespace, config: ProjectConfig) -> List[Any]:
    path = getattr(args, "choices", None)
    if path:
        return load_global_choices(path)
    if config.choices_file:
        return load_global_choices(str(config.resolve(config.choices_file)))
    return []


def _print_warnings(warnings: List[ValidationWarning]) -> None:
    if not warnings:
        print("No issues found.")
        return
    for line in to_lines(warnings):
        print(line)


def _diagram_arg(args: argparse.Namespace, config: ProjectConfig) -> str:
    path = getattr(args, "diagram", None)
    if path:
        return path
    if config.diagram:
        return str(config.resolve(config.diagram))
    raise FileNotFoundError("No diagram given and no 'diagram' set in the project config.")


def cmd_init(args: argparse.Namespace) -> int:
    root = Path(args.path).resolve()
    (root / "diagrams").mkdir(parents=True, exist_ok=True)
    created = []

    config_dst = root / CONFIG_FILENAME
    if not config_dst.exists():
        config_dst.write_text(STARTER_CONFIG, encoding="utf-8")
    created.append(config_dst)

    diagram_dst = root / "diagrams" / "starter.mmd"
    if not diagram_dst.exists():
        diagram_dst.write_text(STARTER_DIAGRAM, encoding="utf-8")
    created.append(diagram_dst)

    print(f"Initialized workspace at {root}")
    for path in created:
        print(f"- {path}")
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    config = _load_project(args)
    model = parse_erd(_read_diagram(_diagram_arg(args, config)), _cdm_names(args, config))
    _write_output(json.dumps(model_as_dict(model), indent=2), args.out)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    config = _load_project(args)
    text = _read_diagram(_diagram_arg(args, config))
    report = validate_text(text, _cdm_names(args, config), auto_correct_many_to_many=_auto_correct(args, config))

    if args.format == "json":
        payload = {
            "summary": report.summary,
            "warnings": [warning.as_dict() for warning in report.warnings],
        }
        print(json.dumps(payload, indent=2))
    else:
        _print_warnings(report.warnings)
        summary = report.summary
        print(
            f"Status: {summary['status']} "
            f"({summary['errors']} error(s), {summary['warnings']} warning(s), {summary['info']} info)"
        )
    return 1 if has_errors(report.warnings) else 0


def cmd_fix(args: argparse.Namespace) -> int:
    config = _load_project(args)
    path = _diagram_arg(args, config)
    text = _read_diagram(path)
    report = validate_text(text, _cdm_names(args, config), auto_correct_many_to_many=_auto_correct(args, config))

    if args.id:
        result = fix_one(text, args.id, report.warnings)
        if not result.resolved_ids:
            print(f"Nothing to fix for {args.id}", file=sys.stderr)
    else:
        result = fix_all(text, report.warnings)

    for warning_id in result.resolved_ids:
        print(f"Fixed {warning_id}", file=sys.stderr)
    _write_output(result.text, path if args.in_place else args.out)
    return 0


def _converge(text: str, cdm: List[str], auto_correct: bool) -> str:
    """Apply fixes until no auto-fixable warning remains or nothing changes.

    Without auto-correction many-to-many lines are left in place and stay reported.
    """
    for _ in range(MAX_FIX_PASSES):
        report = validate_text(text, cdm, auto_correct_many_to_many=auto_correct)
        fixable = [
            warning
            for warning in report.warnings
            if warning.auto_fixable and (auto_correct or warning.type != MANY_TO_MANY_RELATIONSHIP)
        ]
        if not fixable:
            break
        result = fix_all(text, fixable)
        if result.text == text:
            break
        logger.info("Applied %d fix(es)", len(result.resolved_ids))
        text = result.text
    return text


def _schema_for(text: str, args: argparse.Namespace, config: ProjectConfig) -> Dict[str, Any]:
    model = parse_erd(text, _cdm_names(args, config))
    prefix = getattr(args, "prefix", None) or config.publisher.prefix
    return generate_schema(model, prefix, _global_choices(args, config))


def cmd_generate(args: argparse.Namespace) -> int:
    config = _load_project(args)
    text = _read_diagram(_diagram_arg(args, config))
    report = validate_text(text, _cdm_names(args, config), auto_correct_many_to_many=_auto_correct(args, config))
    schema = _schema_for(report.corrected_text, args, config)
    _write_output(json.dumps(schema, indent=2), args.out)
    return 0


def _deploy(schema: Dict[str, Any], config: ProjectConfig, dry_run: bool) -> int:
    if dry_run:
        result = deploy_schema(None, schema, config.publisher, config.solution, dry_run=True)
    else:
        with DataverseClient(config.environment_url, config.token, solution=config.solution.unique_name) as client:
            result = deploy_schema(client, schema, config.publisher, config.solution)
    print(result.summary())
    return 0 if result.success else 1


def cmd_deploy(args: argparse.Namespace) -> int:
    config = _load_project(args)
    text = _read_diagram(_diagram_arg(args, config))
    report = validate_text(text, _cdm_names(args, config), auto_correct_many_to_many=_auto_correct(args, config))
    if has_errors(report.warnings) and not args.force:
        _print_warnings([warning for warning in report.warnings if warning.severity == "error"])
        print("Deploy aborted: fix the errors above or pass --force.", file=sys.stderr)
        return 1
    return _deploy(_schema_for(report.corrected_text, args, config), config, args.dry_run)


def cmd_convert(args: argparse.Namespace) -> int:
    config = _load_project(args)
    text = _read_diagram(_diagram_arg(args, config))
    cdm = _cdm_names(args, config)
    auto_correct = _auto_correct(args, config)
    fixed = _converge(text, cdm, auto_correct)

    report = validate_text(fixed, cdm, auto_correct_many_to_many=auto_correct)
    _print_warnings(report.warnings)
    if args.write_fixed:
        _write_output(fixed, args.write_fixed)

    schema = _schema_for(fixed, args, config)
    if args.out:
        _write_output(json.dumps(schema, indent=2), args.out)

    if has_errors(report.warnings):
        print("Conversion left unresolved errors.", file=sys.stderr)
        return 1
    if args.deploy or args.dry_run:
        return _deploy(schema, config, args.dry_run)
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    project_dir = getattr(args, "path", ".")
    results = run_diagnostics(project_dir)

    if getattr(args, "output_json", False):
        print(json.dumps(diagnostics_as_json(results), indent=2))
    else:
        print(format_diagnostics(results))

    error_count = sum(1 for r in results if r.status == "error")
    return 1 if error_count > 0 else 0


def cmd_completion(args: argparse.Namespace) -> int:
    shell = args.shell
    if shell == "bash":
        print(generate_bash_completion())
    elif shell == "zsh":
        print(generate_zsh_completion())
    elif shell == "fish":
        print(generate_fish_completion())
    else:
        print(f"Unsupported shell: {shell}", file=sys.stderr)
        return 1
    return 0


def _add_diagram_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("diagram", nargs="?", help="Path to a Mermaid erDiagram file (default: config 'diagram')")
    parser.add_argument("--cdm", nargs="*", help="Entity names to treat as existing CDM tables")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdv", description="Mermaid ERD to Dataverse CLI")
    parser.add_argument("--config", help=f"Path to {CONFIG_FILENAME} (default: search upwards)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: config 'log_level' or WARNING)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init_parser = sub.add_parser("init", help="Initialize a new workspace")
    init_parser.add_argument("--path", default=".", help="Workspace path")
    init_parser.set_defaults(func=cmd_init)

    parse_parser = sub.add_parser("parse", help="Parse a diagram and print the model as JSON")
    _add_diagram_options(parse_parser)
    parse_parser.add_argument("--out", help="Output file for the model JSON")
    parse_parser.set_defaults(func=cmd_parse)

    validate_parser = sub.add_parser("validate", help="Validate a diagram")
    _add_diagram_options(validate_parser)
    validate_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    validate_parser.add_argument(
        "--no-auto-correct",
        action="store_true",
        help="Report many-to-many relationships as errors instead of auto-correcting them",
    )
    validate_parser.set_defaults(func=cmd_validate)

    fix_parser = sub.add_parser("fix", help="Apply auto-fixes to a diagram")
    _add_diagram_options(fix_parser)
    fix_parser.add_argument("--id", help="Fix a single warning id instead of all fixable warnings")
    fix_parser.add_argument("--out", help="Write the corrected diagram here")
    fix_parser.add_argument("--in-place", action="store_true", help="Overwrite the input diagram")
    fix_parser.add_argument("--no-auto-correct", action="store_true", help=argparse.SUPPRESS)
    fix_parser.set_defaults(func=cmd_fix)

    generate_parser = sub.add_parser("generate", help="Generate Dataverse metadata JSON")
    _add_diagram_options(generate_parser)
    generate_parser.add_argument("--prefix", help="Publisher prefix (default: config publisher.prefix)")
    generate_parser.add_argument("--choices", help="Global choice JSON file")
    generate_parser.add_argument("--out", help="Output file for the metadata JSON")
    generate_parser.set_defaults(func=cmd_generate)

    deploy_parser = sub.add_parser("deploy", help="Deploy a diagram to Dataverse")
    _add_diagram_options(deploy_parser)
    deploy_parser.add_argument("--prefix", help="Publisher prefix (default: config publisher.prefix)")
    deploy_parser.add_argument("--choices", help="Global choice JSON file")
    deploy_parser.add_argument("--dry-run", action="store_true", help="List what would be created without calling Dataverse")
    deploy_parser.add_argument("--force", action="store_true", help="Deploy even when validation reports errors")
    deploy_parser.add_argument("--no-auto-correct", action="store_true", help=argparse.SUPPRESS)
    deploy_parser.set_defaults(func=cmd_deploy)

    convert_parser = sub.add_parser("convert", help="Validate, fix and generate in one step")
    _add_diagram_options(convert_parser)
    convert_parser.add_argument("--prefix", help="Publisher prefix (default: config publisher.prefix)")
    convert_parser.add_argument("--choices", help="Global choice JSON file")
    convert_parser.add_argument("--out", help="Output file for the metadata JSON")
    convert_parser.add_argument("--write-fixed", help="Write the corrected diagram here")
    convert_parser.add_argument("--deploy", action="store_true", help="Deploy after a clean conversion")
    convert_parser.add_argument("--dry-run", action="store_true", help="Show the deployment plan only")
    convert_parser.add_argument(
        "--no-auto-correct",
        action="store_true",
        help="Keep many-to-many relationships as errors instead of rewriting them into junction tables",
    )
    convert_parser.set_defaults(func=cmd_convert)

    doctor_parser = sub.add_parser("doctor", help="Check project health")
    doctor_parser.add_argument("--path", default=".", help="Project directory")
    doctor_parser.add_argument("--output-json", action="store_true", help="Print diagnostics as JSON")
    doctor_parser.set_defaults(func=cmd_doctor)

    completion_parser = sub.add_parser("completion", help="Generate shell completion script")
    completion_parser.add_argument("shell", choices=["bash", "zsh", "fish"], help="Shell type")
    completion_parser.set_defaults(func=cmd_completion)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = args.log_level
    if level is None and args.command not in {"init", "completion", "doctor"}:
        try:
            level = _load_project(args).log_level
        except (MdvError, FileNotFoundError):
            level = None
    _configure_logging(level or "WARNING")

    try:
        return args.func(args)
    except (MdvError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
