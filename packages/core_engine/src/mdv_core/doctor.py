"""Project health diagnostics for ``mdv doctor``.

Checks:
  - Project config exists and passes its schema
  - Diagrams are discoverable and parse without unparsed lines
  - The global choice file, when configured, loads
  - Python dependencies are importable
  - Dataverse connection settings are present
"""

import importlib
from pathlib import Path
from typing import Any, Dict, List

from mdv_core.choices import load_global_choices
from mdv_core.config import CONFIG_FILENAME, load_config
from mdv_core.errors import ChoicesFormatError, ConfigError
from mdv_core.parser import parse_erd


class DiagnosticResult:
    """Single diagnostic check result."""

    __slots__ = ("name", "status", "message")

    def __init__(self, name: str, status: str, message: str = "") -> None:
        self.name = name
        self.status = status  # "ok", "warn", "error"
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "status": self.status, "message": self.message}


def _check_importable(module_name: str) -> DiagnosticResult:
    try:
        importlib.import_module(module_name)
        return DiagnosticResult(f"import {module_name}", "ok")
    except ImportError as exc:
        return DiagnosticResult(f"import {module_name}", "error", str(exc))


def _check_diagram(path: Path, label: str) -> DiagnosticResult:
    try:
        model = parse_erd(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        return DiagnosticResult(label, "error", f"Unreadable: {exc}")
    if not model.has_header:
        return DiagnosticResult(label, "warn", "Missing 'erDiagram' header")
    if model.unparsed:
        return DiagnosticResult(label, "warn", f"{len(model.unparsed)} line(s) could not be parsed")
    return DiagnosticResult(label, "ok", f"{len(model.entities)} entities, {len(model.relationships)} relationships")


def _find_diagrams(root: Path) -> List[Path]:
    found = sorted(root.glob("**/*.mmd")) + sorted(root.glob("**/*.mermaid"))
    return [path for path in found if ".git" not in path.parts and "node_modules" not in path.parts]


def run_diagnostics(project_dir: str) -> List[DiagnosticResult]:
    """Run all project diagnostics and return results."""
    root = Path(project_dir).resolve()
    results: List[DiagnosticResult] = []

    # 1. Project directory
    if root.is_dir():
        results.append(DiagnosticResult("project_directory", "ok", str(root)))
    else:
        results.append(DiagnosticResult("project_directory", "error", f"Not a directory: {root}"))
        return results

    # 2. Config
    config_path = root / CONFIG_FILENAME
    config = None
    if not config_path.exists():
        results.append(DiagnosticResult("config", "warn", f"{CONFIG_FILENAME} not found (run 'mdv init')"))
    else:
        try:
            config = load_config(str(config_path))
            results.append(DiagnosticResult("config", "ok", str(config_path)))
        except ConfigError as exc:
            results.append(DiagnosticResult("config", "error", str(exc)))

    # 3. Diagrams
    diagrams = _find_diagrams(root)
    if diagrams:
        results.append(DiagnosticResult("diagrams", "ok", f"Found {len(diagrams)} diagram file(s)"))
        for path in diagrams:
            results.append(_check_diagram(path, f"diagram:{path.relative_to(root)}"))
    else:
        results.append(DiagnosticResult("diagrams", "warn", "No *.mmd or *.mermaid files found"))

    # 4. Global choices
    if config is not None and config.choices_file:
        try:
            choices = load_global_choices(str(config.resolve(config.choices_file)))
            results.append(DiagnosticResult("global_choices", "ok", f"{len(choices)} choice set(s)"))
        except (FileNotFoundError, ChoicesFormatError) as exc:
            results.append(DiagnosticResult("global_choices", "error", str(exc)))

    # 5. Python dependencies
    for mod in ["yaml", "jsonschema", "httpx"]:
        results.append(_check_importable(mod))

    # 6. Dataverse connection settings
    if config is not None:
        if config.environment_url:
            results.append(DiagnosticResult("environment_url", "ok", config.environment_url))
        else:
            results.append(DiagnosticResult("environment_url", "warn", "Set environment_url or DATAVERSE_URL"))
        if config.token:
            results.append(DiagnosticResult("access_token", "ok", "DATAVERSE_TOKEN is set"))
        else:
            results.append(DiagnosticResult("access_token", "warn", "DATAVERSE_TOKEN is not set; deploy will fail"))

    return results


def _counts(results: List[DiagnosticResult]) -> Dict[str, int]:
    return {
        status: sum(1 for r in results if r.status == status)
        for status in ("ok", "warn", "error")
    }


def format_diagnostics(results: List[DiagnosticResult]) -> str:
    """Format diagnostic results as a human-readable string."""
    lines: List[str] = ["Mermaid to Dataverse Doctor", "=" * 40]
    counts = _counts(results)

    for r in results:
        icon = {"ok": "✓", "warn": "!", "error": "✗"}.get(r.status, "?")
        msg = f"  [{icon}] {r.name}"
        if r.message:
            msg += f": {r.message}"
        lines.append(msg)

    lines.append("")
    lines.append(f"Summary: {counts['ok']} ok, {counts['warn']} warnings, {counts['error']} errors")
    if counts["error"]:
        lines.append("Status: UNHEALTHY")
    elif counts["warn"]:
        lines.append("Status: OK (with warnings)")
    else:
        lines.append("Status: HEALTHY")
    return "\n".join(lines)


def diagnostics_as_json(results: List[DiagnosticResult]) -> Dict[str, Any]:
    """Return diagnostics as a JSON-serializable dict."""
    counts = _counts(results)
    return {
        "checks": [r.to_dict() for r in results],
        "summary": counts,
        "healthy": counts["error"] == 0,
    }
