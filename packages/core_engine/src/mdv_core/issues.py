import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

INFO = "info"
WARNING = "warning"
ERROR = "error"
SEVERITY_ORDER = (ERROR, WARNING, INFO)


def warning_id(kind: str, *parts: Optional[str]) -> str:
    """Deterministic id from the warning type and the names it points at."""
    key = "|".join([kind] + [part or "" for part in parts])
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{kind}-{digest}"


@dataclass(frozen=True)
class ValidationWarning:
    id: str
    type: str
    severity: str
    message: str
    entity: Optional[str] = None
    column: Optional[str] = None
    relationship: Optional[str] = None
    suggestion: Optional[str] = None
    auto_fixable: bool = False
    auto_fixed: bool = False
    line: int = 0
    fix_data: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "entity": self.entity,
            "column": self.column,
            "relationship": self.relationship,
            "suggestion": self.suggestion,
            "auto_fixable": self.auto_fixable,
            "auto_fixed": self.auto_fixed,
            "line": self.line,
        }


def has_errors(warnings: Iterable[ValidationWarning]) -> bool:
    return any(warning.severity == ERROR for warning in warnings)


def count_by_severity(warnings: Iterable[ValidationWarning]) -> Dict[str, int]:
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for warning in warnings:
        counts[warning.severity] = counts.get(warning.severity, 0) + 1
    return counts


def summarize(warnings: List[ValidationWarning]) -> Dict[str, Any]:
    counts = count_by_severity(warnings)
    if counts[ERROR]:
        status = "error"
    elif counts[WARNING]:
        status = "warning"
    else:
        status = "success"
    return {
        "is_valid": counts[ERROR] == 0,
        "status": status,
        "total": len(warnings),
        "errors": counts[ERROR],
        "warnings": counts[WARNING],
        "info": counts[INFO],
        "auto_fixable": sum(1 for warning in warnings if warning.auto_fixable and not warning.auto_fixed),
        "auto_fixed": sum(1 for warning in warnings if warning.auto_fixed),
    }


def to_lines(warnings: List[ValidationWarning]) -> List[str]:
    lines = []
    for warning in warnings:
        target = warning.relationship or ".".join(
            part for part in (warning.entity, warning.column) if part
        ) or "/"
        fix = " (fixable)" if warning.auto_fixable and not warning.auto_fixed else ""
        if warning.auto_fixed:
            fix = " (auto-fixed)"
        lines.append(f"[{warning.severity.upper()}] {warning.type} {target}: {warning.message}{fix}")
        if warning.suggestion:
            lines.append(f"    suggestion: {warning.suggestion}")
    return lines
