"""Shell completion generators for bash, zsh, and fish.

All three scripts are rendered from the same command and option tables, so a
new flag only has to be added once.
"""

from typing import Dict, List, Optional, Tuple, Union

# Value kinds: None is a bare flag, "" a free word, "file"/"dir" a path,
# "json"/"yaml" a file with that extension, a tuple a fixed set of choices.
ValueKind = Union[None, str, Tuple[str, ...]]

_OPTIONS: Dict[str, Tuple[str, ValueKind]] = {
    "--config": ("Path to mdv.config.yaml", "yaml"),
    "--log-level": ("Logging level", ("DEBUG", "INFO", "WARNING", "ERROR")),
    "--path": ("Project directory", "dir"),
    "--cdm": ("Entities to treat as existing CDM tables", ""),
    "--out": ("Output file", "file"),
    "--format": ("Output format", ("text", "json")),
    "--no-auto-correct": ("Keep many-to-many relationships as errors", None),
    "--id": ("Warning id to fix", ""),
    "--in-place": ("Overwrite the input diagram", None),
    "--prefix": ("Publisher prefix", ""),
    "--choices": ("Global choice JSON file", "json"),
    "--dry-run": ("Plan the deployment without calling Dataverse", None),
    "--force": ("Deploy even when validation reports errors", None),
    "--write-fixed": ("Write the corrected diagram here", "file"),
    "--deploy": ("Deploy after a clean conversion", None),
    "--output-json": ("Print diagnostics as JSON", None),
}

_GLOBAL_OPTIONS = ("--config", "--log-level")

_COMMANDS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "init": ("Initialize a new workspace", ("--path",)),
    "parse": ("Parse a diagram and print the model", ("--cdm", "--out")),
    "validate": ("Validate a diagram", ("--cdm", "--format", "--no-auto-correct")),
    "fix": ("Apply auto-fixes to a diagram", ("--cdm", "--id", "--out", "--in-place", "--no-auto-correct")),
    "generate": ("Generate Dataverse metadata JSON", ("--cdm", "--prefix", "--choices", "--out")),
    "deploy": (
        "Deploy a diagram to Dataverse",
        ("--cdm", "--prefix", "--choices", "--dry-run", "--force", "--no-auto-correct"),
    ),
    "convert": (
        "Validate, fix and generate in one step",
        ("--cdm", "--prefix", "--choices", "--out", "--write-fixed", "--deploy", "--dry-run", "--no-auto-correct"),
    ),
    "doctor": ("Check project health", ("--path", "--output-json")),
    "completion": ("Generate shell completion script", ()),
}

_SHELLS = ("bash", "zsh", "fish")
_DIAGRAM_GLOB = "*.mmd"


def _takes_value(option: str) -> bool:
    return _OPTIONS[option][1] is not None


def _bash_value_case(option: str) -> Optional[str]:
    kind = _OPTIONS[option][1]
    if kind is None:
        return None
    if isinstance(kind, tuple):
        reply = f'$(compgen -W "{" ".join(kind)}" -- "$cur")'
    elif kind in ("json", "yaml"):
        reply = f"$(compgen -f -X '!*.{kind}' -- \"$cur\")"
    elif kind == "dir":
        reply = '$(compgen -d -- "$cur")'
    elif kind == "file":
        reply = '$(compgen -f -- "$cur")'
    else:
        return f"        {option})\n            return 0\n            ;;"
    return f"        {option})\n            COMPREPLY=( {reply} )\n            return 0\n            ;;"


def generate_bash_completion() -> str:
    global_values = "|".join(option for option in _GLOBAL_OPTIONS if _takes_value(option))
    lines = [
        "# bash completion for mdv (Mermaid to Dataverse CLI)",
        '# Add to ~/.bashrc: eval "$(mdv completion bash)"',
        "",
        "_mdv_completions() {",
        "    local cur prev cmd opts i",
        "    COMPREPLY=()",
        '    cur="${COMP_WORDS[COMP_CWORD]}"',
        '    prev="${COMP_WORDS[COMP_CWORD-1]}"',
        '    cmd=""',
        "    i=1",
        "    while [[ $i -lt $COMP_CWORD ]]; do",
        '        case "${COMP_WORDS[i]}" in',
        f"            {global_values}) i=$((i + 2)) ;;",
        "            -*) i=$((i + 1)) ;;",
        '            *) cmd="${COMP_WORDS[i]}"; break ;;',
        "        esac",
        "    done",
        "",
        '    case "$prev" in',
    ]
    lines.extend(case for case in map(_bash_value_case, _OPTIONS) if case)
    lines += [
        "    esac",
        "",
        '    if [[ -z "$cmd" ]]; then',
        f'        COMPREPLY=( $(compgen -W "{" ".join(_GLOBAL_OPTIONS + tuple(_COMMANDS))}" -- "$cur") )',
        "        return 0",
        "    fi",
        "",
        '    case "$cmd" in',
        "        completion)",
        f'            COMPREPLY=( $(compgen -W "{" ".join(_SHELLS)}" -- "$cur") )',
        "            return 0",
        "            ;;",
    ]
    for command, (_, options) in _COMMANDS.items():
        if options:
            lines.append(f'        {command}) opts="{" ".join(options)}" ;;')
    lines += [
        '        *) opts="" ;;',
        "    esac",
        "",
        '    if [[ "$cur" == -* ]]; then',
        '        COMPREPLY=( $(compgen -W "$opts" -- "$cur") )',
        "    else",
        '        COMPREPLY=( $(compgen -f -- "$cur") )',
        "    fi",
        "    return 0",
        "}",
        "",
        "complete -F _mdv_completions mdv",
    ]
    return "\n".join(lines) + "\n"


def _zsh_spec(option: str) -> str:
    help_text, kind = _OPTIONS[option]
    prefix = "*" if option == "--cdm" else ""
    spec = f"{prefix}{option}[{help_text}]"
    if kind is None:
        return f"'{spec}'"
    if isinstance(kind, tuple):
        return f"'{spec}:value:({' '.join(kind)})'"
    if kind in ("json", "yaml"):
        return f"'{spec}:file:_files -g \"*.{kind}\"'"
    if kind == "dir":
        return f"'{spec}:directory:_files -/'"
    if kind == "file":
        return f"'{spec}:file:_files'"
    return f"'{spec}:value:'"


def generate_zsh_completion() -> str:
    lines = [
        "#compdef mdv",
        "# zsh completion for mdv (Mermaid to Dataverse CLI)",
        '# Add to ~/.zshrc: eval "$(mdv completion zsh)"',
        "",
        "_mdv() {",
        "    local -a commands",
        "    commands=(",
    ]
    lines.extend(f"        '{command}:{help_text}'" for command, (help_text, _) in _COMMANDS.items())
    lines += [
        "    )",
        "",
        "    _arguments -C \\",
    ]
    lines.extend(f"        {_zsh_spec(option)} \\" for option in _GLOBAL_OPTIONS)
    lines += [
        "        '1:command:->command' \\",
        "        '*::arg:->args'",
        "",
        "    case $state in",
        "        command)",
        "            _describe 'mdv commands' commands",
        "            ;;",
        "        args)",
        "            case $words[1] in",
        "                completion)",
        f"                    _values 'shell' {' '.join(_SHELLS)}",
        "                    ;;",
    ]
    for command, (_, options) in _COMMANDS.items():
        if command == "completion":
            continue
        specs = [_zsh_spec(option) for option in options]
        if command not in ("init", "doctor"):
            specs.append(f"'1:diagram:_files -g \"{_DIAGRAM_GLOB}\"'")
        lines.append(f"                {command})")
        lines.append(f"                    _arguments {' '.join(specs)}")
        lines.append("                    ;;")
    lines += [
        "            esac",
        "            ;;",
        "    esac",
        "}",
        "",
        '_mdv "$@"',
    ]
    return "\n".join(lines) + "\n"


def _fish_option(option: str, condition: str) -> str:
    help_text, kind = _OPTIONS[option]
    line = f"complete -c mdv{condition} -l {option[2:]} -d '{help_text}'"
    if isinstance(kind, tuple):
        line += f" -x -a '{' '.join(kind)}'"
    elif kind in ("json", "yaml", "file"):
        line += " -r -F"
    elif kind == "dir":
        line += " -x -a '(__fish_complete_directories)'"
    elif kind == "":
        line += " -x"
    return line


def generate_fish_completion() -> str:
    lines: List[str] = [
        "# fish completion for mdv (Mermaid to Dataverse CLI)",
        "# Add to ~/.config/fish/completions/mdv.fish",
        "",
    ]
    for command, (help_text, _) in _COMMANDS.items():
        lines.append(f"complete -c mdv -n '__fish_use_subcommand' -a '{command}' -d '{help_text}'")

    lines.append("")
    lines.extend(_fish_option(option, "") for option in _GLOBAL_OPTIONS)
    lines.append(f"complete -c mdv -n '__fish_seen_subcommand_from completion' -x -a '{' '.join(_SHELLS)}'")

    for command, (_, options) in _COMMANDS.items():
        if not options:
            continue
        lines.append("")
        condition = f" -n '__fish_seen_subcommand_from {command}'"
        lines.extend(_fish_option(option, condition) for option in options)

    return "\n".join(lines) + "\n"
