"""Project diagnostics and shell completion tests."""

import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from mdv_core.completion import generate_bash_completion, generate_fish_completion, generate_zsh_completion
from mdv_core.config import CONFIG_FILENAME, STARTER_CONFIG
from mdv_core.doctor import DiagnosticResult, diagnostics_as_json, format_diagnostics, run_diagnostics


def _by_name(results):
    return {result.name: result for result in results}


class TestDoctor(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_directory(self):
        results = run_diagnostics(str(self.root / "nope"))
        self.assertEqual(1, len(results))
        self.assertEqual("error", results[0].status)

    def test_empty_project_warns(self):
        results = _by_name(run_diagnostics(str(self.root)))
        self.assertEqual("warn", results["config"].status)
        self.assertEqual("warn", results["diagrams"].status)
        self.assertEqual("ok", results["import yaml"].status)
        self.assertEqual("ok", results["import httpx"].status)

    def test_configured_project(self):
        (self.root / CONFIG_FILENAME).write_text(STARTER_CONFIG, encoding="utf-8")
        (self.root / "diagrams").mkdir()
        (self.root / "diagrams" / "good.mmd").write_text(
            "erDiagram\nThing {\n    string thing_id PK\n}\n", encoding="utf-8"
        )
        (self.root / "diagrams" / "bad.mmd").write_text("Thing {\n    ???\n}\n", encoding="utf-8")
        results = _by_name(run_diagnostics(str(self.root)))
        self.assertEqual("ok", results["config"].status)
        self.assertEqual("ok", results["diagram:diagrams/good.mmd"].status)
        self.assertEqual("warn", results["diagram:diagrams/bad.mmd"].status)
        self.assertIn("environment_url", results)
        self.assertIn("access_token", results)

    def test_broken_config_is_an_error(self):
        (self.root / CONFIG_FILENAME).write_text("publisher:\n  prefix: X\n", encoding="utf-8")
        results = _by_name(run_diagnostics(str(self.root)))
        self.assertEqual("error", results["config"].status)

    def test_missing_choices_file(self):
        (self.root / CONFIG_FILENAME).write_text(
            STARTER_CONFIG.replace('choices_file: ""', "choices_file: choices.json"), encoding="utf-8"
        )
        results = _by_name(run_diagnostics(str(self.root)))
        self.assertEqual("error", results["global_choices"].status)

    def test_formatting(self):
        results = [DiagnosticResult("a", "ok"), DiagnosticResult("b", "warn", "careful")]
        text = format_diagnostics(results)
        self.assertIn("Mermaid to Dataverse Doctor", text)
        self.assertIn("[!] b: careful", text)
        self.assertIn("Status: OK (with warnings)", text)
        payload = diagnostics_as_json(results)
        self.assertTrue(payload["healthy"])
        self.assertEqual({"ok": 1, "warn": 1, "error": 0}, payload["summary"])

    def test_unhealthy(self):
        payload = diagnostics_as_json([DiagnosticResult("x", "error", "broken")])
        self.assertFalse(payload["healthy"])
        self.assertIn("UNHEALTHY", format_diagnostics([DiagnosticResult("x", "error")]))


class TestCompletion(unittest.TestCase):
    def test_bash(self):
        script = generate_bash_completion()
        self.assertIn("complete -F _mdv_completions mdv", script)
        for command in ("validate", "fix", "convert", "deploy"):
            self.assertIn(command, script)
        self.assertIn('validate) opts="--cdm --format --no-auto-correct" ;;', script)
        self.assertIn("--config|--log-level) i=$((i + 2)) ;;", script)
        self.assertIn("compgen -f -X '!*.json'", script)

    def test_every_cli_option_is_completed(self):
        from mdv_core.completion import _COMMANDS, _OPTIONS

        sys.path.insert(0, str(ROOT / "packages" / "cli" / "src"))
        from mdv_cli.main import build_parser

        subparsers = [action for action in build_parser()._actions if action.dest == "command"][0]
        self.assertEqual(set(subparsers.choices), set(_COMMANDS))
        for name, parser in subparsers.choices.items():
            flags = {
                flag
                for action in parser._actions
                for flag in action.option_strings
                if flag.startswith("--") and flag != "--help"
            }
            self.assertEqual(flags, set(_COMMANDS[name][1]), name)
            self.assertTrue(flags <= set(_OPTIONS))

    def test_zsh(self):
        script = generate_zsh_completion()
        self.assertTrue(script.startswith("#compdef mdv"))
        self.assertIn("'generate:Generate Dataverse metadata JSON'", script)
        self.assertIn("'--format[Output format]:value:(text json)'", script)
        self.assertIn("'1:diagram:_files -g \"*.mmd\"'", script)

    def test_fish(self):
        script = generate_fish_completion()
        self.assertIn("complete -c mdv -n '__fish_use_subcommand' -a 'doctor'", script)
        self.assertIn("__fish_seen_subcommand_from completion' -x -a 'bash zsh fish'", script)
        self.assertIn("complete -c mdv -n '__fish_seen_subcommand_from fix' -l in-place", script)
        self.assertIn("-l choices -d 'Global choice JSON file' -r -F", script)


if __name__ == "__main__":
    unittest.main()
