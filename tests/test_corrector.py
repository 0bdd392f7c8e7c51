import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from mdv_core import Edit, apply_edits, fix_all, fix_one, parse_erd, validate, validate_text

FIXTURES = ROOT / "tests" / "fixtures"

SCENARIO_A = """erDiagram
    Customer { string id }
    Order { string id }
    Customer ||--o{ Order : places
"""


def _warnings(text, **kwargs):
    return validate(parse_erd(text), **kwargs)


def _first(text, kind, **kwargs):
    return [warning for warning in _warnings(text, **kwargs) if warning.type == kind][0]


def _fix(text, kind, **kwargs):
    warnings = _warnings(text, **kwargs)
    target = [warning for warning in warnings if warning.type == kind][0]
    return fix_one(text, target.id, warnings)


class TestApplyEdits(unittest.TestCase):
    def test_back_to_front(self):
        text = "abcdef"
        edits = [Edit(0, 1, "X"), Edit(4, 6, "YZW"), Edit(2, 2, "-")]
        self.assertEqual("Xb-cdYZW", apply_edits(text, edits))

    def test_overlap_is_rejected(self):
        with self.assertRaises(ValueError):
            apply_edits("abcdef", [Edit(0, 3, ""), Edit(2, 4, "")])

    def test_no_edits(self):
        self.assertEqual("abc", apply_edits("abc", []))


class TestStrategies(unittest.TestCase):
    def test_missing_primary_key_marks_candidate(self):
        result = _fix(SCENARIO_A, "missing_primary_key")
        self.assertIn("Customer { string id PK }", result.text)
        self.assertIn("Order { string id }", result.text)
        self.assertEqual(1, len(result.resolved_ids))

    def test_missing_primary_key_adds_column(self):
        text = "erDiagram\nWidget {\n    int qty\n}\n"
        result = _fix(text, "missing_primary_key")
        self.assertEqual(
            'erDiagram\nWidget {\n    int qty\n    string widget_id PK "Primary key"\n}\n',
            result.text,
        )

    def test_missing_primary_key_on_empty_entity(self):
        text = "erDiagram\n  Empty {\n  }\n"
        result = _fix(text, "missing_primary_key")
        self.assertEqual('erDiagram\n  Empty {\n      string empty_id PK "Primary key"\n  }\n', result.text)

    def test_missing_primary_key_on_unclosed_entity(self):
        text = "erDiagram\nWidget {\n    int qty"
        result = _fix(text, "missing_primary_key")
        self.assertEqual('erDiagram\nWidget {\n    int qty\n    string widget_id PK "Primary key"\n', result.text)

    def test_junction_foreign_keys_become_the_key(self):
        text = "erDiagram\nEnrollment {\n    string student_id FK\n    string course_id FK\n}\n"
        result = _fix(text, "missing_primary_key")
        self.assertIn("string student_id PK, FK", result.text)
        self.assertIn("string course_id PK, FK", result.text)

    def test_multiple_primary_keys_keep_the_first(self):
        text = "erDiagram\nLine {\n    string line_id PK\n    string code PK \"Short code\"\n}\n"
        result = _fix(text, "multiple_primary_keys")
        self.assertIn('    string code "Short code"\n', result.text)
        self.assertIn("    string line_id PK\n", result.text)

    def test_composite_key_keeps_pk(self):
        text = "erDiagram\nProfile {\n    string user_id PK, FK\n    string bio\n}\n"
        result = _fix(text, "composite_key")
        self.assertIn("    string user_id PK\n", result.text)

    def test_duplicate_columns_keep_the_first(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n    string label\n    int label\n}\n"
        result = _fix(text, "duplicate_columns")
        self.assertEqual("erDiagram\nThing {\n    string thing_id PK\n    string label\n}\n", result.text)

    def test_duplicate_columns_on_one_line(self):
        text = "erDiagram\nThing { string thing_id PK string label int label }\n"
        result = _fix(text, "duplicate_columns")
        self.assertEqual("erDiagram\nThing { string thing_id PK string label }\n", result.text)

    def test_naming_conflict_rename(self):
        text = "erDiagram\n    Event { string id PK  string name }\n"
        result = _fix(text, "naming_conflict")
        self.assertEqual("erDiagram\n    Event { string id PK  string event_name }\n", result.text)
        renamed = parse_erd(result.text).entity("Event")
        self.assertEqual(["id", "event_name"], [attr.name for attr in renamed.attributes])

    def test_inline_attribute_touching_brace_gets_key(self):
        text = "erDiagram\n    Customer { string id}\n"
        result = fix_all(text, _warnings(text))
        self.assertEqual("erDiagram\n    Customer { string id PK}\n", result.text)
        self.assertTrue(parse_erd(result.text).entity("Customer").attribute("id").is_primary_key)

    def test_inline_attribute_touching_brace_is_renamed(self):
        text = "erDiagram\n    Event { string id PK string name}\n"
        result = _fix(text, "naming_conflict")
        self.assertEqual("erDiagram\n    Event { string id PK string event_name}\n", result.text)

    def test_inline_system_column_touching_brace(self):
        text = "erDiagram\nThing { string thing_id PK int statecode}\n"
        result = _fix(text, "system_column_conflict")
        self.assertEqual("erDiagram\nThing { string thing_id PK int thing_statecode}\n", result.text)

    def test_naming_conflict_promote(self):
        text = "erDiagram\nVenue {\n    string name \"Venue name\"\n}\n"
        warnings = _warnings(text)
        conflict = [warning for warning in warnings if warning.type == "naming_conflict"][0]
        result = fix_one(text, conflict.id, warnings)
        self.assertIn('    string name PK "Venue name"\n', result.text)

    def test_system_column_rename(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n    int statecode\n}\n"
        result = _fix(text, "system_column_conflict")
        self.assertIn("    int thing_statecode\n", result.text)

    def test_missing_foreign_key_inline(self):
        text = "erDiagram\n    Customer { string id PK }\n    Project { string id PK }\n    Customer ||--o{ Project : funds\n"
        result = _fix(text, "missing_foreign_key")
        self.assertIn(
            'Project { string id PK string customer_id FK "Foreign key to Customer" }', result.text
        )
        project = parse_erd(result.text).entity("Project")
        self.assertTrue(project.attribute("customer_id").is_foreign_key)

    def test_missing_foreign_key_marks_existing_column(self):
        text = (
            "erDiagram\nTeam {\n    string team_id PK\n}\n"
            "Member {\n    string member_id PK\n    string team_id\n}\n"
            "Team ||--o{ Member : has\n"
        )
        result = _fix(text, "missing_foreign_key")
        self.assertIn("    string team_id FK\n", result.text)

    def test_foreign_key_naming(self):
        text = (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")
        result = _fix(text, "foreign_key_naming")
        self.assertIn("string customer_id FK", result.text)
        self.assertNotIn("customer_ref", result.text)

    def test_duplicate_relationship_removes_the_repeat(self):
        text = (
            "erDiagram\n"
            "Team {\n    string team_id PK\n}\n"
            "Member {\n    string member_id PK\n    string team_id FK\n}\n"
            "Team ||--o{ Member : has\n"
            "Team ||--o{ Member : has\n"
        )
        result = _fix(text, "duplicate_relationship")
        self.assertEqual(1, result.text.count("Team ||--o{ Member : has"))
        self.assertTrue(result.text.endswith("Team ||--o{ Member : has\n"))

    def test_missing_header(self):
        text = "Thing {\n    string thing_id PK\n}\n"
        result = _fix(text, "missing_diagram_header")
        self.assertTrue(result.text.startswith("erDiagram\nThing {"))

    def test_many_to_many_becomes_junction(self):
        text = (
            "erDiagram\n"
            "    Student {\n        string student_id PK\n    }\n"
            "    Course {\n        string course_id PK\n    }\n"
            "    Student }o--o{ Course : \"enrolls in\"\n"
        )
        result = _fix(text, "many_to_many_relationship", auto_correct_many_to_many=False)
        expected_tail = (
            "    StudentCourse {\n"
            '        string student_id PK, FK "Foreign key to Student"\n'
            '        string course_id PK, FK "Foreign key to Course"\n'
            "    }\n"
            '    Student ||--o{ StudentCourse : "enrolls in"\n'
            '    Course ||--o{ StudentCourse : "enrolls in"\n'
        )
        self.assertTrue(result.text.endswith(expected_tail))
        after = _warnings(result.text)
        self.assertEqual([], [warning for warning in after if warning.severity == "error"])

    def test_many_to_many_without_label(self):
        text = "erDiagram\nA {\n    string a_id PK\n}\nB {\n    string b_id PK\n}\nA }o--o{ B\n"
        result = _fix(text, "many_to_many_auto_corrected")
        self.assertIn("A ||--o{ AB : has", result.text)

    def test_junction_name_avoids_existing_entity(self):
        text = (
            "erDiagram\nA {\n    string a_id PK\n}\nB {\n    string b_id PK\n}\n"
            "AB {\n    string ab_id PK\n}\nA }o--o{ B : links\n"
        )
        result = _fix(text, "many_to_many_auto_corrected")
        self.assertIn("ABLink {", result.text)


class TestFixProperties(unittest.TestCase):
    def _fixable(self, text):
        return [warning for warning in _warnings(text) if warning.auto_fixable]

    def test_fixing_removes_the_warning(self):
        for text in (SCENARIO_A, (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")):
            warnings = _warnings(text)
            for warning in self._fixable(text):
                fixed = fix_one(text, warning.id, warnings).text
                remaining = {item.id for item in _warnings(fixed)}
                self.assertNotIn(warning.id, remaining, warning.type)

    def test_fixes_on_disjoint_entities_commute(self):
        warnings = _warnings(SCENARIO_A)
        first, second = [warning for warning in warnings if warning.type == "missing_primary_key"]
        one_way = fix_one(fix_one(SCENARIO_A, first.id, warnings).text, second.id, warnings).text
        other_way = fix_one(fix_one(SCENARIO_A, second.id, warnings).text, first.id, warnings).text
        self.assertEqual(one_way, other_way)

    def test_second_application_is_a_no_op(self):
        warnings = _warnings(SCENARIO_A)
        target = warnings[0]
        once = fix_one(SCENARIO_A, target.id, warnings)
        twice = fix_one(once.text, target.id, warnings)
        self.assertEqual(once.text, twice.text)
        self.assertEqual((), twice.resolved_ids)
        self.assertIsNone(twice.resolved_id)

    def test_unknown_id_is_a_no_op(self):
        result = fix_one(SCENARIO_A, "missing_primary_key-0000000000", _warnings(SCENARIO_A))
        self.assertEqual(SCENARIO_A, result.text)
        self.assertEqual((), result.resolved_ids)

    def test_unfixable_warnings_leave_text_alone(self):
        text = "erDiagram\n    Ticket {\n        string ticket_id PK\n        choice(low,medium,high) priority\n    }\n"
        result = fix_all(text, _warnings(text))
        self.assertEqual(text, result.text)
        self.assertEqual((), result.resolved_ids)

    def test_fix_all_clears_errors(self):
        result = fix_all(SCENARIO_A, _warnings(SCENARIO_A))
        self.assertEqual(3, len(result.resolved_ids))
        self.assertIn('Order { string id PK string customer_id FK "Foreign key to Customer" }', result.text)
        self.assertTrue(validate_text(result.text).is_valid)

    def test_round_trip_keeps_untouched_entities(self):
        text = (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")
        before = parse_erd(text)
        after = parse_erd(fix_all(text, _warnings(text)).text)
        for name in ("Invoice", "Product", "Category"):
            self.assertGreaterEqual(len(after.entity(name).attributes), len(before.entity(name).attributes))
        self.assertGreaterEqual(len(after.relationships), len(before.relationships))
        self.assertEqual((), after.unparsed)

    def test_crlf_is_preserved(self):
        text = (
            "erDiagram\r\nTeam {\r\n    string team_id PK\r\n}\r\n"
            "Member {\r\n    string member_id PK\r\n}\r\n"
            "Team ||--o{ Member : has\r\n"
        )
        result = _fix(text, "missing_foreign_key")
        self.assertIn('    string member_id PK\r\n    string team_id FK "Foreign key to Team"\r\n}', result.text)
        self.assertEqual(result.text.count("\n"), result.text.count("\r\n"))


if __name__ == "__main__":
    unittest.main()
