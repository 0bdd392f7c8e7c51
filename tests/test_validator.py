import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from mdv_core import parse_erd, summarize, to_lines, validate, validate_text
from mdv_core.issues import ERROR, INFO, WARNING

FIXTURES = ROOT / "tests" / "fixtures"

SCENARIO_A = """erDiagram
    Customer { string id }
    Order { string id }
    Customer ||--o{ Order : places
"""

SCENARIO_B = """erDiagram
    Product {
        string product_id PK
        string product_name
    }
    Category {
        string category_id PK
        string category_name
    }
    Product }o--o{ Category : categorizes
"""

SCENARIO_C = """erDiagram
    Event { string id PK  string name }
"""

SCENARIO_D = """erDiagram
    Ticket {
        string ticket_id PK
        choice(low,medium,high) priority
    }
"""


def _of_type(warnings, kind):
    return [warning for warning in warnings if warning.type == kind]


class TestScenarios(unittest.TestCase):
    def test_missing_primary_keys_and_foreign_key(self):
        report = validate_text(SCENARIO_A)
        self.assertEqual(2, len(report.model.entities))
        self.assertEqual(1, len(report.model.relationships))
        missing_pk = _of_type(report.warnings, "missing_primary_key")
        self.assertEqual(["Customer", "Order"], [warning.entity for warning in missing_pk])
        self.assertTrue(all(warning.severity == ERROR and warning.auto_fixable for warning in missing_pk))
        self.assertIn("Mark 'id' as the primary key", missing_pk[0].suggestion)
        missing_fk = _of_type(report.warnings, "missing_foreign_key")
        self.assertEqual(1, len(missing_fk))
        self.assertEqual("Order", missing_fk[0].entity)
        self.assertEqual("customer_id", missing_fk[0].column)
        self.assertFalse(report.is_valid)

    def test_many_to_many_is_auto_corrected(self):
        report = validate_text(SCENARIO_B)
        corrected = _of_type(report.warnings, "many_to_many_auto_corrected")
        self.assertEqual(1, len(corrected))
        self.assertTrue(corrected[0].auto_fixed)
        self.assertEqual(INFO, corrected[0].severity)
        self.assertIn("ProductCategory {", report.corrected_text)
        self.assertNotIn("}o--o{", report.corrected_text)

        fixed = parse_erd(report.corrected_text)
        junction = fixed.entity("ProductCategory")
        self.assertEqual(2, len(junction.primary_keys))
        self.assertTrue(all(attr.is_foreign_key for attr in junction.primary_keys))
        self.assertEqual(
            [("Product", "ProductCategory"), ("Category", "ProductCategory")],
            [(rel.from_entity, rel.to_entity) for rel in fixed.relationships],
        )
        self.assertEqual((), fixed.many_to_many)

    def test_name_column_with_existing_key(self):
        report = validate_text(SCENARIO_C)
        conflicts = _of_type(report.warnings, "naming_conflict")
        self.assertEqual(1, len(conflicts))
        self.assertEqual(WARNING, conflicts[0].severity)
        self.assertTrue(conflicts[0].auto_fixable)
        self.assertIn("event_name", conflicts[0].suggestion)

    def test_name_column_without_key_suggests_promotion(self):
        report = validate_text("erDiagram\n    Venue {\n        string name\n    }\n")
        conflicts = _of_type(report.warnings, "naming_conflict")
        self.assertEqual(INFO, conflicts[0].severity)
        self.assertIn("primary key", conflicts[0].suggestion)

    def test_choice_column_is_flagged_and_left_alone(self):
        report = validate_text(SCENARIO_D)
        issues = _of_type(report.warnings, "choice_issue")
        self.assertEqual(1, len(issues))
        self.assertFalse(issues[0].auto_fixable)
        self.assertIn("low, medium, high", issues[0].message)
        self.assertEqual(SCENARIO_D, report.corrected_text)


class TestRules(unittest.TestCase):
    def test_empty_entity_yields_one_missing_primary_key(self):
        warnings = validate(parse_erd("erDiagram\nEmpty {\n}\n"))
        self.assertEqual(["missing_primary_key"], [warning.type for warning in warnings])

    def test_missing_header(self):
        warnings = validate(parse_erd("Thing {\n    string thing_id PK\n}\n"))
        self.assertEqual(["missing_diagram_header"], [warning.type for warning in warnings])

    def test_multiple_primary_keys(self):
        text = "erDiagram\nLine {\n    string line_id PK\n    string code PK\n}\n"
        warnings = _of_type(validate(parse_erd(text)), "multiple_primary_keys")
        self.assertEqual(1, len(warnings))
        self.assertEqual("line_id", warnings[0].fix_data["keep"])

    def test_junction_table_keeps_composite_key(self):
        text = (
            "erDiagram\n"
            "Student {\n    string student_id PK\n}\n"
            "Course {\n    string course_id PK\n}\n"
            "Enrollment {\n    string student_id PK, FK\n    string course_id PK, FK\n}\n"
        )
        types = [warning.type for warning in validate(parse_erd(text))]
        self.assertNotIn("multiple_primary_keys", types)
        self.assertNotIn("composite_key", types)

    def test_junction_without_keys_gets_composite_suggestion(self):
        text = "erDiagram\nEnrollment {\n    string student_id FK\n    string course_id FK\n}\n"
        warning = _of_type(validate(parse_erd(text)), "missing_primary_key")[0]
        self.assertIn("composite primary key", warning.suggestion)

    def test_pk_fk_outside_junction_is_a_composite_key_warning(self):
        text = "erDiagram\nProfile {\n    string user_id PK, FK\n    string bio\n}\n"
        warnings = _of_type(validate(parse_erd(text)), "composite_key")
        self.assertEqual(1, len(warnings))
        self.assertEqual("user_id", warnings[0].column)
        self.assertTrue(warnings[0].auto_fixable)

    def test_duplicate_columns(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n    string label\n    int label\n}\n"
        warnings = _of_type(validate(parse_erd(text)), "duplicate_columns")
        self.assertEqual(1, len(warnings))
        self.assertIn("2 times", warnings[0].message)

    def test_system_column_conflict(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n    int statecode\n}\n"
        warning = _of_type(validate(parse_erd(text)), "system_column_conflict")[0]
        self.assertEqual(ERROR, warning.severity)
        self.assertEqual("thing_statecode", warning.fix_data["new_name"])

    def test_missing_entity(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n}\nThing ||--o{ Ghost : haunts\n"
        warnings = _of_type(validate(parse_erd(text)), "missing_entity")
        self.assertEqual(1, len(warnings))
        self.assertIn("Ghost", warnings[0].message)
        self.assertFalse(warnings[0].auto_fixable)

    def test_duplicate_relationship(self):
        text = (
            "erDiagram\n"
            "Team {\n    string team_id PK\n}\n"
            "Member {\n    string member_id PK\n    string team_id FK\n}\n"
            "Team ||--o{ Member : has\n"
            "Team ||--o{ Member : has\n"
        )
        warnings = _of_type(validate(parse_erd(text)), "duplicate_relationship")
        self.assertEqual(1, len(warnings))
        self.assertEqual(10, warnings[0].line)

    def test_foreign_key_naming(self):
        model = parse_erd((FIXTURES / "commerce.mmd").read_text(encoding="utf-8"))
        warning = _of_type(validate(model), "foreign_key_naming")[0]
        self.assertEqual("customer_ref", warning.column)
        self.assertEqual("customer_id", warning.fix_data["new_name"])
        self.assertEqual(INFO, warning.severity)

    def test_self_reference_expects_parent_key(self):
        text = "erDiagram\nNode {\n    string node_id PK\n}\nNode ||--o{ Node : parent_of\n"
        warning = _of_type(validate(parse_erd(text)), "missing_foreign_key")[0]
        self.assertEqual("parent_node_id", warning.column)

    def test_status_column_is_ignored(self):
        text = "erDiagram\nTask {\n    string task_id PK\n    string Status\n    string status_reason\n}\n"
        warnings = _of_type(validate(parse_erd(text)), "status_column_ignored")
        self.assertEqual(["Status"], [warning.column for warning in warnings])
        self.assertEqual(INFO, warnings[0].severity)
        self.assertFalse(warnings[0].auto_fixable)
        self.assertIn("statecode/statuscode", warnings[0].message)

    def test_status_choice_is_not_also_a_choice_issue(self):
        text = "erDiagram\nTask {\n    string task_id PK\n    choice(open,closed) status\n}\n"
        warnings = validate(parse_erd(text))
        self.assertEqual(1, len(_of_type(warnings, "status_column_ignored")))
        self.assertEqual([], _of_type(warnings, "choice_issue"))

    def test_circular_dependency(self):
        text = (
            "erDiagram\n"
            "Alpha {\n    string alpha_id PK\n    string gamma_id FK\n}\n"
            "Beta {\n    string beta_id PK\n    string alpha_id FK\n}\n"
            "Gamma {\n    string gamma_id PK\n    string beta_id FK\n}\n"
            "Beta ||--o{ Gamma : feeds\n"
            "Gamma ||--o{ Alpha : feeds\n"
            "Alpha ||--o{ Beta : feeds\n"
        )
        warnings = _of_type(validate(parse_erd(text)), "circular_dependency")
        self.assertEqual(1, len(warnings))
        warning = warnings[0]
        self.assertEqual(WARNING, warning.severity)
        self.assertFalse(warning.auto_fixable)
        self.assertIn("Alpha → Beta → Gamma → Alpha", warning.message)
        self.assertEqual(["Alpha", "Beta", "Gamma"], warning.fix_data["cycle"])
        self.assertEqual(16, warning.line)

    def test_two_way_relationship_is_one_cycle(self):
        text = (
            "erDiagram\nLeft {\n    string left_id PK\n    string right_id FK\n}\n"
            "Right {\n    string right_id PK\n    string left_id FK\n}\n"
            "Left ||--o{ Right : owns\nRight ||--o{ Left : backs\n"
        )
        warnings = _of_type(validate(parse_erd(text)), "circular_dependency")
        self.assertEqual(1, len(warnings))
        self.assertEqual(["Left", "Right"], warnings[0].fix_data["cycle"])

    def test_self_reference_is_not_a_cycle(self):
        text = "erDiagram\nNode {\n    string node_id PK\n    string parent_node_id FK\n}\nNode ||--o{ Node : parent_of\n"
        self.assertEqual([], _of_type(validate(parse_erd(text)), "circular_dependency"))

    def test_many_to_many_without_auto_correction(self):
        warnings = validate(parse_erd(SCENARIO_B), auto_correct_many_to_many=False)
        error = _of_type(warnings, "many_to_many_relationship")[0]
        self.assertEqual(ERROR, error.severity)
        self.assertTrue(error.auto_fixable)
        self.assertFalse(error.auto_fixed)
        self.assertEqual("ProductCategory", error.fix_data["junction"])

    def test_unparseable_lines(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n    ???\n}\nnot a line\n"
        warnings = _of_type(validate(parse_erd(text)), "unparseable_line")
        by_line = {warning.line: warning for warning in warnings}
        self.assertEqual([4, 6], sorted(by_line))
        self.assertEqual("Thing", by_line[4].entity)
        self.assertIsNone(by_line[6].entity)

    def test_duplicate_entity(self):
        text = "erDiagram\nThing {\n    string thing_id PK\n}\nThing {\n    string thing_id PK\n}\n"
        warnings = _of_type(validate(parse_erd(text)), "duplicate_entity")
        self.assertEqual(1, len(warnings))
        self.assertEqual(5, warnings[0].line)


class TestCdm(unittest.TestCase):
    def test_well_known_names_are_detected(self):
        warnings = _of_type(validate(parse_erd(SCENARIO_B)), "cdm_entity_detected")
        self.assertEqual(["Product"], [warning.entity for warning in warnings])
        self.assertFalse(warnings[0].auto_fixable)
        self.assertFalse(warnings[0].auto_fixed)

    def test_selected_cdm_entities_are_exempt(self):
        text = "erDiagram\nAccount {\n    string name\n}\nAccount ||--o{ Project : owns\nProject {\n    string project_id PK\n}\n"
        warnings = validate(parse_erd(text, cdm_entities=["Account"]))
        account = [warning for warning in warnings if warning.entity == "Account"]
        self.assertEqual(["cdm_entity_detected"], [warning.type for warning in account])
        self.assertIn("account", account[0].message)


class TestDeterminism(unittest.TestCase):
    def test_ids_are_stable(self):
        text = (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")
        first = [warning.id for warning in validate_text(text).warnings]
        second = [warning.id for warning in validate_text(text).warnings]
        self.assertEqual(first, second)
        self.assertEqual(len(first), len(set(first)))

    def test_ids_do_not_depend_on_line_numbers(self):
        text = (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")
        shifted = text.replace("erDiagram\n", "erDiagram\n\n\n", 1)
        self.assertEqual(
            {warning.id for warning in validate_text(text).warnings},
            {warning.id for warning in validate_text(shifted).warnings},
        )

    def test_order_follows_declaration(self):
        text = (FIXTURES / "commerce.mmd").read_text(encoding="utf-8")
        types = [warning.type for warning in validate_text(text).warnings]
        self.assertEqual(
            [
                "naming_conflict",
                "cdm_entity_detected",
                "choice_issue",
                "cdm_entity_detected",
                "foreign_key_naming",
                "many_to_many_auto_corrected",
            ],
            types,
        )


class TestSummary(unittest.TestCase):
    def test_summary_counts(self):
        summary = summarize(validate_text(SCENARIO_A).warnings)
        self.assertEqual("error", summary["status"])
        self.assertFalse(summary["is_valid"])
        self.assertEqual(2, summary["errors"])

    def test_clean_fixture_is_valid(self):
        report = validate_text((FIXTURES / "clean.mmd").read_text(encoding="utf-8"))
        self.assertTrue(report.is_valid)
        self.assertEqual(["choice_issue"], [warning.type for warning in report.warnings])

    def test_to_lines(self):
        lines = to_lines(validate_text(SCENARIO_C).warnings)
        self.assertTrue(lines[0].startswith("[WARNING] naming_conflict Event.name"))
        self.assertIn("(fixable)", lines[0])
        self.assertTrue(lines[1].startswith("    suggestion:"))


if __name__ == "__main__":
    unittest.main()
