import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "packages" / "core_engine" / "src"))

from mdv_core import model_as_dict, parse_attribute, parse_cardinality, parse_erd, parse_relationship
from mdv_core.model import Cardinality


class TestAttributeParser(unittest.TestCase):
    def test_full_attribute(self):
        attr = parse_attribute('string customer_id PK "Customer number"')
        self.assertEqual("customer_id", attr.name)
        self.assertEqual("string", attr.type)
        self.assertEqual(("PK",), attr.constraints)
        self.assertEqual("Customer number", attr.description)

    def test_keys_in_either_order_are_normalised(self):
        self.assertEqual(("PK", "FK"), parse_attribute("string a_id FK PK").constraints)
        self.assertEqual(("PK", "FK"), parse_attribute("string a_id PK, FK").constraints)

    def test_choice_options(self):
        attr = parse_attribute("choice(low, medium, high) priority")
        self.assertEqual("choice", attr.type)
        self.assertEqual(("low", "medium", "high"), attr.options)
        self.assertTrue(attr.is_choice)

    def test_category_is_a_choice(self):
        self.assertTrue(parse_attribute("category segment").is_choice)

    def test_lookup_target(self):
        attr = parse_attribute("lookup(Account) parent_account")
        self.assertEqual("lookup", attr.type)
        self.assertEqual("Account", attr.target)

    def test_type_aliases(self):
        self.assertEqual("int", parse_attribute("integer qty").type)
        self.assertEqual("bool", parse_attribute("boolean active").type)
        self.assertEqual("datetime", parse_attribute("timestamp seen_at").type)
        self.assertEqual("string", parse_attribute("varchar(40) code").type)
        self.assertEqual("string", parse_attribute("widget thing").type)

    def test_unparseable_returns_none(self):
        self.assertIsNone(parse_attribute("string"))
        self.assertIsNone(parse_attribute("string id PK ???"))
        self.assertIsNone(parse_attribute("string id  string name"))


class TestRelationshipParser(unittest.TestCase):
    def test_cardinality_families(self):
        self.assertEqual(Cardinality.ONE_TO_MANY, parse_cardinality("||--o{"))
        self.assertEqual(Cardinality.ONE_TO_MANY, parse_cardinality("|o..|{"))
        self.assertEqual(Cardinality.ONE_TO_MANY, parse_cardinality("}o--||"))
        self.assertEqual(Cardinality.ONE_TO_ONE, parse_cardinality("||--||"))
        self.assertEqual(Cardinality.ONE_TO_ONE, parse_cardinality("|o--o|"))
        self.assertEqual(Cardinality.MANY_TO_MANY, parse_cardinality("}o--o{"))
        self.assertEqual(Cardinality.MANY_TO_MANY, parse_cardinality("}|..|{"))
        self.assertIsNone(parse_cardinality("<>--<>"))

    def test_label_is_trimmed_and_unquoted(self):
        rel = parse_relationship('Customer ||--o{ Order :  "places many" ')
        self.assertEqual("Customer", rel.from_entity)
        self.assertEqual("Order", rel.to_entity)
        self.assertEqual(Cardinality.ONE_TO_MANY, rel.cardinality)
        self.assertEqual("places many", rel.label)

    def test_missing_label_is_none(self):
        self.assertIsNone(parse_relationship("Customer ||--o{ Order").label)

    def test_many_to_one_is_turned_around(self):
        rel = parse_relationship("Order }o--|| Customer : placed_by")
        self.assertEqual("Customer", rel.from_entity)
        self.assertEqual("Order", rel.to_entity)

    def test_not_a_relationship(self):
        self.assertIsNone(parse_relationship("Customer -- Order"))


class TestParseErd(unittest.TestCase):
    def test_scenario_inline_entities(self):
        text = "erDiagram\n    Customer { string id }\n    Order { string id }\n    Customer ||--o{ Order : places\n"
        model = parse_erd(text)
        self.assertTrue(model.has_header)
        self.assertEqual(["Customer", "Order"], [entity.name for entity in model.entities])
        self.assertEqual(1, len(model.relationships))
        rel = model.relationships[0]
        self.assertEqual(("Customer", "Order", "places"), (rel.from_entity, rel.to_entity, rel.label))
        self.assertEqual(Cardinality.ONE_TO_MANY, rel.cardinality)
        self.assertEqual([], model.entities[0].primary_keys)

    def test_fixture_model(self):
        model = parse_erd((ROOT / "tests" / "fixtures" / "commerce.mmd").read_text(encoding="utf-8"))
        self.assertEqual(4, len(model.entities))
        self.assertEqual(1, len(model.relationships))
        self.assertEqual(1, len(model.many_to_many))
        invoice = model.entity("Invoice")
        self.assertEqual(
            ["invoice_id", "customer_ref", "total", "issued_on", "status_reason"],
            [attr.name for attr in invoice.attributes],
        )
        self.assertEqual(("draft", "sent", "paid"), invoice.attribute("status_reason").options)

    def test_spans_point_at_source_text(self):
        text = "erDiagram\n  Customer {\n    string email\n  }\n"
        attr = parse_erd(text).entities[0].attributes[0]
        self.assertEqual("string email", text[attr.span.start : attr.span.end])
        self.assertEqual(3, attr.line)

    def test_bad_lines_are_recorded_not_raised(self):
        text = "erDiagram\n  Customer {\n    string id PK\n    ???\n  }\n  nonsense here\n  A ||--o{\n"
        model = parse_erd(text)
        self.assertEqual(1, len(model.entities[0].attributes))
        self.assertEqual([4, 6, 7], [item.line for item in model.unparsed])
        self.assertEqual("Customer", model.unparsed[0].entity)
        self.assertIsNone(model.unparsed[1].entity)

    def test_unclosed_entity_keeps_attributes(self):
        model = parse_erd("erDiagram\nCustomer {\n    string id PK\n")
        entity = model.entities[0]
        self.assertIsNone(entity.close_offset)
        self.assertEqual(["id"], [attr.name for attr in entity.attributes])

    def test_empty_entity(self):
        model = parse_erd("erDiagram\nEmpty {\n}\n")
        self.assertEqual((), model.entities[0].attributes)

    def test_cdm_selection(self):
        model = parse_erd("erDiagram\nAccount {\n}\nProject {\n}\n", cdm_entities=["account"])
        self.assertTrue(model.entity("Account").is_cdm)
        self.assertFalse(model.entity("Project").is_cdm)

    def test_model_as_dict_summary(self):
        model = parse_erd((ROOT / "tests" / "fixtures" / "commerce.mmd").read_text(encoding="utf-8"))
        payload = model_as_dict(model)
        self.assertEqual(4, payload["summary"]["entity_count"])
        self.assertEqual(1, payload["summary"]["relationship_count"])
        self.assertEqual("many_to_many", payload["rejected_relationships"][0]["cardinality"])

    def test_parsing_is_pure(self):
        text = (ROOT / "tests" / "fixtures" / "commerce.mmd").read_text(encoding="utf-8")
        self.assertEqual(parse_erd(text), parse_erd(text))


if __name__ == "__main__":
    unittest.main()
