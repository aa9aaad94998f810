"""
Tests for stored rule definitions compiled into runnable rules.
"""

import pytest

from crmprep.services.custom_rules import (
    CustomRuleError,
    StoredRuleDefinition,
    build_custom_rule,
    build_registry_with_custom_rules,
    compile_cell_function,
    row_view,
    target_columns,
)
from crmprep.services.header_matcher import match_headers
from crmprep.services.rule_registry import build_default_registry
from crmprep.services.rule_types import KIND_TRANSFORM, KIND_VALIDATE, RuleContext
from crmprep.services.schema_fields import get_default_schema_fields


def _context(rows):
    matches = match_headers(list(rows[0].keys()), get_default_schema_fields())
    return RuleContext(rows=rows, header_matches=matches)


def _definition(config, kind=KIND_TRANSFORM, targets=("industry",), **kwargs):
    return StoredRuleDefinition(
        rule_id=kwargs.pop("rule_id", "custom-rule"),
        name=kwargs.pop("name", "Custom Rule"),
        kind=kind,
        order=kwargs.pop("order", 70),
        config=config,
        target_fields=list(targets),
        **kwargs,
    )


def _run(definition, rows):
    return build_custom_rule(definition).execute(_context(rows))


# ============================================================================
# COMPILATION
# ============================================================================

class TestCompileCellFunction:
    @pytest.mark.parametrize("config, kind", [
        ({"op": "nope"}, KIND_TRANSFORM),
        ({}, KIND_TRANSFORM),
        ({"op": "map_enum", "table": {}}, KIND_TRANSFORM),
        ({"op": "map_enum", "table": {"a": "A"}}, KIND_VALIDATE),
        ({"op": "required"}, KIND_TRANSFORM),
        ({"op": "regex_replace", "pattern": "("}, KIND_TRANSFORM),
        ({"op": "regex_match"}, KIND_VALIDATE),
        ({"op": "format", "case": "sarcastic"}, KIND_TRANSFORM),
        ({"op": "allowed_values", "values": []}, KIND_VALIDATE),
        ({"op": "custom_script", "source": "__import__('os')"}, KIND_TRANSFORM),
        ({"op": "custom_script", "source": ""}, KIND_VALIDATE),
    ])
    def test_invalid_definitions(self, config, kind):
        with pytest.raises(CustomRuleError):
            compile_cell_function(_definition(config, kind=kind))

    def test_unknown_kind(self):
        with pytest.raises(CustomRuleError):
            compile_cell_function(_definition({"op": "required"}, kind="cleanup"))

    def test_map_enum(self):
        apply = compile_cell_function(_definition({
            "op": "map_enum", "table": {"Tech": "Technology"}, "default": "Other",
        }))
        assert apply(" tech ", "industry", {}) == "Technology"
        assert apply("Retail", "industry", {}) == "Other"
        assert apply(None, "industry", {}) is None

    def test_map_enum_case_sensitive(self):
        apply = compile_cell_function(_definition({
            "op": "map_enum", "table": {"Tech": "Technology"}, "case_insensitive": False,
        }))
        assert apply("Tech", "industry", {}) == "Technology"
        assert apply("tech", "industry", {}) == "tech"


# ============================================================================
# TRANSFORM RULES
# ============================================================================

class TestCustomTransforms:
    def test_map_enum_rule(self):
        definition = _definition({"op": "map_enum", "table": {"tech": "Technology", "fin": "Finance"}})
        outcome = _run(definition, [{"Industry": "tech"}, {"Industry": "FIN"}, {"Industry": "Retail"}])
        assert [r["Industry"] for r in outcome.rows] == ["Technology", "Finance", "Retail"]
        assert [c.row_index for c in outcome.changes] == [0, 1]
        assert outcome.changes[0].reason == 'Applied custom rule "Custom Rule"'

    def test_description_used_as_reason(self):
        definition = _definition(
            {"op": "map_enum", "table": {"tech": "Technology"}},
            description="Expand industry codes",
        )
        outcome = _run(definition, [{"Industry": "tech"}])
        assert outcome.changes[0].reason == "Expand industry codes"

    def test_regex_replace(self):
        definition = _definition({"op": "regex_replace", "pattern": r"\s+", "replacement": ""}, targets=["zip"])
        outcome = _run(definition, [{"Zip": "123 45"}, {"Zip": "12345"}])
        assert [r["Zip"] for r in outcome.rows] == ["12345", "12345"]
        assert len(outcome.changes) == 1

    def test_format(self):
        definition = _definition({"op": "format", "case": "upper"}, targets=["country"])
        outcome = _run(definition, [{"Country": " us "}])
        assert outcome.rows[0]["Country"] == "US"

    def test_script_transform(self):
        definition = _definition(
            {"op": "custom_script", "source": "value.upper() if value else value"},
            targets=["lastname"],
        )
        outcome = _run(definition, [{"Last Name": "lee"}, {"Last Name": ""}])
        assert [r["Last Name"] for r in outcome.rows] == ["LEE", ""]
        assert len(outcome.changes) == 1

    def test_script_reads_other_fields(self):
        definition = _definition(
            {"op": "custom_script", "source": "value + ' @ ' + row['company']"},
            targets=["jobtitle"],
        )
        outcome = _run(definition, [{"Job Title": "CTO", "Company": "Acme"}])
        assert outcome.rows[0]["Job Title"] == "CTO @ Acme"

    def test_failing_cell_isolated(self):
        definition = _definition({"op": "custom_script", "source": "int(value) * 2"}, targets=["zip"])
        outcome = _run(definition, [{"Zip": "abc"}, {"Zip": "21"}])
        assert outcome.rows[0]["Zip"] == "abc"
        assert outcome.rows[1]["Zip"] == 42
        assert [(e.row_index, e.kind) for e in outcome.errors] == [(0, "execution_error")]
        assert outcome.errors[0].message.startswith('Row 1: rule "Custom Rule" failed:')

    def test_input_rows_untouched(self):
        rows = [{"Industry": "tech"}]
        _run(_definition({"op": "map_enum", "table": {"tech": "Technology"}}), rows)
        assert rows == [{"Industry": "tech"}]


# ============================================================================
# VALIDATE RULES
# ============================================================================

class TestCustomValidations:
    def test_allowed_values(self):
        definition = _definition(
            {"op": "allowed_values", "values": ["Technology", "Finance"]},
            kind=KIND_VALIDATE, rule_id="industry-check",
        )
        outcome = _run(definition, [{"Industry": "technology"}, {"Industry": "Mining"}, {"Industry": ""}])
        assert [(e.row_index, e.kind) for e in outcome.errors] == [(1, "industry-check")]
        assert outcome.errors[0].message == 'Row 2: "Mining" is not an allowed value for industry'

    def test_regex_match_is_full_match(self):
        definition = _definition(
            {"op": "regex_match", "pattern": r"\d{5}(-\d{4})?", "message": "Bad zip"},
            kind=KIND_VALIDATE, targets=["zip"],
        )
        outcome = _run(definition, [{"Zip": "12345"}, {"Zip": "1234"}, {"Zip": "12345x"}])
        assert [e.row_index for e in outcome.errors] == [1, 2]
        assert outcome.errors[0].message == "Row 2: Bad zip"

    def test_required(self):
        definition = _definition({"op": "required"}, kind=KIND_VALIDATE, targets=["phone"])
        outcome = _run(definition, [{"Phone": "555"}, {"Phone": "  "}])
        assert [e.row_index for e in outcome.errors] == [1]

    def test_script_validation_dict(self):
        source = "{'valid': '@' in value, 'message': 'no at sign'} if value else True"
        definition = _definition({"op": "custom_script", "source": source}, kind=KIND_VALIDATE, targets=["email"])
        outcome = _run(definition, [{"Email": "a@b.com"}, {"Email": "nope"}, {"Email": None}])
        assert [e.row_index for e in outcome.errors] == [1]
        assert outcome.errors[0].message == "Row 2: no at sign"

    def test_script_validation_false(self):
        definition = _definition(
            {"op": "custom_script", "source": "len(value) > 2"},
            kind=KIND_VALIDATE, targets=["city"],
        )
        outcome = _run(definition, [{"City": "NY"}, {"City": "Boston"}])
        assert [e.row_index for e in outcome.errors] == [0]
        assert outcome.errors[0].message == "Row 1: city failed validation"

    def test_validation_never_mutates(self):
        definition = _definition({"op": "required"}, kind=KIND_VALIDATE)
        outcome = _run(definition, [{"Industry": None}])
        assert outcome.rows == [{"Industry": None}]
        assert outcome.changes == []


# ============================================================================
# INVALID DEFINITIONS
# ============================================================================

class TestInvalidDefinitions:
    def test_reports_invalid_code(self):
        rule = build_custom_rule(_definition({"op": "regex_replace", "pattern": "("}))
        outcome = rule.execute(_context([{"Industry": "tech"}]))
        assert not outcome.success
        assert [(e.row_index, e.kind) for e in outcome.errors] == [(-1, "invalid_code")]
        assert outcome.rows == [{"Industry": "tech"}]

    def test_unknown_kind_still_builds(self):
        rule = build_custom_rule(_definition({"op": "required"}, kind="cleanup"))
        assert rule.kind == KIND_VALIDATE
        assert rule.execute(_context([{"Industry": "x"}])).errors[0].kind == "invalid_code"


# ============================================================================
# TARGETING
# ============================================================================

class TestTargeting:
    def test_object_qualified_target(self):
        rows = [{"Phone": "1", "Office Phone": "2"}]
        context = _context(rows)
        assert target_columns(["companies.phone"], context.header_matches, rows) == ["Office Phone"]
        assert target_columns(["phone"], context.header_matches, rows) == ["Phone", "Office Phone"]

    def test_raw_header_target(self):
        rows = [{"Favorite Color": "blue"}]
        assert target_columns(["favorite color"], [], rows) == ["Favorite Color"]

    def test_unknown_target(self):
        rows = [{"Industry": "x"}]
        context = _context(rows)
        assert target_columns(["dealstage"], context.header_matches, rows) == []

    def test_row_view(self):
        rows = [{"Email": "a@b.com", "Company": "  "}]
        view = row_view(rows[0], _context(rows).header_matches)
        assert view["email"] == "a@b.com"
        assert view["contacts.email"] == "a@b.com"
        assert view["company"] is None


# ============================================================================
# REGISTRY
# ============================================================================

class TestRegistryWithCustomRules:
    def test_enabled_rules_added_in_order(self):
        base = build_default_registry()
        registry = build_registry_with_custom_rules([
            _definition({"op": "required"}, kind=KIND_VALIDATE, rule_id="late-check", order=200),
            _definition({"op": "format", "case": "upper"}, rule_id="early-format", order=2),
            _definition({"op": "required"}, kind=KIND_VALIDATE, rule_id="switched-off", enabled=False),
        ], base)
        assert registry.rule_ids[1] == "early-format"
        assert registry.rule_ids[-1] == "late-check"
        assert "switched-off" not in registry
        assert len(registry) == len(base) + 2
        assert "early-format" not in base

    def test_built_in_id_wins(self):
        base = build_default_registry()
        registry = build_registry_with_custom_rules(
            [_definition({"op": "required"}, kind=KIND_VALIDATE, rule_id="email-validation")],
            base,
        )
        assert registry.get("email-validation") is base.get("email-validation")
        assert len(registry) == len(base)
