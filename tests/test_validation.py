"""Tests for RuleValidator and RuleAnalyzer."""

import pytest

from compliance_engine.rules.validation import RuleAnalyzer, RuleValidator, validate_rules

from tests.conftest import make_rule


@pytest.fixture
def validator():
    return RuleValidator()


class TestValidateRule:

    def test_valid_rule(self, validator):
        report = validator.validate_rule(make_rule("r1"))
        assert report.is_valid
        assert report.warnings == []

    def test_missing_conditions(self, validator):
        report = validator.validate_rule(make_rule("r1", conditions=[]))
        assert "At least one condition is required" in report.errors

    def test_blank_name(self, validator):
        rule = make_rule("r1").model_copy(update={"name": "  "})
        assert "Rule name is required" in validator.validate_rule(rule).errors

    @pytest.mark.parametrize("condition,message", [
        ({"field": "a", "operator": "between", "value": [1]}, "between requires exactly two values"),
        ({"field": "a", "operator": "in", "value": "x"}, "in requires a list value"),
        ({"field": "a", "operator": "regex", "value": "(["}, "invalid regex pattern"),
    ])
    def test_operand_shapes(self, validator, condition, message):
        report = validator.validate_rule(make_rule("r1", conditions=[condition]))
        assert any(message in error for error in report.errors)

    def test_nested_condition_labels(self, validator):
        rule = make_rule("r1", conditions=[
            {"nested": [
                {"field": "a", "operator": "exists"},
                {"field": "b", "operator": "notIn", "value": 3},
            ]},
        ])
        assert validator.validate_rule(rule).errors == ["Condition 0.1: notIn requires a list value"]

    def test_self_dependency(self, validator):
        report = validator.validate_rule(make_rule("r1", depends_on=["r1"]))
        assert "Rule cannot depend on itself" in report.errors

    def test_placeholder_warnings(self, validator):
        rule = make_rule(
            "r1",
            titleTemplate="{#lunar_phase} Renew {?academic.isSTEM:now}",
        )
        report = validator.validate_rule(rule)
        assert report.is_valid
        assert "Unknown calculated placeholder: lunar_phase" in report.warnings
        assert "Malformed conditional placeholder: ?academic.isSTEM:now" in report.warnings


class TestValidateRuleSet:

    def test_duplicates_and_unknown_prerequisites(self, validator):
        rules = [make_rule("r1"), make_rule("r1"), make_rule("r2", depends_on=["ghost"])]
        report = validator.validate_rule_set(rules)
        assert "Duplicate rule ID: r1" in report.errors
        assert "[r2] Unknown prerequisite rule: ghost" in report.warnings

    def test_cycle(self, validator):
        rules = [make_rule("a", depends_on=["b"]), make_rule("b", depends_on=["a"])]
        report = validator.validate_rule_set(rules)
        assert "Dependency cycle: a -> b -> a" in report.errors

    def test_per_rule_errors_are_prefixed(self, validator):
        report = validator.validate_rule_set([make_rule("bad", conditions=[])])
        assert report.errors == ["[bad] At least one condition is required"]

    def test_validate_rules_helper(self):
        assert validate_rules([make_rule("ok"), make_rule("bad", conditions=[])]) == [
            "[bad] At least one condition is required"
        ]


class TestAnalyzer:

    def test_statistics(self):
        rules = [
            make_rule("a", priority=90, due_date_config={"type": "fixed", "baseDate": "2024-05-01"}),
            make_rule("b", priority=60, depends_on=["a"], visa_types=["F1", "OPT"]),
        ]
        stats = RuleAnalyzer.analyze_rule_set(rules)
        assert stats["total_rules"] == 2
        assert stats["active_rules"] == 2
        assert stats["by_visa_type"] == {"F1": 2, "OPT": 1}
        assert stats["by_date_type"] == {"fixed": 1, "none": 1}
        assert stats["with_dependencies"] == 1
        assert stats["average_priority"] == 75.0

    def test_empty(self):
        assert RuleAnalyzer.analyze_rule_set([])["average_priority"] == 0.0
