"""Tests for RuleEvaluator."""

import pytest
from pydantic import TypeAdapter, ValidationError

from compliance_engine.evaluation.evaluator import (
    RuleEvaluator,
    compare_values,
    is_equal,
    resolve_path,
)
from compliance_engine.rules.models import (
    ConditionGroup,
    ConditionOperator,
    LeafCondition,
    LogicOperator,
    RuleCondition,
)

from tests.conftest import fixed_clock

condition_adapter = TypeAdapter(RuleCondition)


def leaf(field, operator, value=None, **kwargs):
    return LeafCondition(field=field, operator=operator, value=value, **kwargs)


@pytest.fixture
def evaluator():
    return RuleEvaluator(clock=fixed_clock)


class TestValueHelpers:

    def test_resolve_path(self):
        source = {"a": {"b": {"c": 1}}, "x": 5}
        assert resolve_path(source, "a.b.c") == 1
        assert resolve_path(source, "a.missing.c") is None
        assert resolve_path(source, "x.y") is None

    def test_resolve_path_unwraps_enums(self, stem_context):
        lookup = stem_context.to_lookup()
        assert type(resolve_path(lookup, "visaType")) is str
        assert resolve_path(lookup, "visaType") == "F1"
        assert resolve_path(lookup, "currentPhase") == "during_program"

    def test_is_equal(self):
        assert is_equal("Hello", "hello")
        assert is_equal(["A", 1], ["a", 1])
        assert not is_equal(True, 1)
        assert not is_equal(None, "x")

    def test_compare_values(self):
        assert compare_values(3, 5) < 0
        assert compare_values("2024-05-01", "2024-04-01") > 0
        assert compare_values("b", "A") > 0


class TestLeafConditions:

    def test_equals_is_case_insensitive(self, evaluator, stem_context):
        result = evaluator.evaluate_condition(
            leaf("academic.university", ConditionOperator.EQUALS, "state university"), stem_context
        )
        assert result.passed
        assert result.reason == "Condition met"
        assert result.actual_value == "State University"

    def test_stem_flag_uses_wire_alias(self, evaluator, stem_context):
        condition = leaf("academic.isSTEM", ConditionOperator.EQUALS, True)
        assert evaluator.evaluate_condition(condition, stem_context).passed

        non_stem = stem_context.model_copy(
            update={"academic": stem_context.academic.model_copy(update={"is_stem": False})}
        )
        assert not evaluator.evaluate_condition(condition, non_stem).passed

    def test_missing_field_fails_non_existence_operators(self, evaluator, stem_context):
        result = evaluator.evaluate_condition(
            leaf("academic.gpa", ConditionOperator.GREATER_THAN, 3.0), stem_context
        )
        assert not result.passed
        assert result.actual_value is None
        assert result.reason.endswith("- condition not met")

    def test_exists_and_not_exists(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("dates.graduationDate", ConditionOperator.EXISTS), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("dates.optEndDate", ConditionOperator.NOT_EXISTS), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("foo.bar.baz", ConditionOperator.NOT_EXISTS), stem_context
        ).passed

    def test_in_and_not_in(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("visaType", ConditionOperator.IN, ["f1", "J1"]), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("visaType", ConditionOperator.NOT_IN, ["H1B"]), stem_context
        ).passed
        # Non-list operands never match
        assert not evaluator.evaluate_condition(
            leaf("visaType", ConditionOperator.IN, "F1"), stem_context
        ).passed

    def test_contains(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("academic.university", ConditionOperator.CONTAINS, "state"), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("academic.previousUniversities", ConditionOperator.CONTAINS, "old college"), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("academic.university", ConditionOperator.NOT_CONTAINS, "tech"), stem_context
        ).passed

    def test_between(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("employment.unemploymentDaysUsed", ConditionOperator.BETWEEN, [10, 60]), stem_context
        ).passed

    def test_between_requires_two_values(self, evaluator, stem_context):
        result = evaluator.evaluate_condition(
            leaf("employment.unemploymentDaysUsed", ConditionOperator.BETWEEN, [10]), stem_context
        )
        assert not result.passed
        assert result.reason == "Evaluation error: Between operator requires exactly 2 values"

    def test_date_comparisons(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("dates.usEntryDate", ConditionOperator.EQUALS, "2024-01-01"), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("dates.usEntryDate", ConditionOperator.LESS_THAN, "2024-02-01"), stem_context
        ).passed

    def test_regex(self, evaluator, stem_context):
        assert evaluator.evaluate_condition(
            leaf("academic.university", ConditionOperator.REGEX, "^State"), stem_context
        ).passed

    def test_enum_fields_compare_by_value(self, evaluator, stem_context):
        regex = evaluator.evaluate_condition(leaf("visaType", ConditionOperator.REGEX, "^F1$"), stem_context)
        assert regex.passed
        mismatch = evaluator.evaluate_condition(leaf("visaType", ConditionOperator.REGEX, "^H1B$"), stem_context)
        assert mismatch.reason == "Field 'visaType' (F1) regex ^H1B$ - condition not met"
        assert evaluator.evaluate_condition(
            leaf("currentPhase", ConditionOperator.LESS_THAN, "e"), stem_context
        ).passed
        assert evaluator.evaluate_condition(
            leaf("currentPhase", ConditionOperator.CONTAINS, "program"), stem_context
        ).passed

    @pytest.mark.parametrize("pattern,message", [
        ("a" * 201, "Regex pattern too long (max 200 characters)"),
        ("(a+)+", "Regex pattern contains potentially dangerous constructs"),
    ])
    def test_regex_guard(self, evaluator, stem_context, pattern, message):
        result = evaluator.evaluate_condition(
            leaf("academic.university", ConditionOperator.REGEX, pattern), stem_context
        )
        assert not result.passed
        assert result.reason == f"Evaluation error: {message}"


class TestTimeValues:
    """Date fields compared with now + duration (now is 2024-03-01)."""

    def test_within_window(self, evaluator, stem_context):
        condition = leaf("dates.passportExpiryDate", ConditionOperator.LESS_THAN, time_value="180days")
        assert evaluator.evaluate_condition(condition, stem_context).passed

    def test_beyond_window(self, evaluator, stem_context):
        condition = leaf("dates.passportExpiryDate", ConditionOperator.GREATER_THAN, time_value="180days")
        result = evaluator.evaluate_condition(condition, stem_context)
        assert not result.passed
        assert "(time: 180days)" in result.reason

    def test_non_date_field(self, evaluator, stem_context):
        condition = leaf("academic.university", ConditionOperator.LESS_THAN, time_value="30days")
        result = evaluator.evaluate_condition(condition, stem_context)
        assert not result.passed
        assert result.reason.startswith("Evaluation error:")

    def test_invalid_time_value_rejected_at_parse(self):
        with pytest.raises(ValidationError):
            leaf("dates.passportExpiryDate", ConditionOperator.LESS_THAN, time_value="soon")


class TestGroups:

    def test_or_group(self, evaluator, stem_context):
        group = ConditionGroup(
            logic_operator=LogicOperator.OR,
            nested=[
                leaf("academic.gpa", ConditionOperator.EXISTS),
                leaf("academic.isSTEM", ConditionOperator.EQUALS, True),
            ],
        )
        result = evaluator.evaluate_condition(group, stem_context)
        assert result.passed
        assert result.reason == "Nested conditions met"
        assert [r.passed for r in result.nested_results] == [False, True]

    def test_negated_group(self, evaluator, stem_context):
        group = ConditionGroup(
            logic_operator=LogicOperator.OR,
            negate=True,
            nested=[leaf("academic.isSTEM", ConditionOperator.EQUALS, True)],
        )
        result = evaluator.evaluate_condition(group, stem_context)
        assert not result.passed
        assert result.reason == "Nested conditions failed (OR logic)"

    def test_and_group_fails_on_one_child(self, evaluator, stem_context):
        group = ConditionGroup(nested=[
            leaf("academic.isSTEM", ConditionOperator.EQUALS, True),
            leaf("documents.eadValid", ConditionOperator.EQUALS, True),
        ])
        result = evaluator.evaluate_condition(group, stem_context)
        assert not result.passed
        assert result.reason == "Nested conditions failed (AND logic)"

    def test_errors_do_not_stop_siblings(self, evaluator, stem_context):
        results = evaluator.evaluate(
            [
                leaf("employment.unemploymentDaysUsed", ConditionOperator.BETWEEN, 5),
                leaf("academic.isSTEM", ConditionOperator.EQUALS, True),
            ],
            stem_context,
        )
        assert [r.passed for r in results] == [False, True]
        assert not evaluator.matches(
            [leaf("academic.isSTEM", ConditionOperator.EQUALS, False)], stem_context
        )

    def test_plain_mapping_context(self, evaluator):
        assert evaluator.matches([leaf("a.b", "equals", 1)], {"a": {"b": 1}})


class TestConditionParsing:
    """Tagged-union parsing of rule-file conditions."""

    def test_group_from_wire_data(self):
        condition = condition_adapter.validate_python({
            "logicOperator": "OR",
            "nested": [
                {"field": "employment.eVerifyCompliant", "operator": "notExists"},
                {"nested": [{"field": "academic.isSTEM", "operator": "equals", "value": True}]},
            ],
        })
        assert isinstance(condition, ConditionGroup)
        assert isinstance(condition.nested[1], ConditionGroup)

    def test_leaf_from_wire_data(self):
        condition = condition_adapter.validate_python(
            {"field": "dates.passportExpiryDate", "operator": "lessThan", "timeValue": "6months"}
        )
        assert isinstance(condition, LeafCondition)
        assert str(condition.time_value) == "6months"

    def test_mixed_shape_rejected(self):
        with pytest.raises(ValidationError):
            condition_adapter.validate_python({
                "field": "academic.isSTEM",
                "operator": "equals",
                "nested": [{"field": "a", "operator": "exists"}],
            })

    def test_empty_group_rejected(self):
        with pytest.raises(ValidationError):
            condition_adapter.validate_python({"nested": []})

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationError):
            condition_adapter.validate_python({"field": "a", "operator": "approximately"})
