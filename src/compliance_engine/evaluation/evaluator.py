"""
Rule Evaluator - interprets condition trees against a subject context.

Key Features:
- Dot-path field resolution over camelCase context aliases
- Fourteen comparison operators with type-aware equality and ordering
- Time-relative comparisons against now plus a duration
- AND/OR groups with negation
- Guarded regular expressions (length cap and backtracking blacklist)
- Per-condition failures reported as diagnostics instead of raised
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic import BaseModel

from compliance_engine.context.models import UserContext
from compliance_engine.core.exceptions import ConditionEvaluationError
from compliance_engine.core.logging import get_logger
from compliance_engine.evaluation.models import ConditionResult
from compliance_engine.rules.models import (
    ConditionGroup,
    ConditionOperator,
    LeafCondition,
    LogicOperator,
    RuleCondition,
)

logger = get_logger("rule_evaluator")

ContextLike = Union[UserContext, Mapping]

MAX_REGEX_LENGTH = 200
UNSAFE_REGEX = re.compile(r"(\([^)]*[+*][^)]*\)\s*[+*])|(\.\*\+)|(\+\+)|(\*\*)")

_ORDERING_OPERATORS = {
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL,
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
}


# ============================================================================
# VALUE HELPERS
# ============================================================================

def as_lookup(context: ContextLike) -> Mapping:
    """Nested mapping view of a context, keyed by camelCase aliases."""
    if isinstance(context, BaseModel):
        return context.model_dump(by_alias=True)
    return context


def resolve_path(source: Mapping, path: str) -> Any:
    """Follow a dot-separated path; any missing segment yields None. Enums resolve to their values."""
    current: Any = source
    for segment in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
        if current is None:
            return None
    if isinstance(current, Enum):
        return current.value
    return current


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce dates, datetimes and ISO strings to a naive datetime."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            try:
                return datetime.combine(date.fromisoformat(text[:10]), time.min)
            except ValueError:
                return None
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_temporal(value: Any) -> bool:
    return isinstance(value, (date, datetime))


def is_equal(actual: Any, expected: Any) -> bool:
    """Loose equality: case-insensitive strings, value-wise dates, lists and maps."""
    if actual is expected:
        return True
    if actual is None or expected is None:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if _is_temporal(actual) or _is_temporal(expected):
        left, right = to_datetime(actual), to_datetime(expected)
        return left is not None and left == right
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.casefold() == expected.casefold()
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        return len(actual) == len(expected) and all(
            is_equal(a, e) for a, e in zip(actual, expected)
        )
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        return set(actual) == set(expected) and all(
            is_equal(actual[key], expected[key]) for key in actual
        )
    return actual == expected


def compare_values(actual: Any, expected: Any) -> int:
    """Three-way comparison over dates, then numbers, then case-folded strings."""
    if _is_temporal(actual) or _is_temporal(expected):
        left, right = to_datetime(actual), to_datetime(expected)
        if left is not None and right is not None:
            return (left > right) - (left < right)
    if _is_number(actual) and _is_number(expected):
        return (actual > expected) - (actual < expected)
    left_text, right_text = str(actual).casefold(), str(expected).casefold()
    return (left_text > right_text) - (left_text < right_text)


def contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected).casefold() in actual.casefold()
    if isinstance(actual, (list, tuple, set)):
        return any(is_equal(item, expected) for item in actual)
    if isinstance(actual, Mapping):
        return any(is_equal(item, expected) for item in actual.values())
    return False


# ============================================================================
# EVALUATOR
# ============================================================================

class RuleEvaluator:
    """
    Evaluates rule conditions against a subject context.

    Args:
        clock: Returns the current time for time-relative comparisons
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.now

    def evaluate(
        self, conditions: Sequence[RuleCondition], context: ContextLike
    ) -> List[ConditionResult]:
        """Evaluate each top-level condition; results keep input order."""
        lookup = as_lookup(context)
        return [self._evaluate_node(condition, lookup) for condition in conditions]

    def matches(self, conditions: Sequence[RuleCondition], context: ContextLike) -> bool:
        """True when every top-level condition passes."""
        return all(result.passed for result in self.evaluate(conditions, context))

    def evaluate_condition(self, condition: RuleCondition, context: ContextLike) -> ConditionResult:
        return self._evaluate_node(condition, as_lookup(context))

    def _evaluate_node(self, condition: RuleCondition, lookup: Mapping) -> ConditionResult:
        if isinstance(condition, ConditionGroup):
            return self._evaluate_group(condition, lookup)

        try:
            return self._evaluate_leaf(condition, lookup)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.debug("Condition evaluation error", field=condition.field, error=message)
            return ConditionResult(
                condition=condition,
                passed=False,
                actual_value=None,
                expected_value=condition.value,
                reason=f"Evaluation error: {message}",
            )

    def _evaluate_group(self, group: ConditionGroup, lookup: Mapping) -> ConditionResult:
        results = [self._evaluate_node(child, lookup) for child in group.nested]
        if group.logic_operator is LogicOperator.OR:
            passed = any(result.passed for result in results)
        else:
            passed = all(result.passed for result in results)
        if group.negate:
            passed = not passed

        return ConditionResult(
            condition=group,
            passed=passed,
            actual_value=[result.actual_value for result in results],
            expected_value=[result.expected_value for result in results],
            reason=(
                "Nested conditions met"
                if passed
                else f"Nested conditions failed ({group.logic_operator.value} logic)"
            ),
            nested_results=results,
        )

    def _evaluate_leaf(self, condition: LeafCondition, lookup: Mapping) -> ConditionResult:
        actual = resolve_path(lookup, condition.field)
        operator = condition.operator

        if operator is ConditionOperator.EXISTS:
            passed = actual is not None
        elif operator is ConditionOperator.NOT_EXISTS:
            passed = actual is None
        elif actual is None:
            passed = False
        elif condition.time_value is not None:
            passed = self._compare_to_now(actual, condition)
        else:
            passed = self.compare(actual, operator, condition.value, condition.field)

        if passed:
            reason = "Condition met"
        else:
            reason = f"Field '{condition.field}' ({actual}) {operator.value} {condition.value}"
            if condition.time_value is not None:
                reason += f" (time: {condition.time_value})"
            reason += " - condition not met"

        return ConditionResult(
            condition=condition,
            passed=passed,
            actual_value=actual,
            expected_value=condition.value,
            reason=reason,
        )

    def _compare_to_now(self, actual: Any, condition: LeafCondition) -> bool:
        """Compare a date field against now plus the condition's duration."""
        actual_time = to_datetime(actual)
        if actual_time is None:
            raise ConditionEvaluationError(
                f"Cannot compare non-date value {actual!r} with a time value",
                field=condition.field,
                operator=condition.operator.value,
            )
        boundary = self._clock().replace(tzinfo=None) + condition.time_value.to_timedelta()
        return self.compare(actual_time, condition.operator, boundary, condition.field)

    def compare(
        self, actual: Any, operator: ConditionOperator, expected: Any, field: str = ""
    ) -> bool:
        """Apply one operator to an already-resolved, non-null value."""
        if operator is ConditionOperator.EQUALS:
            return is_equal(actual, expected)
        if operator is ConditionOperator.NOT_EQUALS:
            return not is_equal(actual, expected)

        if operator in _ORDERING_OPERATORS:
            order = compare_values(actual, expected)
            if operator is ConditionOperator.LESS_THAN:
                return order < 0
            if operator is ConditionOperator.LESS_THAN_OR_EQUAL:
                return order <= 0
            if operator is ConditionOperator.GREATER_THAN:
                return order > 0
            return order >= 0

        if operator is ConditionOperator.CONTAINS:
            return contains(actual, expected)
        if operator is ConditionOperator.NOT_CONTAINS:
            return not contains(actual, expected)

        if operator is ConditionOperator.IN:
            return isinstance(expected, (list, tuple)) and any(is_equal(actual, item) for item in expected)
        if operator is ConditionOperator.NOT_IN:
            return isinstance(expected, (list, tuple)) and not any(is_equal(actual, item) for item in expected)

        if operator is ConditionOperator.BETWEEN:
            if not isinstance(expected, (list, tuple)) or len(expected) != 2:
                raise ConditionEvaluationError(
                    "Between operator requires exactly 2 values",
                    field=field,
                    operator=operator.value,
                )
            low, high = expected
            return compare_values(actual, low) >= 0 and compare_values(actual, high) <= 0

        if operator is ConditionOperator.REGEX:
            return self._regex_search(str(expected), str(actual), field)

        # Exhaustive over ConditionOperator; exists/notExists are handled by the caller.
        raise ConditionEvaluationError(
            f"Unsupported operator: {operator.value}", field=field, operator=operator.value
        )

    @staticmethod
    def _regex_search(pattern: str, text: str, field: str = "") -> bool:
        if len(pattern) > MAX_REGEX_LENGTH:
            raise ConditionEvaluationError(
                f"Regex pattern too long (max {MAX_REGEX_LENGTH} characters)",
                field=field,
                operator=ConditionOperator.REGEX.value,
            )
        if UNSAFE_REGEX.search(pattern):
            raise ConditionEvaluationError(
                "Regex pattern contains potentially dangerous constructs",
                field=field,
                operator=ConditionOperator.REGEX.value,
            )
        try:
            return re.search(pattern, text) is not None
        except re.error as e:
            raise ConditionEvaluationError(
                f"Invalid regex pattern: {e}", field=field, operator=ConditionOperator.REGEX.value
            ) from e
