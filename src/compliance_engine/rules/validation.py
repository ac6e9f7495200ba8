"""
Structural validation and statistics for rule definitions.

RuleValidator checks what the schema alone cannot: non-empty identifiers,
operand shapes per operator, compilable patterns, prerequisite references and
template placeholders. RuleAnalyzer summarizes a rule set for tooling.
"""

import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from compliance_engine.core.logging import get_logger
from compliance_engine.evaluation.dependencies import find_cycle
from compliance_engine.evaluation.templates import CALCULATED_VALUES, extract_placeholders
from compliance_engine.rules.models import (
    ConditionGroup,
    ConditionOperator,
    LeafCondition,
    RuleDefinition,
)

logger = get_logger("rule_validation")

_LIST_OPERATORS = {ConditionOperator.IN, ConditionOperator.NOT_IN}


class ValidationReport(BaseModel):
    """Outcome of a validation pass"""
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationReport", prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{e}" for e in other.errors)
        self.warnings.extend(f"{prefix}{w}" for w in other.warnings)


class RuleValidator:
    """Validates single rules and whole rule sets."""

    def validate_rule(self, rule: RuleDefinition) -> ValidationReport:
        report = ValidationReport()

        if not rule.id or not rule.id.strip():
            report.errors.append("Rule ID is required")
        if not rule.name or not rule.name.strip():
            report.errors.append("Rule name is required")
        if not rule.conditions:
            report.errors.append("At least one condition is required")
        if not rule.visa_types:
            report.errors.append("At least one visa type is required")
        if not rule.phases:
            report.errors.append("At least one phase is required")
        if rule.task_template is None:
            report.errors.append("Task template is required")
            return report

        for index, condition in enumerate(rule.conditions or []):
            self._check_condition(condition, f"Condition {index}", report)

        template = rule.task_template
        if not template.title_template.strip():
            report.errors.append("Task title template is required")
        if rule.id in template.depends_on:
            report.errors.append("Rule cannot depend on itself")

        for condition in template.auto_complete_conditions or []:
            self._check_condition(condition, "Auto-complete condition", report)

        report.merge(self.validate_template_placeholders(template.title_template))
        report.merge(self.validate_template_placeholders(template.description_template))
        return report

    def _check_condition(self, condition: Any, label: str, report: ValidationReport) -> None:
        if isinstance(condition, ConditionGroup):
            if not condition.nested:
                report.errors.append(f"{label}: nested group must contain at least one condition")
            for index, child in enumerate(condition.nested):
                self._check_condition(child, f"{label}.{index}", report)
            return

        if not isinstance(condition, LeafCondition):
            report.errors.append(f"{label}: unrecognized condition node")
            return

        if not condition.field.strip():
            report.errors.append(f"{label}: field is required")

        operator = condition.operator
        if operator is ConditionOperator.BETWEEN:
            if not isinstance(condition.value, list) or len(condition.value) != 2:
                report.errors.append(f"{label}: between requires exactly two values")
        elif operator in _LIST_OPERATORS:
            if not isinstance(condition.value, list):
                report.errors.append(f"{label}: {operator.value} requires a list value")
        elif operator is ConditionOperator.REGEX:
            try:
                re.compile(str(condition.value))
            except re.error as e:
                report.errors.append(f"{label}: invalid regex pattern ({e})")

    def validate_template_placeholders(self, template: str) -> ValidationReport:
        """Warn about calculated placeholders outside the catalogue and malformed conditionals."""
        report = ValidationReport()
        for placeholder in extract_placeholders(template):
            if placeholder.startswith("#"):
                name = placeholder[1:]
                if name not in CALCULATED_VALUES:
                    report.warnings.append(f"Unknown calculated placeholder: {name}")
            elif placeholder.startswith("?"):
                if len(placeholder[1:].split(":")) != 3:
                    report.warnings.append(f"Malformed conditional placeholder: {placeholder}")
        return report

    def validate_rule_set(self, rules: Sequence[RuleDefinition]) -> ValidationReport:
        """Validate every rule plus cross-rule constraints."""
        report = ValidationReport()

        counts = Counter(rule.id for rule in rules)
        for rule_id, count in counts.items():
            if count > 1:
                report.errors.append(f"Duplicate rule ID: {rule_id}")

        known_ids = set(counts)
        for rule in rules:
            report.merge(self.validate_rule(rule), prefix=f"[{rule.id}] ")
            for dependency in rule.task_template.depends_on:
                if dependency not in known_ids:
                    report.warnings.append(f"[{rule.id}] Unknown prerequisite rule: {dependency}")

        graph = {
            rule.id: [dep for dep in rule.task_template.depends_on if dep in known_ids]
            for rule in rules
        }
        cycle = find_cycle(graph)
        if cycle:
            report.errors.append(f"Dependency cycle: {' -> '.join(cycle)}")

        if report.errors:
            logger.warning("Rule set validation failed", errors=len(report.errors))
        return report


class RuleAnalyzer:
    """Summary statistics for a rule set."""

    @staticmethod
    def analyze_rule_set(rules: Iterable[RuleDefinition]) -> Dict[str, Any]:
        rules = list(rules)
        by_group: Counter = Counter()
        by_visa: Counter = Counter()
        by_phase: Counter = Counter()
        by_date_type: Counter = Counter()

        for rule in rules:
            by_group[rule.rule_group.value] += 1
            by_visa.update(visa.value for visa in rule.visa_types)
            by_phase.update(phase.value for phase in rule.phases)
            date_config = rule.task_template.due_date_config
            by_date_type[date_config.type.value if date_config else "none"] += 1

        total = len(rules)
        return {
            "total_rules": total,
            "active_rules": sum(1 for rule in rules if rule.is_active),
            "by_group": dict(by_group),
            "by_visa_type": dict(by_visa),
            "by_phase": dict(by_phase),
            "by_date_type": dict(by_date_type),
            "with_dependencies": sum(1 for rule in rules if rule.task_template.depends_on),
            "average_priority": round(sum(rule.priority for rule in rules) / total, 1) if total else 0.0,
        }


def validate_rules(rules: Sequence[RuleDefinition], validator: Optional[RuleValidator] = None) -> List[str]:
    """Return per-rule error strings (rule-set cross checks excluded)."""
    validator = validator or RuleValidator()
    errors: List[str] = []
    for rule in rules:
        report = validator.validate_rule(rule)
        errors.extend(f"[{rule.id}] {error}" for error in report.errors)
    return errors
