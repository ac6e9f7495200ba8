"""
Template Renderer - expands task title and description templates.

Placeholder forms:
- ``{?expr:when_true:when_false}`` conditional text
- ``{#name}`` a value from the calculated catalogue
- ``{field.path}`` a dot-notation lookup in the template context

The template context exposes the subject context fields at the top level,
the whole context under ``user``, derived values under ``calculated`` and
pre-formatted dates under ``dates``.
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from compliance_engine.context.models import UserContext, VisaPhase
from compliance_engine.core.exceptions import TemplateRenderingError
from compliance_engine.core.logging import get_logger
from compliance_engine.evaluation.evaluator import resolve_path

logger = get_logger("template_renderer")

PLACEHOLDER_PATTERN = re.compile(r"\{([?#]?)([^}]+)\}")

CONDITION_OPERATORS = (">=", "<=", ">", "<", "==", "!=")

CALCULATED_VALUES = (
    "days_until_graduation",
    "days_until_opt_expiry",
    "days_until_passport_expiry",
    "unemployment_days_remaining",
    "time_remaining_friendly",
    "urgency_level",
    "urgency_indicator",
    "address_update_deadline",
    "job_reporting_deadline",
    "visa_status_summary",
    "compliance_score",
    "next_important_date",
)

URGENCY_INDICATORS = {
    "critical": "\U0001F534",
    "high": "\U0001F7E0",
    "medium": "\U0001F7E1",
    "low": "\U0001F7E2",
}

PHASE_DISPLAY_NAMES = {
    VisaPhase.PRE_ARRIVAL: "Pre-Arrival",
    VisaPhase.INITIAL_ENTRY: "Initial Entry",
    VisaPhase.DURING_PROGRAM: "During Program",
    VisaPhase.PRE_GRADUATION: "Pre-Graduation",
    VisaPhase.POST_GRADUATION: "Post-Graduation",
    VisaPhase.OPT_APPLICATION: "OPT Application",
    VisaPhase.OPT_ACTIVE: "OPT Active",
    VisaPhase.STEM_APPLICATION: "STEM OPT Application",
    VisaPhase.STEM_ACTIVE: "STEM OPT Active",
    VisaPhase.STATUS_CHANGE: "Status Change",
    VisaPhase.DEPARTURE_PREP: "Departure Preparation",
    VisaPhase.GENERAL: "General",
}

_FORMATTED_DATE_FIELDS = (
    "graduationDate",
    "optEndDate",
    "passportExpiryDate",
    "visaExpiryDate",
    "employmentStartDate",
    "usEntryDate",
    "courseStartDate",
)


def extract_placeholders(template: str) -> List[str]:
    """Placeholder bodies including their ``?``/``#`` prefix."""
    return [prefix + body for prefix, body in PLACEHOLDER_PATTERN.findall(template or "")]


def format_date(value: date) -> str:
    """Long form, e.g. ``January 5, 2024``."""
    return f"{value:%B} {value.day}, {value.year}"


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (date, datetime)):
        return format_date(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(item) for item in value)
    return str(value)


def format_time_remaining(days: Optional[int]) -> str:
    if days is None:
        return "Unknown"
    if days < 0:
        return "Expired"
    if days == 0:
        return "Today"
    if days == 1:
        return "1 day"
    if days < 30:
        return f"{days} days"
    if days < 365:
        months = days // 30
        return f"{months} month{'s' if months != 1 else ''}"
    years, months = days // 365, (days % 365) // 30
    text = f"{years} year{'s' if years != 1 else ''}"
    if months:
        text += f" {months} month{'s' if months != 1 else ''}"
    return text


def urgency_level(risk_score: int) -> str:
    if risk_score >= 80:
        return "critical"
    if risk_score >= 60:
        return "high"
    if risk_score >= 30:
        return "medium"
    return "low"


def parse_literal(text: str) -> Any:
    """Literal on the right-hand side of a conditional comparison."""
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered in ("null", "none"):
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, (int, float)) and not isinstance(right, bool):
        return parse_literal(left) == right
    if isinstance(right, str) and isinstance(left, (int, float)) and not isinstance(left, bool):
        return parse_literal(right) == left
    return left == right


class TemplateRenderer:
    """
    Renders task templates against a subject context.

    Args:
        clock: Returns the current time for day counts and today's date
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.now

    def render(self, template: str, context: UserContext) -> str:
        """
        Expand every placeholder in a single left-to-right pass.

        Raises:
            TemplateRenderingError: On unexpected internal failures
        """
        if not template:
            return ""
        try:
            values = self.build_template_context(context)
            return PLACEHOLDER_PATTERN.sub(lambda match: self._replace(match, values), template)
        except TemplateRenderingError:
            raise
        except Exception as e:
            raise TemplateRenderingError(
                f"Template rendering failed: {e}", subject_id=context.user_id
            ) from e

    def _replace(self, match: "re.Match[str]", values: Mapping) -> str:
        prefix, body = match.group(1), match.group(2)
        if prefix == "?":
            return self._render_conditional(body, values)
        if prefix == "#":
            return self._render_calculated(body.strip(), values)
        return format_value(resolve_path(values, body.strip()))

    def _render_conditional(self, expression: str, values: Mapping) -> str:
        parts = expression.split(":")
        if len(parts) != 3:
            return f"{{Invalid conditional: {expression}}}"
        condition, when_true, when_false = parts
        return when_true if self.evaluate_condition(condition.strip(), values) else when_false

    def _render_calculated(self, name: str, values: Mapping) -> str:
        calculated = values["calculated"]
        if name not in calculated:
            return f"{{Unknown calculation: {name}}}"
        value = calculated[name]
        if name.startswith("days_until_") or name == "unemployment_days_remaining":
            return "N/A" if value is None else str(value)
        return format_value(value)

    def evaluate_condition(self, condition: str, values: Mapping) -> bool:
        """Evaluate ``!path``, ``path OP literal`` or plain truthiness."""
        if condition.startswith("!"):
            return not resolve_path(values, condition[1:].strip())

        for operator in CONDITION_OPERATORS:
            if operator in condition:
                left_path, right_text = condition.split(operator, 1)
                left = resolve_path(values, left_path.strip())
                right = parse_literal(right_text)
                try:
                    if operator == ">=":
                        return left >= right
                    if operator == "<=":
                        return left <= right
                    if operator == ">":
                        return left > right
                    if operator == "<":
                        return left < right
                    if operator == "==":
                        return _loose_equals(left, right)
                    return not _loose_equals(left, right)
                except TypeError:
                    return False

        return bool(resolve_path(values, condition))

    # ========================================================================
    # TEMPLATE CONTEXT
    # ========================================================================

    def build_template_context(self, context: UserContext) -> Dict[str, Any]:
        today = self._clock().date()
        user = context.to_lookup()
        values: Dict[str, Any] = dict(user)
        values["user"] = user
        values["calculated"] = self.calculated_values(context, today)
        values["dates"] = self.formatted_dates(context, today)
        values["phaseName"] = PHASE_DISPLAY_NAMES.get(context.current_phase, context.current_phase.value)
        return values

    def formatted_dates(self, context: UserContext, today: date) -> Dict[str, str]:
        raw = context.dates.model_dump(by_alias=True)
        formatted = {key: format_date(value) for key, value in raw.items() if value is not None}
        for key in _FORMATTED_DATE_FIELDS:
            formatted.setdefault(key, "")
        formatted["today"] = format_date(today)
        return formatted

    def calculated_values(self, context: UserContext, today: date) -> Dict[str, Any]:
        dates = context.dates
        employment = context.employment

        def days_until(target: Optional[date]) -> Optional[int]:
            return (target - today).days if target is not None else None

        passport_days = days_until(dates.passport_expiry_date)
        unemployment_remaining = (
            max(0, employment.max_unemployment_days - employment.unemployment_days_used)
            if employment.max_unemployment_days > 0
            else None
        )
        address_deadline = (
            format_date(context.location.last_moved + timedelta(days=10))
            if context.location.last_moved
            else ""
        )
        job_deadline = (
            format_date(dates.employment_start_date + timedelta(days=10))
            if dates.employment_start_date
            else ""
        )
        level = urgency_level(context.compliance.risk_score)

        return {
            "days_until_graduation": days_until(dates.graduation_date),
            "days_until_opt_expiry": days_until(dates.opt_end_date),
            "days_until_passport_expiry": passport_days,
            "unemployment_days_remaining": unemployment_remaining,
            "time_remaining_friendly": format_time_remaining(passport_days),
            "urgency_level": level,
            "urgency_indicator": URGENCY_INDICATORS[level],
            "address_update_deadline": address_deadline,
            "job_reporting_deadline": job_deadline,
            "visa_status_summary": (
                f"{context.visa_type.value} - "
                f"{PHASE_DISPLAY_NAMES.get(context.current_phase, context.current_phase.value)}"
            ),
            "compliance_score": 100 - context.compliance.risk_score,
            "next_important_date": self._next_important_date(context, today),
        }

    @staticmethod
    def _next_important_date(context: UserContext, today: date) -> str:
        upcoming = [
            value
            for value in context.dates.model_dump().values()
            if isinstance(value, date) and value >= today
        ]
        return format_date(min(upcoming)) if upcoming else ""

