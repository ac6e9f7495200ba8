"""
Date Calculator - computes task due dates from ``SmartDateConfig``.

Strategies:
- fixed: a literal ISO date
- relative: a context date plus a signed offset, optionally moved off
  weekends and fixed holidays
- calculated: named formulas over the context (OPT window, passport renewal, ...)
- recurring: first day of the next month/quarter/half-year/year, or today
  plus a custom interval

Every strategy ends with min/max clamping.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from compliance_engine.context.models import UserContext
from compliance_engine.core.exceptions import DateCalculationError
from compliance_engine.core.logging import get_logger
from compliance_engine.core.offsets import Offset, OffsetUnit, add_months, parse_offset
from compliance_engine.evaluation.evaluator import ContextLike, as_lookup, resolve_path
from compliance_engine.rules.models import DateType, SmartDateConfig

logger = get_logger("date_calculator")

# (month, day) of holidays skipped when exclude_holidays is set
FIXED_HOLIDAYS: Tuple[Tuple[int, int], ...] = ((1, 1), (7, 4), (11, 11), (12, 25))

DEFAULT_MAX_UNEMPLOYMENT_DAYS = 90


class DateFormula(str, Enum):
    """Named due-date formulas for ``calculated`` configs"""
    OPT_APPLICATION_WINDOW = "opt_application_window"
    STEM_EXTENSION_DEADLINE = "stem_extension_deadline"
    PASSPORT_RENEWAL_URGENT = "passport_renewal_urgent"
    ADDRESS_UPDATE_DEADLINE = "address_update_deadline"
    UNEMPLOYMENT_GRACE_END = "unemployment_grace_end"


class RecurrenceCadence(str, Enum):
    """Named cadences for ``recurring`` configs"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi-annually"
    YEARLY = "yearly"

    @classmethod
    def lookup(cls, name: str) -> Optional["RecurrenceCadence"]:
        normalized = name.strip().lower().replace("_", "-")
        if normalized in ("semi-annual", "semiannual", "semiannually"):
            return cls.SEMI_ANNUALLY
        if normalized in ("annual", "annually"):
            return cls.YEARLY
        try:
            return cls(normalized)
        except ValueError:
            return None


def days_between(start: date, end: date) -> int:
    """Signed whole days from start to end."""
    return (end - start).days


def is_holiday(day: date) -> bool:
    return (day.month, day.day) in FIXED_HOLIDAYS


def next_business_day(day: date) -> date:
    """Move Saturday and Sunday forward to Monday."""
    if day.weekday() == 5:
        return day + timedelta(days=2)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


class DateCalculator:
    """
    Computes due dates from rule date configs.

    Args:
        clock: Returns the current time; ``datetime.now`` by default
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.now
        self._formulas: Dict[DateFormula, Callable[[UserContext, date], date]] = {
            DateFormula.OPT_APPLICATION_WINDOW: self._opt_application_window,
            DateFormula.STEM_EXTENSION_DEADLINE: self._stem_extension_deadline,
            DateFormula.PASSPORT_RENEWAL_URGENT: self._passport_renewal_urgent,
            DateFormula.ADDRESS_UPDATE_DEADLINE: self._address_update_deadline,
            DateFormula.UNEMPLOYMENT_GRACE_END: self._unemployment_grace_end,
        }

    def today(self) -> date:
        return self._clock().date()

    def compute_due_date(self, config: SmartDateConfig, context: UserContext) -> date:
        """
        Compute a due date.

        Args:
            config: Date strategy and parameters
            context: Subject context for field lookups

        Returns:
            Due date, clamped to the config's min/max

        Raises:
            DateCalculationError: On missing fields, bad literals or offsets,
                or unknown calculations
        """
        try:
            if config.type is DateType.FIXED:
                result = self._fixed(config)
            elif config.type is DateType.RELATIVE:
                result = self._relative(config, context)
            elif config.type is DateType.CALCULATED:
                result = self._calculated(config, context)
            elif config.type is DateType.RECURRING:
                result = self._recurring(config)
            else:
                raise DateCalculationError(f"Unknown date type: {config.type}")
        except DateCalculationError as e:
            e.context.setdefault("date_type", config.type.value)
            raise
        except (ValueError, OverflowError) as e:
            raise DateCalculationError(
                f"Date calculation failed: {e}", date_type=config.type.value
            ) from e

        return self.clamp(result, config)

    @staticmethod
    def clamp(value: date, config: SmartDateConfig) -> date:
        if config.min_date and value < config.min_date:
            return config.min_date
        if config.max_date and value > config.max_date:
            return config.max_date
        return value

    def describe(self, config: SmartDateConfig) -> str:
        """Human-readable summary of how a due date was derived."""
        if config.type is DateType.FIXED:
            return f"fixed: {config.base_date}"
        if config.type is DateType.RELATIVE:
            return f"relative: {config.base_date} {config.offset}"
        return f"{config.type.value}: {config.calculation}"

    # ========================================================================
    # STRATEGIES
    # ========================================================================

    def _fixed(self, config: SmartDateConfig) -> date:
        if not config.base_date:
            raise DateCalculationError("Fixed date requires baseDate")
        literal = config.base_date.strip()
        try:
            return date.fromisoformat(literal[:10])
        except ValueError:
            raise DateCalculationError(f"Invalid fixed date: {config.base_date}") from None

    def _relative(self, config: SmartDateConfig, context: UserContext) -> date:
        if not config.base_date or config.offset is None:
            raise DateCalculationError("Relative date requires baseDate and offset")

        base = resolve_path(as_lookup(context), config.base_date)
        if not isinstance(base, date):
            raise DateCalculationError(f"Base date field {config.base_date} not found in user context")
        if isinstance(base, datetime):
            base = base.date()

        result = config.offset.apply(base)
        if config.business_days_only:
            result = next_business_day(result)
        if config.exclude_holidays:
            while is_holiday(result):
                result = result + timedelta(days=1)
                if config.business_days_only:
                    result = next_business_day(result)
        return result

    def _calculated(self, config: SmartDateConfig, context: UserContext) -> date:
        try:
            formula = DateFormula((config.calculation or "").strip())
        except ValueError:
            raise DateCalculationError(f"Unknown calculation: {config.calculation}") from None
        return self._formulas[formula](context, self.today())

    def _recurring(self, config: SmartDateConfig) -> date:
        if not config.calculation:
            raise DateCalculationError("Recurring date requires a calculation")

        today = self.today()
        cadence = RecurrenceCadence.lookup(config.calculation)
        if cadence is RecurrenceCadence.MONTHLY:
            return add_months(today.replace(day=1), 1)
        if cadence is RecurrenceCadence.QUARTERLY:
            quarter_start = today.replace(month=(today.month - 1) // 3 * 3 + 1, day=1)
            return add_months(quarter_start, 3)
        if cadence is RecurrenceCadence.SEMI_ANNUALLY:
            half_start = today.replace(month=1 if today.month <= 6 else 7, day=1)
            return add_months(half_start, 6)
        if cadence is RecurrenceCadence.YEARLY:
            return date(today.year + 1, 1, 1)

        try:
            interval = parse_offset(config.calculation)
        except ValueError:
            raise DateCalculationError(f"Invalid recurrence interval: {config.calculation}") from None
        return interval.apply(today)

    # ========================================================================
    # NAMED FORMULAS
    # ========================================================================

    def _opt_application_window(self, context: UserContext, today: date) -> date:
        graduation = context.dates.graduation_date
        if graduation is None:
            raise DateCalculationError("Graduation date required for OPT calculation")
        window_opens = graduation - timedelta(days=90)
        return today + timedelta(days=7) if today >= window_opens else window_opens

    def _stem_extension_deadline(self, context: UserContext, today: date) -> date:
        opt_end = context.dates.opt_end_date
        if opt_end is None:
            raise DateCalculationError("OPT end date required for STEM extension calculation")
        return opt_end - timedelta(days=90)

    def _passport_renewal_urgent(self, context: UserContext, today: date) -> date:
        expiry = context.dates.passport_expiry_date
        if expiry is None:
            raise DateCalculationError("Passport expiry date required")
        renew_by = Offset(-6, OffsetUnit.MONTH).apply(expiry)
        return today + timedelta(days=14) if today >= renew_by else renew_by

    def _address_update_deadline(self, context: UserContext, today: date) -> date:
        moved = context.location.last_moved
        if moved is not None:
            return moved + timedelta(days=10)
        return today + timedelta(days=3)

    def _unemployment_grace_end(self, context: UserContext, today: date) -> date:
        employment_end = context.dates.employment_end_date
        if employment_end is None:
            raise DateCalculationError("Employment end date required for unemployment calculation")
        allowance = context.employment.max_unemployment_days or DEFAULT_MAX_UNEMPLOYMENT_DAYS
        remaining = allowance - context.employment.unemployment_days_used
        return employment_end + timedelta(days=remaining)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def is_in_past(self, value: date) -> bool:
        return value < self.today()

    def is_within_days(self, value: date, days: int) -> bool:
        """True when value falls between today and today + days inclusive."""
        return 0 <= days_between(self.today(), value) <= days
