"""Tests for DateCalculator (today is 2024-03-01)."""

from datetime import date

import pytest
from pydantic import ValidationError

from compliance_engine.context.models import (
    EmploymentInfo,
    ImportantDates,
    LocationInfo,
    UserContext,
)
from compliance_engine.core.exceptions import DateCalculationError
from compliance_engine.evaluation.dates import (
    DateCalculator,
    RecurrenceCadence,
    is_holiday,
    next_business_day,
)
from compliance_engine.rules.models import SmartDateConfig

from tests.conftest import fixed_clock


def config(**data):
    return SmartDateConfig.model_validate(data)


def context_with(dates=None, employment=None, location=None):
    return UserContext(
        user_id="s1",
        dates=ImportantDates(**(dates or {})),
        employment=EmploymentInfo(**(employment or {})),
        location=LocationInfo(**(location or {})),
    )


@pytest.fixture
def calculator():
    return DateCalculator(clock=fixed_clock)


class TestHelpers:

    def test_next_business_day(self):
        assert next_business_day(date(2024, 1, 6)) == date(2024, 1, 8)  # Saturday
        assert next_business_day(date(2024, 1, 7)) == date(2024, 1, 8)  # Sunday
        assert next_business_day(date(2024, 1, 9)) == date(2024, 1, 9)

    def test_is_holiday(self):
        assert is_holiday(date(2024, 7, 4))
        assert is_holiday(date(2031, 12, 25))
        assert not is_holiday(date(2024, 7, 5))

    @pytest.mark.parametrize("name,expected", [
        ("monthly", RecurrenceCadence.MONTHLY),
        ("Semi_Annually", RecurrenceCadence.SEMI_ANNUALLY),
        ("annual", RecurrenceCadence.YEARLY),
        ("fortnightly", None),
    ])
    def test_cadence_lookup(self, name, expected):
        assert RecurrenceCadence.lookup(name) is expected


class TestRelative:

    def test_plain_offset(self, calculator):
        ctx = context_with(dates={"us_entry_date": date(2024, 1, 1)})
        due = calculator.compute_due_date(
            config(type="relative", baseDate="dates.usEntryDate", offset="+90days"), ctx
        )
        assert due == date(2024, 3, 31)

    def test_month_offset_clamps(self, calculator):
        ctx = context_with(dates={"passport_expiry_date": date(2024, 8, 31)})
        due = calculator.compute_due_date(
            config(type="relative", baseDate="dates.passportExpiryDate", offset="-6months"), ctx
        )
        assert due == date(2024, 2, 29)

    def test_business_days(self, calculator):
        ctx = context_with(dates={"us_entry_date": date(2024, 1, 1)})
        due = calculator.compute_due_date(
            config(type="relative", baseDate="dates.usEntryDate", offset="+5days", businessDaysOnly=True),
            ctx,
        )
        assert due == date(2024, 1, 8)

    def test_holiday_skipped(self, calculator):
        ctx = context_with(dates={"us_entry_date": date(2024, 6, 27)})
        due = calculator.compute_due_date(
            config(type="relative", baseDate="dates.usEntryDate", offset="+7days", excludeHolidays=True),
            ctx,
        )
        assert due == date(2024, 7, 5)

    def test_holiday_then_weekend(self, calculator):
        # 2026-12-25 is a Friday; the next day is a Saturday
        ctx = context_with(dates={"us_entry_date": date(2026, 12, 18)})
        due = calculator.compute_due_date(
            config(
                type="relative",
                baseDate="dates.usEntryDate",
                offset="+7days",
                businessDaysOnly=True,
                excludeHolidays=True,
            ),
            ctx,
        )
        assert due == date(2026, 12, 28)

    def test_missing_base_field(self, calculator):
        with pytest.raises(DateCalculationError, match="Base date field dates.graduationDate not found"):
            calculator.compute_due_date(
                config(type="relative", baseDate="dates.graduationDate", offset="+1day"), context_with()
            )

    def test_missing_offset(self, calculator):
        ctx = context_with(dates={"us_entry_date": date(2024, 1, 1)})
        with pytest.raises(DateCalculationError, match="requires baseDate and offset"):
            calculator.compute_due_date(config(type="relative", baseDate="dates.usEntryDate"), ctx)

    def test_malformed_offset_rejected_at_parse(self):
        with pytest.raises(ValidationError):
            config(type="relative", baseDate="dates.usEntryDate", offset="90 days")


class TestFixedAndClamp:

    def test_fixed(self, calculator):
        assert calculator.compute_due_date(
            config(type="fixed", baseDate="2024-05-01"), context_with()
        ) == date(2024, 5, 1)

    def test_fixed_invalid_literal(self, calculator):
        with pytest.raises(DateCalculationError, match="Invalid fixed date"):
            calculator.compute_due_date(config(type="fixed", baseDate="next week"), context_with())

    def test_clamp_to_max(self, calculator):
        due = calculator.compute_due_date(
            config(type="fixed", baseDate="2024-05-01", maxDate="2024-04-15"), context_with()
        )
        assert due == date(2024, 4, 15)

    def test_clamp_to_min(self, calculator):
        due = calculator.compute_due_date(
            config(type="fixed", baseDate="2024-05-01", minDate="2024-06-01"), context_with()
        )
        assert due == date(2024, 6, 1)

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValidationError):
            config(type="fixed", baseDate="2024-05-01", minDate="2024-06-01", maxDate="2024-05-01")


class TestCalculated:

    def test_opt_window_not_yet_open(self, calculator):
        ctx = context_with(dates={"graduation_date": date(2024, 8, 15)})
        due = calculator.compute_due_date(config(type="calculated", calculation="opt_application_window"), ctx)
        assert due == date(2024, 5, 17)

    def test_opt_window_already_open(self, calculator):
        ctx = context_with(dates={"graduation_date": date(2024, 5, 1)})
        due = calculator.compute_due_date(config(type="calculated", calculation="opt_application_window"), ctx)
        assert due == date(2024, 3, 8)

    def test_opt_window_requires_graduation(self, calculator):
        with pytest.raises(DateCalculationError, match="Graduation date required"):
            calculator.compute_due_date(
                config(type="calculated", calculation="opt_application_window"), context_with()
            )

    def test_stem_extension_deadline(self, calculator):
        ctx = context_with(dates={"opt_end_date": date(2024, 9, 30)})
        due = calculator.compute_due_date(config(type="calculated", calculation="stem_extension_deadline"), ctx)
        assert due == date(2024, 7, 2)

    @pytest.mark.parametrize("expiry,expected", [
        (date(2025, 1, 15), date(2024, 7, 15)),
        (date(2024, 6, 1), date(2024, 3, 15)),
    ])
    def test_passport_renewal(self, calculator, expiry, expected):
        ctx = context_with(dates={"passport_expiry_date": expiry})
        due = calculator.compute_due_date(config(type="calculated", calculation="passport_renewal_urgent"), ctx)
        assert due == expected

    def test_address_update_deadline(self, calculator):
        moved = context_with(location={"last_moved": date(2024, 2, 25)})
        cfg = config(type="calculated", calculation="address_update_deadline")
        assert calculator.compute_due_date(cfg, moved) == date(2024, 3, 6)
        assert calculator.compute_due_date(cfg, context_with()) == date(2024, 3, 4)

    @pytest.mark.parametrize("max_days", [90, 0])
    def test_unemployment_grace_end(self, calculator, max_days):
        ctx = context_with(
            dates={"employment_end_date": date(2024, 2, 1)},
            employment={"unemployment_days_used": 30, "max_unemployment_days": max_days},
        )
        due = calculator.compute_due_date(config(type="calculated", calculation="unemployment_grace_end"), ctx)
        assert due == date(2024, 4, 1)

    def test_unknown_calculation(self, calculator):
        with pytest.raises(DateCalculationError, match="Unknown calculation: lunar_cycle"):
            calculator.compute_due_date(config(type="calculated", calculation="lunar_cycle"), context_with())


class TestRecurring:

    @pytest.mark.parametrize("calculation,expected", [
        ("monthly", date(2024, 4, 1)),
        ("quarterly", date(2024, 4, 1)),
        ("semi-annually", date(2024, 7, 1)),
        ("yearly", date(2025, 1, 1)),
        ("90days", date(2024, 5, 30)),
        ("+2weeks", date(2024, 3, 15)),
    ])
    def test_cadences(self, calculator, calculation, expected):
        due = calculator.compute_due_date(config(type="recurring", calculation=calculation), context_with())
        assert due == expected

    def test_invalid_interval(self, calculator):
        with pytest.raises(DateCalculationError, match="Invalid recurrence interval: fortnightly"):
            calculator.compute_due_date(config(type="recurring", calculation="fortnightly"), context_with())


class TestDescribeAndWindows:

    def test_describe(self, calculator):
        assert calculator.describe(
            config(type="relative", baseDate="dates.optEndDate", offset="-100days")
        ) == "relative: dates.optEndDate -100days"
        assert calculator.describe(
            config(type="calculated", calculation="stem_extension_deadline")
        ) == "calculated: stem_extension_deadline"

    def test_window_helpers(self, calculator):
        assert calculator.is_in_past(date(2024, 2, 29))
        assert not calculator.is_in_past(date(2024, 3, 1))
        assert calculator.is_within_days(date(2024, 3, 10), 10)
        assert not calculator.is_within_days(date(2024, 3, 20), 10)
