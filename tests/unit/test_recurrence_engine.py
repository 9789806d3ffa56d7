"""
Tests for recurring pattern expansion.
"""

from datetime import UTC, date, datetime, time
from unittest.mock import AsyncMock

import pytest

from app.models.domain.scheduling_domain import PatternFrequency, RecurringPattern
from app.services.scheduling.errors import PatternConfigurationError, PatternNotFoundError
from app.services.scheduling.recurrence_engine import RecurrencePatternEngine


def make_pattern(**overrides) -> RecurringPattern:
    data = {
        "id": "pattern-1",
        "pattern": PatternFrequency.WEEKLY,
        "start_date": date(2025, 1, 1),
    }
    data.update(overrides)
    return RecurringPattern(**data)


@pytest.fixture
def engine():
    return RecurrencePatternEngine()


class TestWeeklyExpansion:
    """Tuesday/Thursday pattern starting Wednesday 2025-01-01 with four occurrences."""

    @pytest.fixture
    def tue_thu(self):
        return make_pattern(days_of_week=[2, 4], occurrences=4)

    def test_full_expansion(self, engine, tue_thu):
        dates = engine.expand(tue_thu, date(2025, 1, 1), date(2025, 12, 31))

        assert dates == [date(2025, 1, 2), date(2025, 1, 7), date(2025, 1, 9), date(2025, 1, 14)]

    def test_count_is_honoured_across_window_slices(self, engine, tue_thu):
        """Occurrences are counted from the start date, not from the window."""
        first = engine.expand(tue_thu, date(2025, 1, 1), date(2025, 1, 7))
        second = engine.expand(tue_thu, date(2025, 1, 8), date(2025, 1, 31))
        later = engine.expand(tue_thu, date(2025, 1, 15), date(2025, 2, 28))

        assert first == [date(2025, 1, 2), date(2025, 1, 7)]
        assert second == [date(2025, 1, 9), date(2025, 1, 14)]
        assert later == []

    def test_count_terminated_pattern_without_window(self, engine, tue_thu):
        assert len(engine.expand(tue_thu, None, None)) == 4

    def test_exception_dates_are_removed_without_extending(self, engine, tue_thu):
        tue_thu.exception_dates = [date(2025, 1, 7)]

        dates = engine.expand(tue_thu, date(2025, 1, 1), date(2025, 12, 31))

        assert dates == [date(2025, 1, 2), date(2025, 1, 9), date(2025, 1, 14)]

    def test_expansion_is_idempotent(self, engine, tue_thu):
        window = (date(2025, 1, 1), date(2025, 3, 1))

        assert engine.expand(tue_thu, *window) == engine.expand(tue_thu, *window)

    def test_weekly_without_weekdays_repeats_start_weekday(self, engine):
        pattern = make_pattern(interval=2, end_date=date(2025, 2, 1))

        dates = engine.expand(pattern, None, None)

        assert dates == [date(2025, 1, 1), date(2025, 1, 15), date(2025, 1, 29)]

    def test_window_before_start_is_empty(self, engine, tue_thu):
        assert engine.expand(tue_thu, date(2024, 12, 1), date(2024, 12, 31)) == []


class TestDailyExpansion:
    def test_interval_and_end_date(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.DAILY, interval=2, end_date=date(2025, 1, 9))

        dates = engine.expand(pattern, date(2024, 12, 1), date(2025, 12, 31))

        assert dates == [
            date(2025, 1, 1),
            date(2025, 1, 3),
            date(2025, 1, 5),
            date(2025, 1, 7),
            date(2025, 1, 9),
        ]

    def test_daily_restricted_to_weekdays(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.DAILY, days_of_week=[1, 2, 3, 4, 5])

        dates = engine.expand(pattern, date(2025, 1, 3), date(2025, 1, 7))

        assert dates == [date(2025, 1, 3), date(2025, 1, 6), date(2025, 1, 7)]


class TestMonthlyExpansion:
    def test_day_of_month(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.MONTHLY, days_of_month=[15])

        dates = engine.expand(pattern, date(2025, 1, 1), date(2025, 4, 30))

        assert dates == [date(2025, 1, 15), date(2025, 2, 15), date(2025, 3, 15), date(2025, 4, 15)]

    def test_day_31_skips_short_months(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.MONTHLY, days_of_month=[31])

        dates = engine.expand(pattern, date(2025, 1, 1), date(2025, 4, 30))

        assert dates == [date(2025, 1, 31), date(2025, 3, 31)]

    def test_second_tuesday(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.MONTHLY, week_of_month=[2], days_of_week=[2])

        dates = engine.expand(pattern, date(2025, 1, 1), date(2025, 3, 31))

        assert dates == [date(2025, 1, 14), date(2025, 2, 11), date(2025, 3, 11)]

    def test_last_friday(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.MONTHLY, week_of_month=[-1], days_of_week=[5])

        dates = engine.expand(pattern, date(2025, 1, 1), date(2025, 3, 31))

        assert dates == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 28)]

    def test_day_of_month_takes_precedence_over_nth_weekday(self, engine):
        pattern = make_pattern(
            pattern=PatternFrequency.MONTHLY,
            days_of_month=[1],
            week_of_month=[1],
            days_of_week=[1],
        )

        dates = engine.expand(pattern, date(2025, 1, 1), date(2025, 3, 31))

        assert dates == [date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1)]


class TestYearlyExpansion:
    def test_yearly_on_start_day(self, engine):
        pattern = make_pattern(pattern=PatternFrequency.YEARLY, start_date=date(2025, 3, 10))

        dates = engine.expand(pattern, None, date(2027, 12, 31))

        assert dates == [date(2025, 3, 10), date(2026, 3, 10), date(2027, 3, 10)]

    def test_yearly_nth_weekday_in_month(self, engine):
        """Fourth Thursday of November."""
        pattern = make_pattern(
            pattern=PatternFrequency.YEARLY,
            month_of_year=[11],
            week_of_month=[4],
            days_of_week=[4],
        )

        dates = engine.expand(pattern, None, date(2026, 12, 31))

        assert dates == [date(2025, 11, 27), date(2026, 11, 26)]


class TestPatternValidation:
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"interval": 0}, "interval"),
            ({"interval": True}, "interval"),
            ({"end_date": date(2025, 2, 1), "occurrences": 3}, "end_date"),
            ({"occurrences": 0, "end_date": None}, "occurrences"),
            ({"end_date": date(2024, 12, 31)}, "end_date"),
            ({"days_of_week": [8]}, "days_of_week"),
            ({"days_of_week": [2, 2]}, "days_of_week"),
            ({"days_of_month": [0]}, "days_of_month"),
            ({"week_of_month": [6]}, "week_of_month"),
            ({"pattern": PatternFrequency.MONTHLY, "week_of_month": [2]}, "week_of_month"),
            ({"pattern": PatternFrequency.YEARLY, "week_of_month": [-1], "month_of_year": [11]}, "week_of_month"),
            ({"month_of_year": [13]}, "month_of_year"),
            ({"start_time": time(10), "end_time": time(9)}, "end_time"),
            ({"timezone": "Invalid/Zone"}, "timezone"),
            ({"pattern": "hourly"}, "pattern"),
        ],
    )
    def test_invalid_definitions_raise(self, engine, overrides, field):
        pattern = make_pattern(**{"occurrences": None, "end_date": date(2025, 6, 1), **overrides})

        with pytest.raises(PatternConfigurationError) as exc:
            engine.expand(pattern, date(2025, 1, 1), date(2025, 12, 31))

        assert exc.value.field == field
        assert exc.value.pattern_id == "pattern-1"

    def test_unbounded_pattern_requires_window_end(self, engine):
        pattern = make_pattern(days_of_week=[1])

        with pytest.raises(PatternConfigurationError) as exc:
            engine.expand(pattern, date(2025, 1, 1), None)

        assert exc.value.field == "window_end"

    def test_inactive_pattern_expands_to_nothing(self, engine):
        pattern = make_pattern(days_of_week=[1], active=False)

        assert engine.expand(pattern, date(2025, 1, 1), date(2025, 12, 31)) == []

    def test_inactive_pattern_is_still_validated(self, engine):
        pattern = make_pattern(interval=0, active=False)

        with pytest.raises(PatternConfigurationError):
            engine.expand(pattern, date(2025, 1, 1), date(2025, 12, 31))


class TestSlots:
    def test_slots_are_anchored_in_pattern_zone(self, engine):
        pattern = make_pattern(
            pattern=PatternFrequency.DAILY,
            start_date=date(2025, 3, 8),
            occurrences=3,
            start_time=time(9, 0),
            end_time=time(10, 0),
            timezone="America/New_York",
            listing_id="listing-1",
        )

        slots = engine.expand_slots(pattern, None, None)

        assert [s.date for s in slots] == [date(2025, 3, 8), date(2025, 3, 9), date(2025, 3, 10)]
        # Wall-clock stays at 09:00 while the UTC instant shifts with DST
        assert slots[0].starts_at == datetime(2025, 3, 8, 14, 0, tzinfo=UTC)
        assert slots[2].starts_at == datetime(2025, 3, 10, 13, 0, tzinfo=UTC)
        assert slots[2].ends_at == datetime(2025, 3, 10, 14, 0, tzinfo=UTC)
        assert all(s.recurring_pattern_id == "pattern-1" for s in slots)
        assert all(s.listing_id == "listing-1" for s in slots)

    def test_slots_without_times_are_all_day(self, engine):
        pattern = make_pattern(occurrences=1, days_of_week=[3])

        slots = engine.expand_slots(pattern, None, None)

        assert len(slots) == 1
        assert slots[0].starts_at is None
        assert slots[0].interval() is None

    @pytest.mark.asyncio
    async def test_generate_slots_loads_pattern(self):
        repository = AsyncMock()
        repository.get_pattern.return_value = make_pattern(days_of_week=[2, 4], occurrences=4)
        engine = RecurrencePatternEngine(repository)

        slots = await engine.generate_slots("tenant-1", "pattern-1", date(2025, 1, 1), date(2025, 1, 8))

        repository.get_pattern.assert_awaited_once_with("tenant-1", "pattern-1")
        assert [s.date for s in slots] == [date(2025, 1, 2), date(2025, 1, 7)]

    @pytest.mark.asyncio
    async def test_generate_slots_missing_pattern(self):
        repository = AsyncMock()
        repository.get_pattern.return_value = None
        engine = RecurrencePatternEngine(repository)

        with pytest.raises(PatternNotFoundError):
            await engine.generate_slots("tenant-1", "missing", date(2025, 1, 1), date(2025, 1, 8))
