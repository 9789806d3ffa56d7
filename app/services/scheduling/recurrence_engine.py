# app/services/scheduling/recurrence_engine.py
"""
Recurrence Pattern Engine
Expands a RecurringPattern into the concrete dates and slots it produces
inside a query window.

Expansion is pure and restartable: the rule is always anchored at the
pattern's start date, so an occurrence budget (count) is honoured no matter
which window slice is requested.
"""

from datetime import date, datetime, time

from dateutil import rrule

from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    AvailabilitySlot,
    PatternFrequency,
    RecurringPattern,
)
from app.services.scheduling.errors import (
    PatternConfigurationError,
    PatternNotFoundError,
)
from app.services.scheduling.timezone_converter import TimezoneConverter

logger = get_logger(__name__)

_FREQUENCIES = {
    PatternFrequency.DAILY: rrule.DAILY,
    PatternFrequency.WEEKLY: rrule.WEEKLY,
    PatternFrequency.MONTHLY: rrule.MONTHLY,
    PatternFrequency.YEARLY: rrule.YEARLY,
}

# ISO weekday (1=Monday) -> dateutil weekday
_WEEKDAYS = {i + 1: wd for i, wd in enumerate(rrule.weekdays)}

_VALID_WEEKS_OF_MONTH = {1, 2, 3, 4, 5, -1}


def validate_pattern(pattern: RecurringPattern) -> None:
    """Raise PatternConfigurationError for any definition the engine cannot expand faithfully."""
    pid = pattern.id

    def fail(message: str, field: str) -> None:
        raise PatternConfigurationError(message, pattern_id=pid, field=field)

    try:
        PatternFrequency(pattern.pattern)
    except ValueError:
        fail(f"Unsupported recurrence frequency: {pattern.pattern!r}", "pattern")

    if isinstance(pattern.interval, bool) or not isinstance(pattern.interval, int):
        fail("interval must be an integer", "interval")
    if pattern.interval < 1:
        fail(f"interval must be >= 1, got {pattern.interval}", "interval")

    if pattern.end_date is not None and pattern.occurrences is not None:
        fail("end_date and occurrences are mutually exclusive", "end_date")
    if pattern.occurrences is not None and pattern.occurrences < 1:
        fail("occurrences must be >= 1", "occurrences")
    if pattern.end_date is not None and pattern.end_date < pattern.start_date:
        fail("end_date is before start_date", "end_date")

    if len(set(pattern.days_of_week)) != len(pattern.days_of_week):
        fail("days_of_week contains duplicates", "days_of_week")
    if any(d not in _WEEKDAYS for d in pattern.days_of_week):
        fail("days_of_week values must be 1 (Monday) through 7 (Sunday)", "days_of_week")

    if any(d == 0 or not -31 <= d <= 31 for d in pattern.days_of_month):
        fail("days_of_month values must be 1-31 or -31..-1", "days_of_month")
    if any(w not in _VALID_WEEKS_OF_MONTH for w in pattern.week_of_month):
        fail("week_of_month values must be 1-5 or -1", "week_of_month")
    if any(not 1 <= m <= 12 for m in pattern.month_of_year):
        fail("month_of_year values must be 1-12", "month_of_year")
    if (
        pattern.pattern in (PatternFrequency.MONTHLY, PatternFrequency.YEARLY)
        and pattern.week_of_month
        and not pattern.days_of_week
        and not pattern.days_of_month
    ):
        fail("week_of_month needs days_of_week to name the weekday", "week_of_month")

    if pattern.start_time and pattern.end_time and pattern.end_time <= pattern.start_time:
        fail("end_time must be after start_time", "end_time")

    if not TimezoneConverter.is_valid_zone(pattern.timezone):
        fail(f"Unknown timezone: {pattern.timezone!r}", "timezone")


def build_rule(pattern: RecurringPattern) -> rrule.rrule:
    """Translate a validated pattern into a dateutil rule anchored at start_date."""
    frequency = PatternFrequency(pattern.pattern)
    kwargs = {
        "dtstart": datetime.combine(pattern.start_date, time.min),
        "interval": pattern.interval,
    }

    if pattern.occurrences is not None:
        kwargs["count"] = pattern.occurrences
    elif pattern.end_date is not None:
        kwargs["until"] = datetime.combine(pattern.end_date, time.min)

    weekdays = [_WEEKDAYS[d] for d in pattern.days_of_week]

    if frequency in (PatternFrequency.DAILY, PatternFrequency.WEEKLY):
        # Weekly with no weekdays falls back to the start date's weekday
        if weekdays:
            kwargs["byweekday"] = weekdays

    elif frequency == PatternFrequency.MONTHLY:
        if pattern.uses_day_of_month():
            kwargs["bymonthday"] = list(pattern.days_of_month)
        elif pattern.uses_nth_weekday():
            kwargs["byweekday"] = [
                wd(n) for n in pattern.week_of_month for wd in weekdays
            ]
        elif weekdays:
            kwargs["byweekday"] = weekdays

    else:
        kwargs["bymonth"] = list(pattern.month_of_year) or [pattern.start_date.month]
        if pattern.days_of_month:
            kwargs["bymonthday"] = list(pattern.days_of_month)
        elif pattern.uses_nth_weekday():
            kwargs["byweekday"] = [
                wd(n) for n in pattern.week_of_month for wd in weekdays
            ]
        else:
            kwargs["bymonthday"] = [pattern.start_date.day]

    return rrule.rrule(_FREQUENCIES[frequency], **kwargs)


class RecurrencePatternEngine:
    """
    Expands recurring availability rules.

    The pattern repository is only needed for generate_slots; expand and
    expand_slots work on in-memory patterns.
    """

    def __init__(self, pattern_repository=None):
        self.pattern_repository = pattern_repository

    def expand(
        self,
        pattern: RecurringPattern,
        window_start: date | None,
        window_end: date | None,
    ) -> list[date]:
        """
        Return the ascending dates the pattern produces inside the
        inclusive window [window_start, window_end].

        Raises:
            PatternConfigurationError: invalid definition, or an unbounded
                pattern queried without a window end
        """
        validate_pattern(pattern)

        if not pattern.active:
            return []

        if window_end is None and not pattern.is_bounded():
            raise PatternConfigurationError(
                "Unbounded pattern requires a finite window end",
                pattern_id=pattern.id,
                field="window_end",
            )

        lower = pattern.start_date if window_start is None else max(window_start, pattern.start_date)
        upper = window_end
        if pattern.end_date is not None:
            upper = pattern.end_date if upper is None else min(upper, pattern.end_date)

        if upper is not None and lower > upper:
            return []

        rule = build_rule(pattern)
        if upper is None:
            # Count-terminated pattern without a window end: run to exhaustion
            occurrences = [dt for dt in rule if dt.date() >= lower]
        else:
            occurrences = rule.between(
                datetime.combine(lower, time.min),
                datetime.combine(upper, time.min),
                inc=True,
            )

        excluded = set(pattern.exception_dates)
        dates = [dt.date() for dt in occurrences if dt.date() not in excluded]

        logger.debug(
            "Pattern expanded",
            pattern_id=pattern.id,
            frequency=str(pattern.pattern),
            window_start=lower.isoformat(),
            window_end=upper.isoformat() if upper else None,
            occurrences=len(dates),
        )
        return dates

    def expand_slots(
        self,
        pattern: RecurringPattern,
        window_start: date | None,
        window_end: date | None,
    ) -> list[AvailabilitySlot]:
        """Expand to slots, anchoring the pattern's wall-clock times in its own zone."""
        slots = []
        for day in self.expand(pattern, window_start, window_end):
            starts_at = ends_at = None
            if pattern.start_time and pattern.end_time:
                starts_at = TimezoneConverter.localize(day, pattern.start_time, pattern.timezone)
                ends_at = TimezoneConverter.localize(day, pattern.end_time, pattern.timezone)

            slots.append(
                AvailabilitySlot(
                    date=day,
                    start_time=pattern.start_time,
                    end_time=pattern.end_time,
                    timezone=pattern.timezone,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    recurring_pattern_id=pattern.id,
                    listing_id=pattern.listing_id,
                    event_type_id=pattern.event_type_id,
                    tenant_id=pattern.tenant_id,
                )
            )
        return slots

    async def generate_slots(
        self,
        tenant_id: str,
        pattern_id: str,
        window_start: date | None,
        window_end: date | None,
    ) -> list[AvailabilitySlot]:
        """Load a stored pattern and expand it to slots."""
        if self.pattern_repository is None:
            raise RuntimeError("generate_slots requires a pattern repository")

        pattern = await self.pattern_repository.get_pattern(tenant_id, pattern_id)
        if pattern is None:
            raise PatternNotFoundError(pattern_id)

        slots = self.expand_slots(pattern, window_start, window_end)
        logger.info(
            "Slots generated from pattern",
            pattern_id=pattern_id,
            tenant_id=tenant_id,
            slot_count=len(slots),
        )
        return slots

    async def save_pattern(self, pattern: RecurringPattern) -> RecurringPattern:
        """Validate and persist a pattern. Invalid definitions never reach the database."""
        if self.pattern_repository is None:
            raise RuntimeError("save_pattern requires a pattern repository")

        validate_pattern(pattern)
        return await self.pattern_repository.create_pattern(pattern)

    async def list_patterns(
        self, tenant_id: str | None, event_type_id: str, active_only: bool = True
    ) -> list[RecurringPattern]:
        if self.pattern_repository is None:
            raise RuntimeError("list_patterns requires a pattern repository")

        return await self.pattern_repository.list_patterns(tenant_id, event_type_id, active_only)
