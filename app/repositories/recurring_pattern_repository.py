"""
Persistence for recurring availability patterns.
"""

from app.db.helpers import fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import PatternFrequency, RecurringPattern

logger = get_logger(__name__)


class RecurringPatternRepository:
    """Tenant-scoped recurring pattern queries."""

    PATTERN_COLUMNS = """
        id, tenant_id, listing_id, event_type_id, pattern, interval,
        days_of_week, days_of_month, week_of_month, month_of_year,
        start_time, end_time, start_date, end_date, occurrences,
        exception_dates, timezone, active, created_at, updated_at
    """

    @classmethod
    def _row_to_pattern(cls, row: dict | None) -> RecurringPattern | None:
        if not row:
            return None

        return RecurringPattern(
            id=str(row["id"]),
            pattern=PatternFrequency(row["pattern"]),
            start_date=row["start_date"],
            interval=row.get("interval") or 1,
            days_of_week=list(row.get("days_of_week") or []),
            days_of_month=list(row.get("days_of_month") or []),
            week_of_month=list(row.get("week_of_month") or []),
            month_of_year=list(row.get("month_of_year") or []),
            start_time=row.get("start_time"),
            end_time=row.get("end_time"),
            end_date=row.get("end_date"),
            occurrences=row.get("occurrences"),
            exception_dates=list(row.get("exception_dates") or []),
            timezone=row.get("timezone") or "UTC",
            active=bool(row.get("active", True)),
            event_type_id=str(row["event_type_id"]) if row.get("event_type_id") else None,
            listing_id=str(row["listing_id"]) if row.get("listing_id") else None,
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    async def get_pattern(cls, tenant_id: str | None, pattern_id: str) -> RecurringPattern | None:
        query = f"""
            SELECT {cls.PATTERN_COLUMNS}
            FROM recurring_patterns
            WHERE tenant_id IS NOT DISTINCT FROM %s AND id = %s
        """
        row = await fetch_one(query, (tenant_id, pattern_id))
        return cls._row_to_pattern(row)

    @classmethod
    async def list_patterns(
        cls, tenant_id: str | None, event_type_id: str, active_only: bool = True
    ) -> list[RecurringPattern]:
        query = f"""
            SELECT {cls.PATTERN_COLUMNS}
            FROM recurring_patterns
            WHERE tenant_id IS NOT DISTINCT FROM %s
              AND event_type_id = %s
              AND (%s = FALSE OR active = TRUE)
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (tenant_id, event_type_id, active_only))
        return [cls._row_to_pattern(row) for row in rows]

    @classmethod
    async def create_pattern(cls, pattern: RecurringPattern) -> RecurringPattern:
        """Insert a pattern. Callers validate it first; the id column is generated."""

        query = f"""
            INSERT INTO recurring_patterns (
                tenant_id, listing_id, event_type_id, pattern, interval,
                days_of_week, days_of_month, week_of_month, month_of_year,
                start_time, end_time, start_date, end_date, occurrences,
                exception_dates, timezone, active
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {cls.PATTERN_COLUMNS}
        """

        params = (
            pattern.tenant_id,
            pattern.listing_id,
            pattern.event_type_id,
            str(pattern.pattern),
            pattern.interval,
            pattern.days_of_week or None,
            pattern.days_of_month or None,
            pattern.week_of_month or None,
            pattern.month_of_year or None,
            pattern.start_time,
            pattern.end_time,
            pattern.start_date,
            pattern.end_date,
            pattern.occurrences,
            pattern.exception_dates or None,
            pattern.timezone,
            pattern.active,
        )

        row = await fetch_one(query, params)
        created = cls._row_to_pattern(row)
        logger.info(
            "Recurring pattern created",
            pattern_id=created.id,
            event_type_id=created.event_type_id,
            frequency=str(created.pattern),
        )
        return created
