"""
Persistence for concrete availability slots.
"""

from datetime import date

from app.db.helpers import fetch_all
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import AvailabilitySlot

logger = get_logger(__name__)


class AvailabilitySlotRepository:
    """Tenant-scoped slot queries."""

    SLOT_COLUMNS = """
        id, tenant_id, listing_id, event_type_id, recurring_slot_id,
        date, start_time, end_time, timezone, available,
        max_bookings, current_bookings, price, notes
    """

    @classmethod
    def _row_to_slot(cls, row: dict) -> AvailabilitySlot:
        max_bookings = row.get("max_bookings") or 1
        current = row.get("current_bookings") or 0

        return AvailabilitySlot(
            id=str(row["id"]),
            date=row["date"],
            start_time=row.get("start_time"),
            end_time=row.get("end_time"),
            available=bool(row.get("available", True)),
            max_bookings=max_bookings,
            # Overbooked rows are clamped rather than rejected
            current_bookings=min(current, max_bookings),
            timezone=row.get("timezone") or "UTC",
            recurring_pattern_id=(
                str(row["recurring_slot_id"]) if row.get("recurring_slot_id") else None
            ),
            listing_id=str(row["listing_id"]) if row.get("listing_id") else None,
            event_type_id=str(row["event_type_id"]) if row.get("event_type_id") else None,
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
            price=float(row["price"]) if row.get("price") is not None else None,
            notes=row.get("notes"),
        )

    @classmethod
    async def list_slots(
        cls,
        tenant_id: str | None,
        window_start: date,
        window_end: date,
        listing_id: str | None = None,
    ) -> list[AvailabilitySlot]:
        """Slots dated within the inclusive window, ordered by date and start time."""

        query = f"""
            SELECT {cls.SLOT_COLUMNS}
            FROM availability_slots
            WHERE tenant_id IS NOT DISTINCT FROM %s
              AND date >= %s
              AND date <= %s
              AND (%s::text IS NULL OR listing_id::text = %s)
            ORDER BY date, start_time NULLS FIRST
        """

        rows = await fetch_all(query, (tenant_id, window_start, window_end, listing_id, listing_id))
        slots = [cls._row_to_slot(row) for row in rows]
        logger.debug("Availability slots loaded", tenant_id=tenant_id, count=len(slots))
        return slots
