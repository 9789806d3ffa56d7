"""
Persistence for bookings and the assignment history derived from them.

All reads and writes are scoped by tenant_id. Rows are mapped to Booking
dataclasses here and nowhere else.
"""

from datetime import datetime
from typing import Any

import psycopg
from psycopg import sql

from app.db.helpers import DatabaseError, fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    ACTIVE_BOOKING_STATUSES,
    AssignmentHistoryRecord,
    AssignmentStatus,
    Booking,
    BookingStatus,
    PaymentStatus,
    TimeInterval,
)

logger = get_logger(__name__)


class BookingRepositoryError(DatabaseError):
    """More specific exception for booking persistence failures."""


def _money(value: Any) -> float:
    # NUMERIC columns come back as Decimal
    return float(value) if value is not None else 0.0


class BookingRepository:
    """Tenant-scoped booking queries."""

    BOOKING_COLUMNS = """
        id, tenant_id, listing_id, event_type_id, user_id, team_member_id,
        start_time, end_time, timezone, status, payment_status, assignment_status,
        guest_count, base_price, service_fee, tax_amount, discount_amount,
        total_amount, currency, confirmation_code, special_requests, internal_notes,
        cancelled_at, cancelled_by, cancellation_reason,
        external_provider, external_booking_id, created_at, updated_at
    """

    # Columns update_booking may touch
    UPDATABLE_COLUMNS = frozenset(
        {
            "team_member_id",
            "start_time",
            "end_time",
            "timezone",
            "status",
            "payment_status",
            "assignment_status",
            "guest_count",
            "special_requests",
            "internal_notes",
            "cancelled_at",
            "cancelled_by",
            "cancellation_reason",
            "external_booking_id",
        }
    )

    @classmethod
    def _row_to_booking(cls, row: dict | None) -> Booking | None:
        if not row:
            return None

        return Booking(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
            listing_id=str(row["listing_id"]) if row.get("listing_id") else None,
            event_type_id=str(row["event_type_id"]) if row.get("event_type_id") else None,
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            team_member_id=str(row["team_member_id"]) if row.get("team_member_id") else None,
            start_time=row["start_time"],
            end_time=row["end_time"],
            timezone=row.get("timezone") or "UTC",
            status=BookingStatus(row["status"]),
            payment_status=PaymentStatus(row.get("payment_status") or PaymentStatus.PENDING),
            assignment_status=AssignmentStatus(
                row.get("assignment_status") or AssignmentStatus.UNASSIGNED
            ),
            guest_count=row.get("guest_count") or 1,
            base_price=_money(row.get("base_price")),
            service_fee=_money(row.get("service_fee")),
            tax_amount=_money(row.get("tax_amount")),
            discount_amount=_money(row.get("discount_amount")),
            total_amount=_money(row.get("total_amount")),
            currency=row.get("currency") or "USD",
            confirmation_code=row.get("confirmation_code") or "",
            special_requests=row.get("special_requests"),
            internal_notes=row.get("internal_notes"),
            cancelled_at=row.get("cancelled_at"),
            cancelled_by=str(row["cancelled_by"]) if row.get("cancelled_by") else None,
            cancellation_reason=row.get("cancellation_reason"),
            external_provider=row.get("external_provider"),
            external_booking_id=row.get("external_booking_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    async def find_conflicting_bookings(
        cls,
        tenant_id: str | None,
        team_member_id: str,
        interval: TimeInterval,
        statuses: frozenset[BookingStatus] = ACTIVE_BOOKING_STATUSES,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> list[Booking]:
        """Bookings of the member overlapping [start, end). Touching intervals do not conflict."""

        query = f"""
            SELECT {cls.BOOKING_COLUMNS}
            FROM bookings
            WHERE tenant_id IS NOT DISTINCT FROM %s
              AND team_member_id = %s
              AND status = ANY(%s)
              AND start_time < %s
              AND end_time > %s
            ORDER BY start_time
        """

        rows = await fetch_all(
            query,
            (
                tenant_id,
                team_member_id,
                [s.value for s in statuses],
                interval.end,
                interval.start,
            ),
            connection=connection,
        )
        return [cls._row_to_booking(row) for row in rows]

    @classmethod
    @with_db_retry(max_retries=2, base_delay=0.05)
    async def get_assignment_history(
        cls, tenant_id: str | None, listing_id: str, event_type_id: str, limit: int = 100
    ) -> list[AssignmentHistoryRecord]:
        """Most recent assigned bookings for a listing and event type, newest first."""

        query = """
            SELECT b.id AS booking_id, b.team_member_id, tm.user_id, b.created_at
            FROM bookings b
            JOIN team_members tm ON tm.id = b.team_member_id
            WHERE b.tenant_id IS NOT DISTINCT FROM %s
              AND b.listing_id = %s
              AND b.event_type_id = %s
              AND b.team_member_id IS NOT NULL
            ORDER BY b.created_at DESC
            LIMIT %s
        """

        rows = await fetch_all(query, (tenant_id, listing_id, event_type_id, limit))
        return [
            AssignmentHistoryRecord(
                team_member_id=str(row["team_member_id"]),
                user_id=str(row["user_id"]),
                assigned_at=row["created_at"],
                booking_id=str(row["booking_id"]),
            )
            for row in rows
        ]

    @classmethod
    async def get_booking(
        cls,
        tenant_id: str | None,
        booking_id: str,
        *,
        connection: psycopg.AsyncConnection | None = None,
        for_update: bool = False,
    ) -> Booking | None:
        """With for_update the row stays locked until the connection's transaction ends."""
        query = f"""
            SELECT {cls.BOOKING_COLUMNS}
            FROM bookings
            WHERE tenant_id IS NOT DISTINCT FROM %s AND id = %s
        """
        if for_update:
            query += " FOR UPDATE"
        row = await fetch_one(query, (tenant_id, booking_id), connection=connection)
        return cls._row_to_booking(row)

    @classmethod
    async def lock_team_member(cls, connection: psycopg.AsyncConnection, team_member_id: str) -> None:
        """Serialize booking writes for one member until the surrounding transaction ends."""
        try:
            await connection.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))", (f"team_member:{team_member_id}",)
            )
        except psycopg.Error as e:
            raise BookingRepositoryError(
                f"Failed to lock team member: {e}", operation="lock_team_member"
            ) from e

    @classmethod
    async def insert_booking(
        cls, booking: Booking, *, connection: psycopg.AsyncConnection | None = None
    ) -> Booking:
        query = f"""
            INSERT INTO bookings (
                tenant_id, listing_id, event_type_id, user_id, team_member_id,
                start_time, end_time, timezone, status, payment_status, assignment_status,
                guest_count, base_price, service_fee, tax_amount, discount_amount,
                total_amount, currency, confirmation_code, special_requests, internal_notes,
                external_provider, external_booking_id
            )
            VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            RETURNING {cls.BOOKING_COLUMNS}
        """

        params = (
            booking.tenant_id,
            booking.listing_id,
            booking.event_type_id,
            booking.user_id,
            booking.team_member_id,
            booking.start_time,
            booking.end_time,
            booking.timezone,
            booking.status.value,
            booking.payment_status.value,
            booking.assignment_status.value,
            booking.guest_count,
            booking.base_price,
            booking.service_fee,
            booking.tax_amount,
            booking.discount_amount,
            booking.total_amount,
            booking.currency,
            booking.confirmation_code,
            booking.special_requests,
            booking.internal_notes,
            booking.external_provider,
            booking.external_booking_id,
        )

        row = await fetch_one(query, params, connection=connection)
        if not row:
            raise BookingRepositoryError("Failed to insert booking", operation="insert_booking")

        created = cls._row_to_booking(row)
        logger.info(
            "Booking stored",
            booking_id=created.id,
            listing_id=created.listing_id,
            member_id=created.team_member_id,
        )
        return created

    @classmethod
    async def update_booking(
        cls,
        tenant_id: str | None,
        booking_id: str,
        fields: dict[str, Any],
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> Booking | None:
        """Apply column updates and return the new row, or None when the booking does not exist."""

        unknown = set(fields) - cls.UPDATABLE_COLUMNS
        if unknown:
            raise BookingRepositoryError(
                f"Cannot update booking columns: {sorted(unknown)}",
                operation="update_booking",
                recoverable=False,
            )
        if not fields:
            return await cls.get_booking(tenant_id, booking_id, connection=connection)

        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in fields
        )
        query = sql.SQL(
            "UPDATE bookings SET {assignments}, updated_at = NOW() "
            "WHERE tenant_id IS NOT DISTINCT FROM %s AND id = %s "
            "RETURNING {columns}"
        ).format(assignments=assignments, columns=sql.SQL(cls.BOOKING_COLUMNS))

        values = tuple(
            value.value if hasattr(value, "value") else value for value in fields.values()
        )
        row = await fetch_one(query, (*values, tenant_id, booking_id), connection=connection)
        return cls._row_to_booking(row)

    @classmethod
    async def cancel_booking(
        cls,
        tenant_id: str | None,
        booking_id: str,
        cancelled_at: datetime,
        reason: str | None = None,
        cancelled_by: str | None = None,
        *,
        connection: psycopg.AsyncConnection | None = None,
    ) -> Booking | None:
        return await cls.update_booking(
            tenant_id,
            booking_id,
            {
                "status": BookingStatus.CANCELLED,
                "cancelled_at": cancelled_at,
                "cancellation_reason": reason,
                "cancelled_by": cancelled_by,
            },
            connection=connection,
        )
