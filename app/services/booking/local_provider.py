# app/services/booking/local_provider.py
"""
Built-in booking provider backed by the platform's own Postgres tables.

This is the double-booking enforcement point: a booking with a team
member is only inserted after a transaction-scoped advisory lock on that
member is held and no pending or confirmed booking overlaps it.
"""

import secrets
import string
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    AssignmentStatus,
    AvailabilitySlot,
    Booking,
    BookingStatus,
    PaymentStatus,
    TimeInterval,
    can_transition,
)
from app.repositories.availability_slot_repository import AvailabilitySlotRepository
from app.repositories.booking_repository import BookingRepository
from app.services.booking.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingProviderError,
    InvalidStatusTransitionError,
)
from app.services.booking.provider import (
    BookingProvider,
    BookingProviderContext,
    BookingResult,
    CreateBookingRequest,
    HealthCheck,
    SyncResult,
)

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_confirmation_code(now: datetime | None = None) -> str:
    """BK-<base36 millisecond timestamp>-<4 random base36 characters>."""
    now = now or datetime.now(UTC)
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"BK-{_to_base36(millis)}-{suffix}"


@dataclass(frozen=True, slots=True)
class BookingPricing:
    base_price: float
    service_fee: float
    tax_amount: float
    discount_amount: float
    total_amount: float


def calculate_pricing(
    base_price: float,
    discount_amount: float = 0.0,
    service_fee_rate: float | None = None,
    tax_rate: float | None = None,
) -> BookingPricing:
    """Service fee on the base price, tax on base plus fee, discount off the total."""
    fee_rate = settings.BOOKING_SERVICE_FEE_RATE if service_fee_rate is None else service_fee_rate
    tax = settings.BOOKING_TAX_RATE if tax_rate is None else tax_rate

    service_fee = round(base_price * fee_rate, 2)
    tax_amount = round((base_price + service_fee) * tax, 2)
    total = round(max(0.0, base_price + service_fee + tax_amount - discount_amount), 2)

    return BookingPricing(
        base_price=base_price,
        service_fee=service_fee,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total_amount=total,
    )


class LocalBookingProvider(BookingProvider):
    """BookingProvider over the bookings and availability_slots tables."""

    provider_type = "builtin"

    def __init__(
        self,
        repository=BookingRepository,
        slot_repository=AvailabilitySlotRepository,
        *,
        transaction=None,
        pool=None,
        service_fee_rate: float | None = None,
        tax_rate: float | None = None,
    ):
        self.repository = repository
        self.slot_repository = slot_repository
        self.pool = pool or db_pool
        # Callable returning an async context manager that yields a connection
        self._transaction = transaction or self.pool.transaction
        self.service_fee_rate = service_fee_rate
        self.tax_rate = tax_rate

    async def create_booking(
        self, context: BookingProviderContext, request: CreateBookingRequest
    ) -> BookingResult:
        try:
            interval = TimeInterval(request.start_time, request.end_time)
        except ValueError as e:
            raise BookingProviderError(
                f"Invalid booking interval: {e}", error_code="invalid_request", provider=self.provider_type
            ) from e

        pricing = calculate_pricing(
            request.base_price, request.discount_amount, self.service_fee_rate, self.tax_rate
        )

        assignment_status = request.assignment_status or (
            AssignmentStatus.ASSIGNED if request.team_member_id else AssignmentStatus.UNASSIGNED
        )

        booking = Booking(
            id="",
            start_time=interval.start,
            end_time=interval.end,
            status=request.status or BookingStatus.PENDING,
            listing_id=request.listing_id or context.listing_id,
            event_type_id=request.event_type_id,
            tenant_id=context.tenant_id,
            user_id=request.user_id,
            team_member_id=request.team_member_id,
            timezone=request.timezone,
            assignment_status=assignment_status,
            payment_status=request.payment_status or PaymentStatus.PENDING,
            guest_count=request.guest_count,
            base_price=pricing.base_price,
            service_fee=pricing.service_fee,
            tax_amount=pricing.tax_amount,
            discount_amount=pricing.discount_amount,
            total_amount=pricing.total_amount,
            currency=request.currency or settings.DEFAULT_CURRENCY,
            confirmation_code=generate_confirmation_code(),
            special_requests=request.special_requests,
            internal_notes=request.internal_notes,
        )

        async with self._transaction() as conn:
            if booking.team_member_id and booking.holds_time():
                await self._ensure_member_free(conn, context, booking.team_member_id, interval)
            created = await self.repository.insert_booking(booking, connection=conn)

        logger.info(
            "Booking created",
            booking_id=created.id,
            member_id=created.team_member_id,
            confirmation_code=created.confirmation_code,
            total_amount=created.total_amount,
        )
        return BookingResult(booking=created, provider=self.provider_type)

    async def cancel_booking(
        self,
        context: BookingProviderContext,
        booking_id: str,
        reason: str | None = None,
        cancelled_by: str | None = None,
    ) -> Booking:
        async with self._transaction() as conn:
            booking = await self._get_for_update(conn, context, booking_id)

            if booking.status == BookingStatus.CANCELLED:
                return booking
            if not can_transition(booking.status, BookingStatus.CANCELLED):
                raise InvalidStatusTransitionError(
                    booking_id, booking.status.value, BookingStatus.CANCELLED.value
                )

            cancelled = await self.repository.cancel_booking(
                context.tenant_id, booking_id, datetime.now(UTC), reason, cancelled_by, connection=conn
            )
        if cancelled is None:
            raise BookingNotFoundError(booking_id)

        logger.info("Booking cancelled", booking_id=booking_id, reason=reason)
        return cancelled

    async def update_booking(
        self, context: BookingProviderContext, booking_id: str, updates: dict[str, Any]
    ) -> Booking:
        """
        Apply field updates, validating status moves and re-checking conflicts
        when the member or the time changes.
        """
        fields = dict(updates)

        async with self._transaction() as conn:
            booking = await self._get_for_update(conn, context, booking_id)

            target_status = booking.status
            if "status" in fields:
                try:
                    target_status = BookingStatus(fields["status"])
                except ValueError as e:
                    raise BookingProviderError(
                        f"Unknown booking status: {fields['status']!r}",
                        error_code="invalid_request",
                        provider=self.provider_type,
                    ) from e
                if not can_transition(booking.status, target_status):
                    raise InvalidStatusTransitionError(
                        booking_id, booking.status.value, target_status.value
                    )
                fields["status"] = target_status
                if target_status == BookingStatus.CANCELLED and "cancelled_at" not in fields:
                    fields["cancelled_at"] = datetime.now(UTC)

            member_id = fields.get("team_member_id", booking.team_member_id)
            start = fields.get("start_time", booking.start_time)
            end = fields.get("end_time", booking.end_time)
            moved = any(key in fields for key in ("team_member_id", "start_time", "end_time"))

            if member_id and moved and target_status in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                try:
                    interval = TimeInterval(start, end)
                except ValueError as e:
                    raise BookingProviderError(
                        f"Invalid booking interval: {e}",
                        error_code="invalid_request",
                        provider=self.provider_type,
                    ) from e
                await self._ensure_member_free(
                    conn, context, member_id, interval, exclude_booking_id=booking_id
                )

            updated = await self.repository.update_booking(
                context.tenant_id, booking_id, fields, connection=conn
            )

        if updated is None:
            raise BookingNotFoundError(booking_id)

        logger.info("Booking updated", booking_id=booking_id, fields=sorted(fields))
        return updated

    async def get_availability(
        self, context: BookingProviderContext, window_start: date, window_end: date
    ) -> list[AvailabilitySlot]:
        return await self.slot_repository.list_slots(
            context.tenant_id, window_start, window_end, context.listing_id
        )

    async def sync_bookings(self, context: BookingProviderContext) -> SyncResult:
        # Nothing external to reconcile
        return SyncResult()

    async def health_check(self, context: BookingProviderContext) -> HealthCheck:
        health = await self.pool.health_check()
        return HealthCheck(
            healthy=bool(health.get("healthy")),
            error=health.get("error"),
            latency_ms=health.get("connection_time_ms"),
        )

    async def _get_for_update(self, conn, context: BookingProviderContext, booking_id: str) -> Booking:
        """Read the booking row locked until the surrounding transaction ends."""
        booking = await self.repository.get_booking(
            context.tenant_id, booking_id, connection=conn, for_update=True
        )
        if booking is None:
            raise BookingNotFoundError(booking_id)
        return booking

    async def _ensure_member_free(
        self,
        conn,
        context: BookingProviderContext,
        team_member_id: str,
        interval: TimeInterval,
        exclude_booking_id: str | None = None,
    ) -> None:
        await self.repository.lock_team_member(conn, team_member_id)
        conflicts = await self.repository.find_conflicting_bookings(
            context.tenant_id, team_member_id, interval, connection=conn
        )
        conflicts = [b for b in conflicts if b.id != exclude_booking_id]
        if conflicts:
            logger.warning(
                "Booking rejected, member already booked",
                member_id=team_member_id,
                conflicting_booking_id=conflicts[0].id,
            )
            raise BookingConflictError(team_member_id, conflicts[0].id)
