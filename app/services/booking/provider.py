# app/services/booking/provider.py
"""
Booking Provider interface.

Every booking backend (the built-in Postgres store, Cal.com, ...) exposes
the same capabilities. Callers obtain a provider from the registry and
never branch on which backend they were given.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from app.models.domain.scheduling_domain import (
    AssignmentStatus,
    AvailabilitySlot,
    Booking,
    BookingStatus,
    PaymentStatus,
)


@dataclass(slots=True)
class BookingProviderContext:
    """Tenant scope plus backend credentials for one provider call."""

    tenant_id: str | None
    listing_id: str | None = None
    credentials: dict[str, Any] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CreateBookingRequest:
    event_type_id: str
    start_time: datetime
    end_time: datetime
    listing_id: str | None = None
    user_id: str | None = None
    team_member_id: str | None = None
    timezone: str = "UTC"
    guest_count: int = 1
    base_price: float = 0.0
    discount_amount: float = 0.0
    currency: str | None = None
    status: BookingStatus | None = None
    payment_status: PaymentStatus | None = None
    assignment_status: AssignmentStatus | None = None
    special_requests: str | None = None
    internal_notes: str | None = None
    # Attendee details for external backends
    attendee_name: str | None = None
    attendee_email: str | None = None


@dataclass(slots=True)
class BookingResult:
    booking: Booking
    provider: str
    external_booking_id: str | None = None


@dataclass(slots=True)
class SyncResult:
    synced: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class HealthCheck:
    healthy: bool
    error: str | None = None
    latency_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"healthy": self.healthy}
        if self.error:
            data["error"] = self.error
        if self.latency_ms is not None:
            data["latency_ms"] = round(self.latency_ms, 2)
        return data


class BookingProvider(ABC):
    """Capability interface implemented by every booking backend."""

    provider_type: str = ""

    @abstractmethod
    async def create_booking(
        self, context: BookingProviderContext, request: CreateBookingRequest
    ) -> BookingResult:
        """
        Persist a booking.

        Raises:
            BookingConflictError: the assigned member already holds the time
        """

    @abstractmethod
    async def cancel_booking(
        self,
        context: BookingProviderContext,
        booking_id: str,
        reason: str | None = None,
        cancelled_by: str | None = None,
    ) -> Booking:
        """Cancel by status transition. Bookings are never deleted."""

    @abstractmethod
    async def update_booking(
        self, context: BookingProviderContext, booking_id: str, updates: dict[str, Any]
    ) -> Booking: ...

    @abstractmethod
    async def get_availability(
        self, context: BookingProviderContext, window_start: date, window_end: date
    ) -> list[AvailabilitySlot]: ...

    @abstractmethod
    async def sync_bookings(self, context: BookingProviderContext) -> SyncResult: ...

    @abstractmethod
    async def health_check(self, context: BookingProviderContext) -> HealthCheck: ...
