# app/models/domain/scheduling_domain.py
"""
Scheduling Domain Models
Explicit shapes for recurring patterns, slots, team members and bookings.
Repositories map database rows into these; services never see raw rows.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import StrEnum
from typing import Any


class PatternFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class AssignmentStatus(StrEnum):
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    PENDING = "pending"
    FAILED = "failed"


class TeamRole(StrEnum):
    OWNER = "owner"
    MEMBER = "member"
    VIEWER = "viewer"


# Bookings in these states hold the team member's time
ACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

BOOKING_STATUS_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """Check the booking status state machine. Re-applying the same status is a no-op."""
    if current == target:
        return True
    return target in BOOKING_STATUS_TRANSITIONS[current]


def is_terminal(status: BookingStatus) -> bool:
    return not BOOKING_STATUS_TRANSITIONS[status]


@dataclass(frozen=True, slots=True)
class TimeInterval:
    """Half-open [start, end) span between two zone-aware instants."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeInterval requires timezone-aware datetimes")
        if self.end <= self.start:
            raise ValueError("TimeInterval end must be after start")

    def overlaps(self, other: "TimeInterval") -> bool:
        """Touching intervals (one ends exactly when the other starts) do not overlap."""
        return self.start < other.end and self.end > other.start

    def contains(self, other: "TimeInterval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> int:
        return int(self.duration().total_seconds() / 60)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes(),
        }


@dataclass(slots=True)
class RecurringPattern:
    """A rule describing repeated availability for an event type."""

    id: str
    pattern: PatternFrequency
    start_date: date
    interval: int = 1
    days_of_week: list[int] = field(default_factory=list)  # 1=Monday ... 7=Sunday
    days_of_month: list[int] = field(default_factory=list)
    week_of_month: list[int] = field(default_factory=list)  # 1-5, -1 = last
    month_of_year: list[int] = field(default_factory=list)
    start_time: time | None = None
    end_time: time | None = None
    end_date: date | None = None
    occurrences: int | None = None
    exception_dates: list[date] = field(default_factory=list)
    timezone: str = "UTC"
    active: bool = True
    event_type_id: str | None = None
    listing_id: str | None = None
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_bounded(self) -> bool:
        return self.end_date is not None or self.occurrences is not None

    def uses_day_of_month(self) -> bool:
        return bool(self.days_of_month)

    def uses_nth_weekday(self) -> bool:
        """Nth-weekday addressing only applies when day-of-month is not set."""
        return not self.days_of_month and bool(self.week_of_month) and bool(self.days_of_week)


@dataclass(slots=True)
class AvailabilitySlot:
    """One concrete bookable date/time instance."""

    date: date
    start_time: time | None = None
    end_time: time | None = None
    available: bool = True
    max_bookings: int = 1
    current_bookings: int = 0
    timezone: str = "UTC"
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    id: str | None = None
    recurring_pattern_id: str | None = None
    listing_id: str | None = None
    event_type_id: str | None = None
    tenant_id: str | None = None
    price: float | None = None
    notes: str | None = None

    def __post_init__(self):
        if self.current_bookings > self.max_bookings:
            raise ValueError(
                f"current_bookings ({self.current_bookings}) exceeds "
                f"max_bookings ({self.max_bookings})"
            )

    def is_bookable(self) -> bool:
        return self.available and self.current_bookings < self.max_bookings

    def remaining_capacity(self) -> int:
        if not self.available:
            return 0
        return max(0, self.max_bookings - self.current_bookings)

    def interval(self) -> TimeInterval | None:
        if self.starts_at is None or self.ends_at is None:
            return None
        return TimeInterval(self.starts_at, self.ends_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "timezone": self.timezone,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "available": self.available,
            "max_bookings": self.max_bookings,
            "current_bookings": self.current_bookings,
            "is_bookable": self.is_bookable(),
            "recurring_pattern_id": self.recurring_pattern_id,
        }


@dataclass(frozen=True, slots=True)
class OverrideWindow:
    """Open window for one weekday of a team member's override schedule."""

    start: time
    end: time

    def contains(self, start: time, end: time) -> bool:
        return self.start <= start and end <= self.end


@dataclass(slots=True)
class TeamMember:
    """A bookable resource attached to a listing."""

    id: str
    user_id: str
    listing_id: str
    tenant_id: str | None = None
    role: TeamRole = TeamRole.MEMBER
    event_type_ids: list[str] = field(default_factory=list)
    # weekday name -> open window, or None when the day is explicitly closed
    availability_override: dict[str, OverrideWindow | None] | None = None
    override_timezone: str | None = None
    round_robin_enabled: bool = False
    round_robin_weight: float = 1.0
    active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self):
        if self.round_robin_weight <= 0:
            raise ValueError("round_robin_weight must be positive")

    def can_host(self, event_type_id: str) -> bool:
        """An empty allow-list means the member may host every event type."""
        return not self.event_type_ids or event_type_id in self.event_type_ids


@dataclass(slots=True)
class Booking:
    """Booking row as seen by the scheduling core."""

    id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus = BookingStatus.PENDING
    listing_id: str | None = None
    event_type_id: str | None = None
    tenant_id: str | None = None
    user_id: str | None = None
    team_member_id: str | None = None
    timezone: str = "UTC"
    assignment_status: AssignmentStatus = AssignmentStatus.UNASSIGNED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    guest_count: int = 1
    base_price: float = 0.0
    service_fee: float = 0.0
    tax_amount: float = 0.0
    discount_amount: float = 0.0
    total_amount: float = 0.0
    currency: str = "USD"
    confirmation_code: str = ""
    special_requests: str | None = None
    internal_notes: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    external_provider: str | None = None
    external_booking_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def interval(self) -> TimeInterval:
        return TimeInterval(self.start_time, self.end_time)

    def holds_time(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "listing_id": self.listing_id,
            "event_type_id": self.event_type_id,
            "team_member_id": self.team_member_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "timezone": self.timezone,
            "status": self.status.value,
            "assignment_status": self.assignment_status.value,
            "payment_status": self.payment_status.value,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "confirmation_code": self.confirmation_code,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
        }


@dataclass(frozen=True, slots=True)
class AssignmentHistoryRecord:
    """Read-only view over a past assigned booking."""

    team_member_id: str
    user_id: str
    assigned_at: datetime
    booking_id: str


@dataclass(slots=True)
class CalendarIntegration:
    """A team member's connected external calendar."""

    id: str
    user_id: str
    provider: str
    calendar_id: str
    access_token: str | None = None
    sync_enabled: bool = True
    active: bool = True
    timezone: str = "UTC"
    listing_id: str | None = None
    tenant_id: str | None = None

    def participates_in_conflicts(self) -> bool:
        return self.active and self.sync_enabled
