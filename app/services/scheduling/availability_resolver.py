# app/services/scheduling/availability_resolver.py
"""
Availability Resolver
Decides whether a team member can take a proposed interval.

Checks run in a fixed order and stop at the first negative answer:
    1. existing bookings (authoritative, fails closed)
    2. the member's weekly override schedule
    3. external calendars (advisory, degrades to "skipped")
"""

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    ACTIVE_BOOKING_STATUSES,
    WEEKDAY_NAMES,
    Booking,
    BookingStatus,
    TeamMember,
    TimeInterval,
)
from app.services.scheduling.errors import CalendarOracleUnavailable
from app.services.scheduling.timezone_converter import TimezoneConverter

logger = get_logger(__name__)


class BookingConflictSource(Protocol):
    async def find_conflicting_bookings(
        self,
        tenant_id: str | None,
        team_member_id: str,
        interval: TimeInterval,
        statuses: frozenset[BookingStatus] = ACTIVE_BOOKING_STATUSES,
    ) -> list[Booking]: ...


class CalendarConflictOracle(Protocol):
    async def has_conflict(
        self, user_id: str, interval: TimeInterval, tenant_id: str | None = None
    ) -> bool: ...


class AvailabilityReason(StrEnum):
    AVAILABLE = "available"
    BOOKING_CONFLICT = "booking_conflict"
    BOOKING_CHECK_FAILED = "booking_check_failed"
    OVERRIDE_CLOSED = "override_closed"
    OUTSIDE_OVERRIDE_WINDOW = "outside_override_window"
    CALENDAR_CONFLICT = "calendar_conflict"


@dataclass(slots=True)
class AvailabilityDecision:
    available: bool
    reason: AvailabilityReason
    # True when the external calendar check was skipped
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "reason": self.reason.value,
            "degraded": self.degraded,
        }


class AvailabilityResolver:
    """Side-effect free availability checks for a single team member."""

    def __init__(
        self,
        booking_source: BookingConflictSource,
        calendar_oracle: CalendarConflictOracle | None = None,
        *,
        booking_timeout: float | None = None,
        oracle_timeout: float | None = None,
    ):
        self.booking_source = booking_source
        self.calendar_oracle = calendar_oracle
        self.booking_timeout = (
            booking_timeout
            if booking_timeout is not None
            else settings.AVAILABILITY_CHECK_TIMEOUT_SECONDS
        )
        self.oracle_timeout = (
            oracle_timeout if oracle_timeout is not None else settings.CALENDAR_ORACLE_TIMEOUT_SECONDS
        )

    async def is_available(
        self,
        member: TeamMember,
        interval: TimeInterval,
        timezone: str | None = None,
        *,
        timeout: float | None = None,
    ) -> bool:
        decision = await self.explain(member, interval, timezone, timeout=timeout)
        return decision.available

    async def explain(
        self,
        member: TeamMember,
        interval: TimeInterval,
        timezone: str | None = None,
        *,
        timeout: float | None = None,
    ) -> AvailabilityDecision:
        """
        Run every check and report which one decided the outcome.

        Args:
            member: Candidate team member
            interval: Proposed booking interval (zone-aware)
            timezone: Request zone, used when the override has none
            timeout: Per-check timeout overriding the configured defaults

        Raises:
            InvalidTimezoneError: the override reference zone is unknown
        """
        reason = await self._check_bookings(member, interval, timeout)
        if reason is not None:
            return AvailabilityDecision(False, reason)

        reason = self._check_override(member, interval, timezone)
        if reason is not None:
            logger.debug("Member excluded by override schedule", member_id=member.id, reason=reason.value)
            return AvailabilityDecision(False, reason)

        conflict, degraded = await self._check_calendar(member, interval, timeout)
        if conflict:
            logger.debug("Member excluded by calendar conflict", member_id=member.id)
            return AvailabilityDecision(False, AvailabilityReason.CALENDAR_CONFLICT)

        return AvailabilityDecision(True, AvailabilityReason.AVAILABLE, degraded=degraded)

    async def _check_bookings(
        self, member: TeamMember, interval: TimeInterval, timeout: float | None
    ) -> AvailabilityReason | None:
        limit = timeout if timeout is not None else self.booking_timeout
        try:
            bookings = await asyncio.wait_for(
                self.booking_source.find_conflicting_bookings(
                    member.tenant_id, member.id, interval, ACTIVE_BOOKING_STATUSES
                ),
                timeout=limit,
            )
        except TimeoutError:
            logger.error(
                "Booking conflict check timed out, treating member as unavailable",
                member_id=member.id,
                timeout=limit,
            )
            return AvailabilityReason.BOOKING_CHECK_FAILED
        except Exception as e:
            # Unknown conflict state is never reported as free time
            logger.error(
                "Booking conflict check failed, treating member as unavailable",
                member_id=member.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AvailabilityReason.BOOKING_CHECK_FAILED

        for booking in bookings:
            if booking.holds_time() and booking.interval().overlaps(interval):
                logger.debug(
                    "Member has overlapping booking", member_id=member.id, booking_id=booking.id
                )
                return AvailabilityReason.BOOKING_CONFLICT
        return None

    def _check_override(
        self, member: TeamMember, interval: TimeInterval, timezone: str | None
    ) -> AvailabilityReason | None:
        override = member.availability_override
        if not override:
            return None

        zone = member.override_timezone or timezone or settings.DEFAULT_TIMEZONE
        local_start = TimezoneConverter.utc_to_local(interval.start, zone)
        local_end = TimezoneConverter.utc_to_local(interval.end, zone)

        day_name = WEEKDAY_NAMES[local_start.weekday()]
        if day_name not in override:
            return None

        window = override[day_name]
        if window is None:
            return AvailabilityReason.OVERRIDE_CLOSED

        # Intervals spilling into the next local day cannot fit one day's window
        if local_end.date() != local_start.date():
            return AvailabilityReason.OUTSIDE_OVERRIDE_WINDOW
        if not window.contains(local_start.time(), local_end.time()):
            return AvailabilityReason.OUTSIDE_OVERRIDE_WINDOW
        return None

    async def _check_calendar(
        self, member: TeamMember, interval: TimeInterval, timeout: float | None
    ) -> tuple[bool, bool]:
        """Return (conflict, degraded)."""
        if self.calendar_oracle is None:
            return False, False

        limit = timeout if timeout is not None else self.oracle_timeout
        try:
            conflict = await asyncio.wait_for(
                self.calendar_oracle.has_conflict(member.user_id, interval, member.tenant_id),
                timeout=limit,
            )
        except TimeoutError:
            logger.warning(
                "Calendar conflict check timed out, skipping", member_id=member.id, timeout=limit
            )
            return False, True
        except CalendarOracleUnavailable as e:
            logger.warning(
                "Calendar conflict check unavailable, skipping",
                member_id=member.id,
                provider=e.provider,
                error=str(e),
            )
            return False, True

        return bool(conflict), False
