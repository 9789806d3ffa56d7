# app/services/booking/assignment_service.py
"""
Booking Assignment Service
Ties round robin assignment to booking creation.

Flow:
    1. Optionally hold a per-listing Redis lock (fairness only; the booking
       provider's conflict check is what prevents double-booking)
    2. Pick a member with RoundRobinAssignor
    3. Create the booking for that member
    4. If the member was booked in the meantime, pick again
"""

from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass, replace
from enum import StrEnum

import redis.asyncio as redis
from redis.exceptions import LockError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import AssignmentStatus, Booking
from app.services.booking.errors import BookingConflictError
from app.services.booking.provider import (
    BookingProvider,
    BookingProviderContext,
    CreateBookingRequest,
)
from app.services.redis_client import RedisClient
from app.services.scheduling.errors import AssignmentInfrastructureError
from app.services.scheduling.round_robin import AssignmentResult, RoundRobinAssignor

logger = get_logger(__name__)


class AssignmentOutcomeStatus(StrEnum):
    ASSIGNED = "assigned"
    NO_ASSIGNMENT = "no_assignment"
    ASSIGNMENT_FAILED = "assignment_failed"


@dataclass(slots=True)
class AssignedBookingOutcome:
    status: AssignmentOutcomeStatus
    booking: Booking | None = None
    assignment: AssignmentResult | None = None
    attempts: int = 0
    error: str | None = None


class AssignmentLock:
    """Per-listing Redis lock serializing assignment within one listing."""

    def __init__(
        self,
        redis_client: RedisClient,
        ttl_seconds: float | None = None,
        wait_seconds: float | None = None,
    ):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds or settings.ASSIGNMENT_LOCK_TTL_SECONDS
        self.wait_seconds = wait_seconds or settings.ASSIGNMENT_LOCK_WAIT_SECONDS

    @asynccontextmanager
    async def hold(self, listing_key: str):
        """
        Hold the listing's lock for the duration of the block.

        When Redis is unreachable or the lock cannot be acquired in time the
        block still runs, unlocked, and the fact is logged.
        """
        name = f"assignment-lock:{listing_key}"
        acquired = False
        try:
            lock = self.redis_client.lock(name, self.ttl_seconds, self.wait_seconds)
            acquired = await lock.acquire()
            if not acquired:
                logger.warning("Assignment lock wait timed out, continuing unlocked", listing=listing_key)
        except (redis.RedisError, ConnectionError) as e:
            logger.warning(
                "Assignment lock unavailable, continuing unlocked", listing=listing_key, error=str(e)
            )

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Assignment lock expired before release", listing=listing_key)
            except (redis.RedisError, ConnectionError) as e:
                # The block has already run; its result stands
                logger.warning(
                    "Assignment lock release failed, lock will expire by TTL",
                    listing=listing_key,
                    error=str(e),
                )


class BookingAssignmentService:
    """Create a booking and assign it to a team member in one call."""

    def __init__(
        self,
        assignor: RoundRobinAssignor,
        provider: BookingProvider,
        *,
        lock: AssignmentLock | None = None,
        max_attempts: int | None = None,
    ):
        self.assignor = assignor
        self.provider = provider
        self.lock = lock
        self.max_attempts = max_attempts or settings.ASSIGNMENT_MAX_ATTEMPTS

    async def create_assigned_booking(
        self,
        context: BookingProviderContext,
        request: CreateBookingRequest,
        timezone: str | None = None,
    ) -> AssignedBookingOutcome:
        """
        Assign and create.

        Returns:
            ASSIGNED with the booking, NO_ASSIGNMENT without creating anything
            when nobody can take the slot, or ASSIGNMENT_FAILED with an
            unassigned booking when team data could not be loaded.

        Raises:
            BookingConflictError: every attempt lost a race for the chosen member
        """
        listing_id = request.listing_id or context.listing_id
        zone = timezone or request.timezone
        listing_key = listing_id or f"event-type:{request.event_type_id}"

        guard = self.lock.hold(listing_key) if self.lock else nullcontext(False)
        async with guard:
            last_conflict: BookingConflictError | None = None

            for attempt in range(1, self.max_attempts + 1):
                try:
                    assignment = await self.assignor.assign(
                        request.event_type_id,
                        request.start_time,
                        request.end_time,
                        listing_id,
                        zone,
                        tenant_id=context.tenant_id,
                    )
                except AssignmentInfrastructureError as e:
                    return await self._create_unassigned(context, request, listing_id, e, attempt)

                if not assignment.assigned:
                    logger.info(
                        "Booking not created, no team member available",
                        event_type_id=request.event_type_id,
                        reason=assignment.reason.value,
                    )
                    return AssignedBookingOutcome(
                        AssignmentOutcomeStatus.NO_ASSIGNMENT,
                        assignment=assignment,
                        attempts=attempt,
                    )

                assigned_request = replace(
                    request,
                    listing_id=assignment.listing_id,
                    team_member_id=assignment.member.id,
                    assignment_status=AssignmentStatus.ASSIGNED,
                )
                try:
                    result = await self.provider.create_booking(context, assigned_request)
                except BookingConflictError as e:
                    last_conflict = e
                    logger.warning(
                        "Assigned member was booked concurrently, reassigning",
                        member_id=assignment.member.id,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                    )
                    continue

                return AssignedBookingOutcome(
                    AssignmentOutcomeStatus.ASSIGNED,
                    booking=result.booking,
                    assignment=assignment,
                    attempts=attempt,
                )

        logger.error(
            "Assignment gave up after repeated conflicts",
            event_type_id=request.event_type_id,
            attempts=self.max_attempts,
        )
        raise last_conflict

    async def _create_unassigned(
        self,
        context: BookingProviderContext,
        request: CreateBookingRequest,
        listing_id: str | None,
        error: AssignmentInfrastructureError,
        attempt: int,
    ) -> AssignedBookingOutcome:
        logger.error(
            "Assignment failed, creating booking unassigned",
            event_type_id=request.event_type_id,
            listing_id=listing_id,
            error=str(error),
        )
        unassigned = replace(
            request,
            listing_id=listing_id,
            team_member_id=None,
            assignment_status=AssignmentStatus.FAILED,
        )
        result = await self.provider.create_booking(context, unassigned)
        return AssignedBookingOutcome(
            AssignmentOutcomeStatus.ASSIGNMENT_FAILED,
            booking=result.booking,
            attempts=attempt,
            error=str(error),
        )
