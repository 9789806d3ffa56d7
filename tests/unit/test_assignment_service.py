"""
Tests for assigned booking creation and the per-listing Redis lock.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.db.helpers import DatabaseError
from app.models.domain.scheduling_domain import AssignmentStatus
from app.services.booking.assignment_service import (
    AssignmentLock,
    AssignmentOutcomeStatus,
    BookingAssignmentService,
)
from app.services.booking.errors import BookingConflictError
from app.services.booking.provider import BookingProviderContext, BookingResult, CreateBookingRequest
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.errors import AssignmentInfrastructureError
from app.services.scheduling.round_robin import AssignmentReason, AssignmentResult, RoundRobinAssignor
from fakes import FakeBookingSource, FakeTeamRepository, build_booking, build_member, utc

CONTEXT = BookingProviderContext(tenant_id="tenant-1")
REQUEST = CreateBookingRequest(
    event_type_id="event-1",
    start_time=utc(2025, 1, 13, 10),
    end_time=utc(2025, 1, 13, 11),
    listing_id="listing-1",
    timezone="Europe/Paris",
)


def assigned(member_id):
    return AssignmentResult(build_member(id=member_id), AssignmentReason.ASSIGNED, "listing-1")


def created(request, context=None):
    return BookingResult(
        booking=build_booking(id="new", team_member_id=request.team_member_id), provider="builtin"
    )


@pytest.fixture
def assignor():
    return AsyncMock()


@pytest.fixture
def provider():
    provider = AsyncMock()
    provider.create_booking.side_effect = lambda context, request: created(request)
    return provider


class TestCreateAssignedBooking:
    @pytest.mark.asyncio
    async def test_assigns_and_creates(self, assignor, provider):
        assignor.assign.return_value = assigned("a")
        service = BookingAssignmentService(assignor, provider, max_attempts=3)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNED
        assert outcome.attempts == 1
        assert outcome.booking.team_member_id == "a"
        sent = provider.create_booking.await_args.args[1]
        assert sent.team_member_id == "a"
        assert sent.assignment_status == AssignmentStatus.ASSIGNED
        assignor.assign.assert_awaited_once_with(
            "event-1", REQUEST.start_time, REQUEST.end_time, "listing-1", "Europe/Paris", tenant_id="tenant-1"
        )

    @pytest.mark.asyncio
    async def test_reassigns_after_conflict(self, assignor, provider):
        assignor.assign.side_effect = [assigned("a"), assigned("b")]
        provider.create_booking.side_effect = [BookingConflictError("a", "other"), created(REQUEST)]
        service = BookingAssignmentService(assignor, provider, max_attempts=3)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNED
        assert outcome.attempts == 2
        assert outcome.assignment.member.id == "b"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, assignor, provider):
        assignor.assign.return_value = assigned("a")
        provider.create_booking.side_effect = BookingConflictError("a", "other")
        service = BookingAssignmentService(assignor, provider, max_attempts=3)

        with pytest.raises(BookingConflictError):
            await service.create_assigned_booking(CONTEXT, REQUEST)

        assert provider.create_booking.await_count == 3

    @pytest.mark.asyncio
    async def test_no_assignment_creates_nothing(self, assignor, provider):
        assignor.assign.return_value = AssignmentResult(None, AssignmentReason.NO_AVAILABLE_MEMBERS, "listing-1")
        service = BookingAssignmentService(assignor, provider)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.NO_ASSIGNMENT
        assert outcome.booking is None
        assert outcome.assignment.reason == AssignmentReason.NO_AVAILABLE_MEMBERS
        provider.create_booking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_infrastructure_failure_creates_unassigned_booking(self, assignor, provider):
        assignor.assign.side_effect = AssignmentInfrastructureError("team table unreachable")
        service = BookingAssignmentService(assignor, provider)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNMENT_FAILED
        assert outcome.booking is not None
        assert "unreachable" in outcome.error
        sent = provider.create_booking.await_args.args[1]
        assert sent.team_member_id is None
        assert sent.assignment_status == AssignmentStatus.FAILED

    @pytest.mark.asyncio
    async def test_conflict_store_down_creates_flagged_booking(self, provider):
        team = FakeTeamRepository([build_member(id="a"), build_member(id="b")])
        resolver = AvailabilityResolver(FakeBookingSource(error=DatabaseError("db down")), booking_timeout=1.0)
        assignor = RoundRobinAssignor(team, FakeBookingSource(), resolver)
        service = BookingAssignmentService(assignor, provider)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNMENT_FAILED
        assert outcome.assignment is None
        sent = provider.create_booking.await_args.args[1]
        assert sent.team_member_id is None
        assert sent.assignment_status == AssignmentStatus.FAILED

    @pytest.mark.asyncio
    async def test_holds_listing_lock(self, assignor, provider):
        assignor.assign.return_value = assigned("a")
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=True)
        lock.release = AsyncMock()
        redis_client = MagicMock()
        redis_client.lock.return_value = lock
        service = BookingAssignmentService(
            assignor, provider, lock=AssignmentLock(redis_client, ttl_seconds=10, wait_seconds=1)
        )

        await service.create_assigned_booking(CONTEXT, REQUEST)

        redis_client.lock.assert_called_once_with("assignment-lock:listing-1", 10, 1)
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lock_key_falls_back_to_event_type(self, assignor, provider):
        assignor.assign.return_value = assigned("a")
        redis_client = MagicMock()
        redis_client.lock.side_effect = ConnectionError("Redis client not initialized")
        service = BookingAssignmentService(assignor, provider, lock=AssignmentLock(redis_client))
        request = CreateBookingRequest(
            event_type_id="event-9", start_time=REQUEST.start_time, end_time=REQUEST.end_time
        )

        outcome = await service.create_assigned_booking(CONTEXT, request)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNED
        assert redis_client.lock.call_args.args[0] == "assignment-lock:event-type:event-9"


class TestAssignmentLock:
    def make_lock(self, acquire=True, release_error=None, lock_error=None):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=acquire)
        lock.release = AsyncMock(side_effect=release_error)
        redis_client = MagicMock()
        if lock_error:
            redis_client.lock.side_effect = lock_error
        else:
            redis_client.lock.return_value = lock
        return AssignmentLock(redis_client, ttl_seconds=5, wait_seconds=1), lock

    @pytest.mark.asyncio
    async def test_acquired(self):
        assignment_lock, lock = self.make_lock()

        async with assignment_lock.hold("listing-1") as held:
            assert held is True

        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wait_timeout_runs_unlocked(self):
        assignment_lock, lock = self.make_lock(acquire=False)

        async with assignment_lock.hold("listing-1") as held:
            assert held is False

        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_down_runs_unlocked(self):
        assignment_lock, _ = self.make_lock(lock_error=RedisConnectionError("refused"))

        async with assignment_lock.hold("listing-1") as held:
            assert held is False

    @pytest.mark.asyncio
    async def test_expired_lock_on_release_is_tolerated(self):
        assignment_lock, lock = self.make_lock(release_error=LockError("not owned"))

        async with assignment_lock.hold("listing-1") as held:
            assert held is True

        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_failure_on_release_keeps_block_result(self):
        assignment_lock, lock = self.make_lock(release_error=RedisConnectionError("connection reset"))
        committed = []

        async with assignment_lock.hold("listing-1") as held:
            committed.append(held)

        assert committed == [True]
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_release_failure_after_assigned_booking_returns_outcome(self, assignor, provider):
        assignor.assign.return_value = assigned("a")
        assignment_lock, _ = self.make_lock(release_error=RedisTimeoutError("read timed out"))
        service = BookingAssignmentService(assignor, provider, lock=assignment_lock)

        outcome = await service.create_assigned_booking(CONTEXT, REQUEST)

        assert outcome.status == AssignmentOutcomeStatus.ASSIGNED
        provider.create_booking.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_inside_block_propagate_and_release(self):
        assignment_lock, lock = self.make_lock()

        with pytest.raises(ValueError):
            async with assignment_lock.hold("listing-1"):
                raise ValueError("boom")

        lock.release.assert_awaited_once()
