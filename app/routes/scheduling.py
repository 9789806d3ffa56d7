"""
Scheduling API Routes
HTTP endpoints for round robin assignment, pattern expansion and
availability checks. Thin wrappers: all logic lives in the services.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.api.scheduling_request import (
    AssignRequest,
    AvailabilityCheckRequest,
    CreatePatternRequest,
    ExpandPatternRequest,
)
from app.models.api.scheduling_response import (
    AssignResponse,
    AvailabilityCheckResponse,
    BookingResponse,
    CandidateScoreResponse,
    ExpandPatternResponse,
    PatternResponse,
    SlotResponse,
    TimezoneInfoResponse,
)
from app.models.domain.scheduling_domain import Booking, RecurringPattern, TimeInterval
from app.routes.dependencies import (
    build_assignment_service,
    get_assignment_lock,
    get_availability_resolver,
    get_provider_registry,
    get_recurrence_engine,
    get_round_robin_assignor,
    get_team_repository,
    get_tenant_id,
)
from app.services.booking.errors import (
    BookingConflictError,
    BookingNotFoundError,
    BookingProviderError,
    InvalidStatusTransitionError,
    UnknownProviderError,
)
from app.services.booking.provider import BookingProviderContext, CreateBookingRequest
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.errors import (
    AssignmentInfrastructureError,
    PatternNotFoundError,
    SchedulingConfigurationError,
)
from app.services.scheduling.recurrence_engine import RecurrencePatternEngine
from app.services.scheduling.round_robin import AssignmentResult, RoundRobinAssignor
from app.services.scheduling.timezone_converter import TimezoneConverter

logger = get_logger(__name__)

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


def _to_http_error(error: Exception) -> HTTPException:
    """Map service exceptions to HTTP status codes."""
    if isinstance(error, (SchedulingConfigurationError, UnknownProviderError)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, (PatternNotFoundError, BookingNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (BookingConflictError, InvalidStatusTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, (AssignmentInfrastructureError, DatabaseError)):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduling data unavailable"
        )
    if isinstance(error, BookingProviderError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE if error.recoverable else status.HTTP_502_BAD_GATEWAY
        return HTTPException(status_code=code, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Scheduling request failed"
    )


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        listing_id=booking.listing_id,
        event_type_id=booking.event_type_id,
        team_member_id=booking.team_member_id,
        start_time=booking.start_time,
        end_time=booking.end_time,
        timezone=booking.timezone,
        status=booking.status.value,
        assignment_status=booking.assignment_status.value,
        payment_status=booking.payment_status.value,
        total_amount=booking.total_amount,
        currency=booking.currency,
        confirmation_code=booking.confirmation_code,
    )


def _pattern_response(pattern: RecurringPattern) -> PatternResponse:
    return PatternResponse(
        id=pattern.id,
        pattern=pattern.pattern.value,
        start_date=pattern.start_date,
        interval=pattern.interval,
        days_of_week=pattern.days_of_week,
        days_of_month=pattern.days_of_month,
        week_of_month=pattern.week_of_month,
        month_of_year=pattern.month_of_year,
        start_time=pattern.start_time,
        end_time=pattern.end_time,
        end_date=pattern.end_date,
        occurrences=pattern.occurrences,
        exception_dates=pattern.exception_dates,
        timezone=pattern.timezone,
        active=pattern.active,
        event_type_id=pattern.event_type_id,
        listing_id=pattern.listing_id,
    )


def _assign_response(result: AssignmentResult) -> AssignResponse:
    return AssignResponse(
        assigned=result.assigned,
        reason=result.reason.value,
        listing_id=result.listing_id,
        member_id=result.member.id if result.member else None,
        user_id=result.member.user_id if result.member else None,
        scores=[CandidateScoreResponse(**score.to_dict()) for score in result.scores],
    )


@router.post("/assign", response_model=AssignResponse)
async def assign_team_member(
    request: AssignRequest,
    tenant_id: str | None = Depends(get_tenant_id),
    assignor: RoundRobinAssignor = Depends(get_round_robin_assignor),
    registry=Depends(get_provider_registry),
    lock=Depends(get_assignment_lock),
):
    """Pick a team member by weighted round robin, optionally creating the booking."""
    try:
        if not request.create_booking:
            result = await assignor.assign(
                request.event_type_id,
                request.start_time,
                request.end_time,
                request.listing_id,
                request.timezone,
                tenant_id=tenant_id,
            )
            return _assign_response(result)

        service = build_assignment_service(assignor, registry, request.provider, lock)
        context = BookingProviderContext(tenant_id=tenant_id, listing_id=request.listing_id)
        booking_request = CreateBookingRequest(
            event_type_id=request.event_type_id,
            start_time=request.start_time,
            end_time=request.end_time,
            listing_id=request.listing_id,
            user_id=request.user_id,
            timezone=request.timezone or "UTC",
            guest_count=request.guest_count,
            base_price=request.base_price,
            discount_amount=request.discount_amount,
            special_requests=request.special_requests,
        )
        outcome = await service.create_assigned_booking(context, booking_request, request.timezone)

    except Exception as e:
        logger.error(
            "Assignment request failed",
            event_type_id=request.event_type_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise _to_http_error(e) from e

    if outcome.assignment is not None:
        response = _assign_response(outcome.assignment)
    else:
        response = AssignResponse(assigned=False, reason="assignment_failed")

    response.outcome = outcome.status.value
    response.attempts = outcome.attempts
    if outcome.booking is not None:
        response.booking = _booking_response(outcome.booking)
    return response


@router.post("/patterns", response_model=PatternResponse, status_code=status.HTTP_201_CREATED)
async def create_pattern(
    request: CreatePatternRequest,
    tenant_id: str | None = Depends(get_tenant_id),
    engine: RecurrencePatternEngine = Depends(get_recurrence_engine),
):
    """Validate and store a recurring pattern."""
    pattern = RecurringPattern(id="new", tenant_id=tenant_id, **request.model_dump())
    try:
        created = await engine.save_pattern(pattern)
    except Exception as e:
        logger.error("Pattern creation failed", event_type_id=request.event_type_id, error=str(e))
        raise _to_http_error(e) from e

    return _pattern_response(created)


@router.get("/patterns", response_model=list[PatternResponse])
async def list_patterns(
    event_type_id: str = Query(..., min_length=1),
    include_inactive: bool = Query(default=False),
    tenant_id: str | None = Depends(get_tenant_id),
    engine: RecurrencePatternEngine = Depends(get_recurrence_engine),
):
    """Stored patterns for an event type, newest first."""
    try:
        patterns = await engine.list_patterns(tenant_id, event_type_id, active_only=not include_inactive)
    except Exception as e:
        logger.error("Pattern listing failed", event_type_id=event_type_id, error=str(e))
        raise _to_http_error(e) from e

    return [_pattern_response(p) for p in patterns]


@router.post("/patterns/expand", response_model=ExpandPatternResponse)
async def expand_pattern(
    request: ExpandPatternRequest,
    tenant_id: str | None = Depends(get_tenant_id),
    engine: RecurrencePatternEngine = Depends(get_recurrence_engine),
):
    """Expand a stored or inline recurring pattern into dates and slots."""
    try:
        if request.pattern_id:
            slots = await engine.generate_slots(
                tenant_id, request.pattern_id, request.window_start, request.window_end
            )
        else:
            pattern = RecurringPattern(id="inline", tenant_id=tenant_id, **request.definition.model_dump())
            slots = engine.expand_slots(pattern, request.window_start, request.window_end)

    except Exception as e:
        logger.error("Pattern expansion failed", pattern_id=request.pattern_id, error=str(e))
        raise _to_http_error(e) from e

    return ExpandPatternResponse(
        dates=[slot.date for slot in slots],
        slots=[
            SlotResponse(
                date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                timezone=slot.timezone,
                starts_at=slot.starts_at,
                ends_at=slot.ends_at,
                recurring_pattern_id=slot.recurring_pattern_id,
            )
            for slot in slots
        ],
        total_count=len(slots),
    )


@router.post("/availability/check", response_model=AvailabilityCheckResponse)
async def check_availability(
    request: AvailabilityCheckRequest,
    tenant_id: str | None = Depends(get_tenant_id),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
    team_repository=Depends(get_team_repository),
):
    """Explain whether a team member can take an interval."""
    try:
        interval = TimeInterval(request.start_time, request.end_time)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    try:
        member = await team_repository.get_team_member(tenant_id, request.team_member_id)
        if member is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team member not found")

        decision = await resolver.explain(member, interval, request.timezone)

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Availability check failed", member_id=request.team_member_id, error=str(e))
        raise _to_http_error(e) from e

    return AvailabilityCheckResponse(
        team_member_id=member.id,
        available=decision.available,
        reason=decision.reason.value,
        degraded=decision.degraded,
    )


@router.get("/timezones", response_model=list[TimezoneInfoResponse])
async def list_timezones():
    """Common zones with their current UTC offsets."""
    return [TimezoneInfoResponse(**entry) for entry in TimezoneConverter.common_timezones()]
