# app/routes/dependencies.py
"""
FastAPI dependency providers.

Services are built per request from explicit collaborators. Long-lived
clients (provider registry, calendar oracle, Redis) live on app.state and
are created and closed by the application lifespan.
"""

from fastapi import Depends, Header, Request

from app.config import settings
from app.repositories.booking_repository import BookingRepository
from app.repositories.recurring_pattern_repository import RecurringPatternRepository
from app.repositories.team_repository import TeamRepository
from app.services.booking.assignment_service import AssignmentLock, BookingAssignmentService
from app.services.booking.registry import BookingProviderRegistry
from app.services.redis_client import RedisClient
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.recurrence_engine import RecurrencePatternEngine
from app.services.scheduling.round_robin import RoundRobinAssignor


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str | None:
    """Tenant scope for repository queries, taken from the X-Tenant-ID header."""
    return x_tenant_id


def get_team_repository():
    return TeamRepository


def get_provider_registry(request: Request) -> BookingProviderRegistry:
    return request.app.state.provider_registry


def get_calendar_oracle(request: Request):
    return getattr(request.app.state, "calendar_oracle", None)


def get_availability_resolver(oracle=Depends(get_calendar_oracle)) -> AvailabilityResolver:
    return AvailabilityResolver(BookingRepository, oracle)


def get_round_robin_assignor(
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
    team_repository=Depends(get_team_repository),
) -> RoundRobinAssignor:
    return RoundRobinAssignor(team_repository, BookingRepository, resolver)


def get_recurrence_engine() -> RecurrencePatternEngine:
    return RecurrencePatternEngine(RecurringPatternRepository)


def get_redis_client(request: Request) -> RedisClient | None:
    return getattr(request.app.state, "redis_client", None)


def get_assignment_lock(redis_client=Depends(get_redis_client)) -> AssignmentLock | None:
    if not settings.ASSIGNMENT_LOCK_ENABLED or redis_client is None:
        return None
    return AssignmentLock(redis_client)


def build_assignment_service(
    assignor: RoundRobinAssignor,
    registry: BookingProviderRegistry,
    provider_type: str,
    lock: AssignmentLock | None,
) -> BookingAssignmentService:
    """Raises UnknownProviderError for an unregistered provider_type."""
    provider = registry.get_provider(provider_type)
    return BookingAssignmentService(assignor, provider, lock=lock)
