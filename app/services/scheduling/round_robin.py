# app/services/scheduling/round_robin.py
"""
Round Robin Assignor
Picks which team member receives an incoming booking.

Pipeline (fixed order):
    1. Resolve the listing (explicit, or from the event type)
    2. Eligibility filter: active, round robin enabled, allowed to host
    3. Availability filter via AvailabilityResolver
    4. Load recent assignment history (read before any write)
    5. Weighted scoring, lowest score wins, ties keep filter order

Scoring:
    score = assignments / weight - hours_since_last_assignment / 24
    Members never assigned get a flat bonus of -100 instead of the recency term.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger, log_assignment_decision
from app.models.domain.scheduling_domain import (
    AssignmentHistoryRecord,
    AssignmentStatus,
    Booking,
    TeamMember,
    TimeInterval,
)
from app.services.scheduling.availability_resolver import AvailabilityReason, AvailabilityResolver
from app.services.scheduling.errors import (
    AssignmentConfigurationError,
    AssignmentInfrastructureError,
)
from app.services.scheduling.timezone_converter import TimezoneConverter

logger = get_logger(__name__)


class AssignmentReason(StrEnum):
    ASSIGNED = "assigned"
    NO_ELIGIBLE_MEMBERS = "no_eligible_members"
    NO_AVAILABLE_MEMBERS = "no_available_members"


@dataclass(slots=True)
class CandidateScore:
    member: TeamMember
    assignment_count: int
    last_assigned_at: datetime | None
    score: float

    def to_dict(self) -> dict:
        return {
            "member_id": self.member.id,
            "user_id": self.member.user_id,
            "weight": self.member.round_robin_weight,
            "assignment_count": self.assignment_count,
            "last_assigned_at": self.last_assigned_at.isoformat() if self.last_assigned_at else None,
            "score": round(self.score, 4),
        }


@dataclass(slots=True)
class AssignmentResult:
    member: TeamMember | None
    reason: AssignmentReason
    listing_id: str | None = None
    scores: list[CandidateScore] = field(default_factory=list)

    @property
    def assigned(self) -> bool:
        return self.member is not None


def calculate_assignment(
    candidates: list[TeamMember],
    history: list[AssignmentHistoryRecord],
    now: datetime,
    *,
    recency_divisor: float | None = None,
    never_assigned_bonus: float | None = None,
) -> list[CandidateScore]:
    """
    Score candidates against assignment history, best first.

    Pure function: the same inputs always give the same ordering. The sort
    is stable so equal scores keep the candidates' input order.
    """
    divisor = recency_divisor if recency_divisor is not None else settings.ROUND_ROBIN_RECENCY_DIVISOR
    bonus = (
        never_assigned_bonus
        if never_assigned_bonus is not None
        else settings.ROUND_ROBIN_NEVER_ASSIGNED_BONUS
    )

    counts: dict[str, int] = {}
    last_assigned: dict[str, datetime] = {}
    # Counted per user, not per membership row
    for record in history:
        counts[record.user_id] = counts.get(record.user_id, 0) + 1
        previous = last_assigned.get(record.user_id)
        if previous is None or record.assigned_at > previous:
            last_assigned[record.user_id] = record.assigned_at

    scores = []
    for member in candidates:
        count = counts.get(member.user_id, 0)
        last = last_assigned.get(member.user_id)

        score = count / member.round_robin_weight
        if last is None:
            score -= bonus
        else:
            hours_since = (now - last).total_seconds() / 3600
            score -= hours_since / divisor

        scores.append(CandidateScore(member, count, last, score))

    return sorted(scores, key=lambda s: s.score)


class RoundRobinAssignor:
    """
    Weighted round robin over a listing's team.

    Collaborators are passed in:
        team_repository: get_event_type_listing_id, list_team_members
        history_source: get_assignment_history
        availability_resolver: AvailabilityResolver
        booking_provider: optional, only used by track_assignment
    """

    def __init__(
        self,
        team_repository,
        history_source,
        availability_resolver: AvailabilityResolver,
        *,
        booking_provider=None,
        history_limit: int | None = None,
        clock=None,
    ):
        self.team_repository = team_repository
        self.history_source = history_source
        self.availability_resolver = availability_resolver
        self.booking_provider = booking_provider
        self.history_limit = history_limit or settings.ROUND_ROBIN_HISTORY_LIMIT
        self._clock = clock or (lambda: datetime.now(UTC))

    async def assign(
        self,
        event_type_id: str,
        start_time: datetime,
        end_time: datetime,
        listing_id: str | None = None,
        timezone: str | None = None,
        *,
        tenant_id: str | None = None,
        timeout: float | None = None,
    ) -> AssignmentResult:
        """
        Choose a team member for the proposed booking.

        Returns an AssignmentResult whose member is None when nobody is
        eligible or available. That is a normal outcome, not an error.

        Raises:
            AssignmentConfigurationError: bad request or unresolvable listing
            InvalidTimezoneError: unknown request zone
            AssignmentInfrastructureError: team or history could not be loaded, or
                nobody was free and some conflict checks failed
        """
        interval = self._build_interval(event_type_id, start_time, end_time)
        zone = timezone or settings.DEFAULT_TIMEZONE
        TimezoneConverter.get_zone(zone)

        resolved_listing = await self._resolve_listing(tenant_id, event_type_id, listing_id)

        members = await self._load_members(tenant_id, resolved_listing)
        eligible = [
            m for m in members if self._is_eligible(m, resolved_listing, event_type_id, round_robin=True)
        ]
        if not eligible:
            log_assignment_decision(
                resolved_listing, event_type_id, None, len(members), 0,
                AssignmentReason.NO_ELIGIBLE_MEMBERS.value,
            )
            return AssignmentResult(None, AssignmentReason.NO_ELIGIBLE_MEMBERS, resolved_listing)

        available = await self._filter_available(eligible, interval, zone, timeout)
        if not available:
            log_assignment_decision(
                resolved_listing, event_type_id, None, len(eligible), 0,
                AssignmentReason.NO_AVAILABLE_MEMBERS.value,
            )
            return AssignmentResult(None, AssignmentReason.NO_AVAILABLE_MEMBERS, resolved_listing)

        history = await self._load_history(tenant_id, resolved_listing, event_type_id)
        scores = calculate_assignment(available, history, self._clock())
        winner = scores[0]

        log_assignment_decision(
            resolved_listing,
            event_type_id,
            winner.member.id,
            len(eligible),
            len(available),
            AssignmentReason.ASSIGNED.value,
            score=winner.score,
        )
        return AssignmentResult(winner.member, AssignmentReason.ASSIGNED, resolved_listing, scores)

    async def get_available_team_members(
        self,
        event_type_id: str,
        start_time: datetime,
        end_time: datetime,
        listing_id: str | None = None,
        timezone: str | None = None,
        *,
        tenant_id: str | None = None,
        timeout: float | None = None,
    ) -> list[TeamMember]:
        """Members who could host the slot, whether or not round robin is enabled for them."""
        interval = self._build_interval(event_type_id, start_time, end_time)
        zone = timezone or settings.DEFAULT_TIMEZONE
        TimezoneConverter.get_zone(zone)

        resolved_listing = await self._resolve_listing(tenant_id, event_type_id, listing_id)
        members = await self._load_members(tenant_id, resolved_listing)
        eligible = [
            m for m in members if self._is_eligible(m, resolved_listing, event_type_id, round_robin=False)
        ]
        return await self._filter_available(eligible, interval, zone, timeout)

    async def track_assignment(self, context, booking_id: str, team_member_id: str) -> Booking:
        """Record the chosen member on an existing booking through the booking provider."""
        if self.booking_provider is None:
            raise RuntimeError("track_assignment requires a booking provider")

        booking = await self.booking_provider.update_booking(
            context,
            booking_id,
            {
                "team_member_id": team_member_id,
                "assignment_status": AssignmentStatus.ASSIGNED,
            },
        )
        logger.info("Assignment tracked", booking_id=booking_id, member_id=team_member_id)
        return booking

    @staticmethod
    def _build_interval(event_type_id: str, start_time: datetime, end_time: datetime) -> TimeInterval:
        if not event_type_id:
            raise AssignmentConfigurationError("event_type_id is required")
        try:
            return TimeInterval(start_time, end_time)
        except ValueError as e:
            raise AssignmentConfigurationError(str(e), event_type_id=event_type_id) from e

    async def _resolve_listing(
        self, tenant_id: str | None, event_type_id: str, listing_id: str | None
    ) -> str:
        if listing_id:
            return listing_id

        try:
            resolved = await self.team_repository.get_event_type_listing_id(tenant_id, event_type_id)
        except DatabaseError as e:
            raise AssignmentInfrastructureError(
                f"Failed to resolve listing for event type: {e}"
            ) from e

        if not resolved:
            raise AssignmentConfigurationError(
                "Listing ID is required for round robin assignment", event_type_id=event_type_id
            )
        return resolved

    async def _load_members(self, tenant_id: str | None, listing_id: str) -> list[TeamMember]:
        try:
            return await self.team_repository.list_team_members(tenant_id, listing_id)
        except DatabaseError as e:
            raise AssignmentInfrastructureError(
                f"Failed to load team members: {e}", listing_id=listing_id
            ) from e

    async def _load_history(
        self, tenant_id: str | None, listing_id: str, event_type_id: str
    ) -> list[AssignmentHistoryRecord]:
        try:
            return await self.history_source.get_assignment_history(
                tenant_id, listing_id, event_type_id, self.history_limit
            )
        except DatabaseError as e:
            raise AssignmentInfrastructureError(
                f"Failed to load assignment history: {e}", listing_id=listing_id
            ) from e

    @staticmethod
    def _is_eligible(
        member: TeamMember, listing_id: str, event_type_id: str, *, round_robin: bool
    ) -> bool:
        if member.listing_id != listing_id or not member.active:
            return False
        if round_robin and not member.round_robin_enabled:
            logger.debug("Member excluded, round robin disabled", member_id=member.id)
            return False
        if not member.can_host(event_type_id):
            logger.debug("Member excluded, cannot host event type", member_id=member.id)
            return False
        return True

    async def _filter_available(
        self,
        members: list[TeamMember],
        interval: TimeInterval,
        zone: str,
        timeout: float | None,
    ) -> list[TeamMember]:
        available = []
        check_failures = 0
        for member in members:
            decision = await self.availability_resolver.explain(member, interval, zone, timeout=timeout)
            if decision.available:
                available.append(member)
                continue
            if decision.reason == AvailabilityReason.BOOKING_CHECK_FAILED:
                check_failures += 1
            logger.debug("Member excluded, not available", member_id=member.id, reason=decision.reason.value)

        # Nobody free only counts as a business outcome when every check actually ran
        if not available and check_failures:
            raise AssignmentInfrastructureError(
                f"Booking conflict check failed for {check_failures} of {len(members)} candidates",
                listing_id=members[0].listing_id,
            )
        return available
