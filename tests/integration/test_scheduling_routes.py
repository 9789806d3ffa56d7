"""
Tests for the scheduling HTTP endpoints with in-memory collaborators.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.db.helpers import DatabaseError
from app.main import app
from app.models.domain.scheduling_domain import AssignmentHistoryRecord, PatternFrequency, RecurringPattern
from app.routes.dependencies import (
    get_assignment_lock,
    get_availability_resolver,
    get_provider_registry,
    get_recurrence_engine,
    get_round_robin_assignor,
    get_team_repository,
)
from app.services.booking.errors import BookingConflictError
from app.services.booking.provider import BookingResult
from app.services.booking.registry import BookingProviderRegistry
from app.services.scheduling.availability_resolver import AvailabilityResolver
from app.services.scheduling.recurrence_engine import RecurrencePatternEngine
from app.services.scheduling.round_robin import RoundRobinAssignor
from fakes import FakeBookingSource, FakeTeamRepository, build_booking, build_member, utc

client = TestClient(app)

HEADERS = {"X-Tenant-ID": "tenant-1"}
SLOT = {
    "event_type_id": "event-1",
    "start_time": "2025-01-13T10:00:00Z",
    "end_time": "2025-01-13T11:00:00Z",
    "listing_id": "listing-1",
}


class Harness:
    """Wires fakes into the app's dependency providers."""

    def __init__(self):
        self.team = FakeTeamRepository(
            [build_member(id="a", user_id="user-a"), build_member(id="b", user_id="user-b")],
            {"event-1": "listing-1"},
        )
        self.bookings = FakeBookingSource(
            history=[AssignmentHistoryRecord("a", "user-a", utc(2025, 1, 10, 9), "old-1")]
        )
        self.provider = AsyncMock()
        self.provider.create_booking.side_effect = lambda context, request: BookingResult(
            booking=build_booking(
                id="booking-new",
                team_member_id=request.team_member_id,
                start_time=request.start_time,
                end_time=request.end_time,
                confirmation_code="BK-TEST-0001",
            ),
            provider="fake",
        )
        self.registry = BookingProviderRegistry()
        self.registry.register("builtin", lambda: self.provider)
        self.pattern_repository = AsyncMock()

    def resolver(self):
        return AvailabilityResolver(self.bookings, booking_timeout=1.0, oracle_timeout=1.0)

    def assignor(self):
        return RoundRobinAssignor(self.team, self.bookings, self.resolver(), clock=lambda: utc(2025, 1, 12))

    def install(self):
        app.dependency_overrides[get_team_repository] = lambda: self.team
        app.dependency_overrides[get_availability_resolver] = self.resolver
        app.dependency_overrides[get_round_robin_assignor] = self.assignor
        app.dependency_overrides[get_recurrence_engine] = lambda: RecurrencePatternEngine(self.pattern_repository)
        app.dependency_overrides[get_provider_registry] = lambda: self.registry
        app.dependency_overrides[get_assignment_lock] = lambda: None


@pytest.fixture
def harness():
    harness = Harness()
    harness.install()
    yield harness
    app.dependency_overrides.clear()


class TestAssignEndpoint:
    def test_assigns_member_without_booking(self, harness):
        response = client.post("/scheduling/assign", json=SLOT, headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["assigned"] is True
        assert data["member_id"] == "b"
        assert data["user_id"] == "user-b"
        assert data["reason"] == "assigned"
        assert [s["member_id"] for s in data["scores"]] == ["b", "a"]
        assert data["booking"] is None
        harness.provider.create_booking.assert_not_awaited()

    def test_listing_resolved_from_event_type(self, harness):
        payload = {k: v for k, v in SLOT.items() if k != "listing_id"}

        response = client.post("/scheduling/assign", json=payload, headers=HEADERS)

        assert response.json()["listing_id"] == "listing-1"

    def test_nobody_available(self, harness):
        harness.bookings.bookings = [
            build_booking(id="x", team_member_id="a", start_time=utc(2025, 1, 13, 10), end_time=utc(2025, 1, 13, 11)),
            build_booking(id="y", team_member_id="b", start_time=utc(2025, 1, 13, 9), end_time=utc(2025, 1, 13, 12)),
        ]

        response = client.post("/scheduling/assign", json=SLOT, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["assigned"] is False
        assert response.json()["reason"] == "no_available_members"

    def test_unknown_event_type_listing(self, harness):
        payload = {**SLOT, "event_type_id": "event-unknown"}
        payload.pop("listing_id")

        response = client.post("/scheduling/assign", json=payload, headers=HEADERS)

        assert response.status_code == 422

    def test_team_store_down(self, harness):
        harness.team.error = DatabaseError("connection refused")

        response = client.post("/scheduling/assign", json=SLOT, headers=HEADERS)

        assert response.status_code == 503

    def test_naive_times_rejected(self, harness):
        payload = {**SLOT, "start_time": "2025-01-13T10:00:00", "end_time": "2025-01-13T11:00:00"}

        response = client.post("/scheduling/assign", json=payload, headers=HEADERS)

        assert response.status_code == 422

    def test_unknown_timezone_rejected(self, harness):
        response = client.post("/scheduling/assign", json={**SLOT, "timezone": "Not/AZone"}, headers=HEADERS)

        assert response.status_code == 422

    def test_creates_assigned_booking(self, harness):
        payload = {**SLOT, "create_booking": True, "base_price": 100}

        response = client.post("/scheduling/assign", json=payload, headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "assigned"
        assert data["attempts"] == 1
        assert data["booking"]["id"] == "booking-new"
        assert data["booking"]["team_member_id"] == "b"
        context, request = harness.provider.create_booking.await_args.args
        assert context.tenant_id == "tenant-1"
        assert request.base_price == 100

    def test_booking_locks_with_redis_client_from_app_state(self, harness):
        del app.dependency_overrides[get_assignment_lock]
        lock = AsyncMock()
        lock.acquire.return_value = True
        redis_client = MagicMock()
        redis_client.lock.return_value = lock

        with (
            patch("app.routes.dependencies.settings.ASSIGNMENT_LOCK_ENABLED", True),
            patch.object(app.state, "redis_client", redis_client),
        ):
            response = client.post(
                "/scheduling/assign", json={**SLOT, "create_booking": True}, headers=HEADERS
            )

        assert response.json()["outcome"] == "assigned"
        assert redis_client.lock.call_args.args[0] == "assignment-lock:listing-1"
        lock.release.assert_awaited_once()

    def test_unknown_provider(self, harness):
        payload = {**SLOT, "create_booking": True, "provider": "acuity"}

        response = client.post("/scheduling/assign", json=payload, headers=HEADERS)

        assert response.status_code == 422

    def test_repeated_conflicts(self, harness):
        harness.provider.create_booking.side_effect = BookingConflictError("b", "other")

        response = client.post("/scheduling/assign", json={**SLOT, "create_booking": True}, headers=HEADERS)

        assert response.status_code == 409


class TestExpandEndpoint:
    def test_inline_definition(self, harness):
        payload = {
            "definition": {
                "pattern": "weekly",
                "start_date": "2025-01-01",
                "days_of_week": [2, 4],
                "occurrences": 4,
                "start_time": "09:00:00",
                "end_time": "10:00:00",
                "timezone": "Europe/Paris",
            },
            "window_start": "2025-01-01",
            "window_end": "2025-01-31",
        }

        response = client.post("/scheduling/patterns/expand", json=payload, headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["dates"] == ["2025-01-02", "2025-01-07", "2025-01-09", "2025-01-14"]
        assert data["total_count"] == 4
        assert data["slots"][0]["starts_at"].startswith("2025-01-02T09:00:00")

    def test_invalid_definition(self, harness):
        payload = {
            "definition": {"pattern": "daily", "start_date": "2025-01-01", "interval": 0},
            "window_end": "2025-01-31",
        }

        response = client.post("/scheduling/patterns/expand", json=payload, headers=HEADERS)

        assert response.status_code == 422

    def test_unbounded_definition_without_window_end(self, harness):
        payload = {"definition": {"pattern": "daily", "start_date": "2025-01-01"}}

        response = client.post("/scheduling/patterns/expand", json=payload, headers=HEADERS)

        assert response.status_code == 422

    def test_stored_pattern_missing(self, harness):
        harness.pattern_repository.get_pattern.return_value = None

        response = client.post(
            "/scheduling/patterns/expand",
            json={"pattern_id": "missing", "window_end": "2025-01-31"},
            headers=HEADERS,
        )

        assert response.status_code == 404
        harness.pattern_repository.get_pattern.assert_awaited_once_with("tenant-1", "missing")

    def test_requires_exactly_one_source(self, harness):
        response = client.post("/scheduling/patterns/expand", json={"window_end": "2025-01-31"}, headers=HEADERS)

        assert response.status_code == 422


class TestAvailabilityEndpoint:
    def test_booked_member(self, harness):
        harness.bookings.bookings = [
            build_booking(id="x", team_member_id="a", start_time=utc(2025, 1, 13, 10, 30), end_time=utc(2025, 1, 13, 12))
        ]

        response = client.post(
            "/scheduling/availability/check",
            json={"team_member_id": "a", "start_time": SLOT["start_time"], "end_time": SLOT["end_time"]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {
            "team_member_id": "a",
            "available": False,
            "reason": "booking_conflict",
            "degraded": False,
        }

    def test_free_member(self, harness):
        response = client.post(
            "/scheduling/availability/check",
            json={"team_member_id": "b", "start_time": SLOT["start_time"], "end_time": SLOT["end_time"]},
            headers=HEADERS,
        )

        assert response.json()["available"] is True

    def test_unknown_member(self, harness):
        response = client.post(
            "/scheduling/availability/check",
            json={"team_member_id": "zzz", "start_time": SLOT["start_time"], "end_time": SLOT["end_time"]},
            headers=HEADERS,
        )

        assert response.status_code == 404

    def test_inverted_interval(self, harness):
        response = client.post(
            "/scheduling/availability/check",
            json={"team_member_id": "a", "start_time": SLOT["end_time"], "end_time": SLOT["start_time"]},
            headers=HEADERS,
        )

        assert response.status_code == 422


def test_list_timezones():
    response = client.get("/scheduling/timezones")

    assert response.status_code == 200
    zones = response.json()
    assert len(zones) == 12
    assert zones[0]["timezone"] == "UTC"
    assert zones[0]["offset"] == "+00:00"


class TestPatternEndpoints:
    DEFINITION = {
        "event_type_id": "event-1",
        "pattern": "weekly",
        "start_date": "2025-01-01",
        "days_of_week": [1, 3],
        "end_date": "2025-03-31",
        "start_time": "09:00:00",
        "end_time": "10:00:00",
    }

    def test_create_pattern(self, harness):
        async def create(pattern):
            pattern.id = "pattern-1"
            return pattern

        harness.pattern_repository.create_pattern.side_effect = create

        response = client.post("/scheduling/patterns", json=self.DEFINITION, headers=HEADERS)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "pattern-1"
        assert data["pattern"] == "weekly"
        assert data["days_of_week"] == [1, 3]
        stored = harness.pattern_repository.create_pattern.await_args.args[0]
        assert stored.tenant_id == "tenant-1"
        assert stored.event_type_id == "event-1"

    def test_invalid_pattern_is_not_stored(self, harness):
        payload = {**self.DEFINITION, "days_of_week": [8]}

        response = client.post("/scheduling/patterns", json=payload, headers=HEADERS)

        assert response.status_code == 422
        harness.pattern_repository.create_pattern.assert_not_awaited()

    def test_list_patterns(self, harness):
        harness.pattern_repository.list_patterns.return_value = [
            RecurringPattern(
                id="p-1", pattern=PatternFrequency.DAILY, start_date=date(2025, 1, 1), event_type_id="event-1"
            )
        ]

        response = client.get(
            "/scheduling/patterns", params={"event_type_id": "event-1", "include_inactive": "true"}, headers=HEADERS
        )

        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["p-1"]
        harness.pattern_repository.list_patterns.assert_awaited_once_with("tenant-1", "event-1", False)

    def test_list_patterns_store_down(self, harness):
        harness.pattern_repository.list_patterns.side_effect = DatabaseError("connection refused")

        response = client.get("/scheduling/patterns", params={"event_type_id": "event-1"}, headers=HEADERS)

        assert response.status_code == 503
