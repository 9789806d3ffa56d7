# app/services/calendar/conflict_oracle.py
"""
External calendar conflict oracle.

Answers "does this user's connected calendar have anything during the
interval?" Failures are reported as CalendarOracleUnavailable so the
availability resolver can tell a degraded check apart from a real conflict.
"""

import httpx

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import TimeInterval
from app.repositories.calendar_integration_repository import CalendarIntegrationRepository
from app.services.calendar.google_client import GoogleCalendarClient, GoogleCalendarError
from app.services.scheduling.errors import CalendarOracleUnavailable

logger = get_logger(__name__)

GOOGLE_PROVIDER = "google"


class GoogleCalendarConflictOracle:
    """Conflict oracle over users' Google Calendar integrations."""

    def __init__(
        self,
        client: GoogleCalendarClient,
        integration_repository=CalendarIntegrationRepository,
    ):
        self.client = client
        self.integration_repository = integration_repository

    async def has_conflict(
        self, user_id: str, interval: TimeInterval, tenant_id: str | None = None
    ) -> bool:
        """
        True when any active, sync-enabled Google calendar is busy during the interval.

        Raises:
            CalendarOracleUnavailable: integrations could not be loaded, or a
                calendar could not be checked and no other calendar was busy
        """
        try:
            integrations = await self.integration_repository.list_conflict_integrations(tenant_id, user_id)
        except DatabaseError as e:
            raise CalendarOracleUnavailable(
                f"Failed to load calendar integrations: {e}", user_id=user_id
            ) from e

        failures = []
        for integration in integrations:
            if not integration.participates_in_conflicts():
                continue
            if integration.provider != GOOGLE_PROVIDER:
                logger.debug(
                    "Skipping unsupported calendar provider",
                    user_id=user_id,
                    provider=integration.provider,
                )
                continue
            if not integration.access_token:
                failures.append(f"{integration.id}: missing access token")
                continue

            try:
                busy = await self.client.query_busy(
                    integration.access_token, interval, [integration.calendar_id]
                )
            except (GoogleCalendarError, httpx.RequestError) as e:
                failures.append(f"{integration.id}: {e}")
                continue

            if any(period.overlaps(interval) for period in busy):
                logger.debug(
                    "External calendar busy", user_id=user_id, integration_id=integration.id
                )
                return True

        if failures:
            raise CalendarOracleUnavailable(
                "; ".join(failures), user_id=user_id, provider=GOOGLE_PROVIDER
            )
        return False
