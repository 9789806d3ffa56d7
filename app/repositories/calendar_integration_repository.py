"""
Persistence for team members' connected external calendars.
"""

from app.db.helpers import fetch_all
from app.models.domain.scheduling_domain import CalendarIntegration


class CalendarIntegrationRepository:
    """Calendar integration queries used by the conflict oracle."""

    INTEGRATION_COLUMNS = """
        id, tenant_id, user_id, listing_id, provider, calendar_id, access_token,
        sync_enabled, active, timezone
    """

    @classmethod
    def _row_to_integration(cls, row: dict) -> CalendarIntegration:
        return CalendarIntegration(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            provider=row["provider"],
            calendar_id=row.get("calendar_id") or "primary",
            access_token=row.get("access_token"),
            sync_enabled=bool(row.get("sync_enabled")),
            active=bool(row.get("active")),
            timezone=row.get("timezone") or "UTC",
            listing_id=str(row["listing_id"]) if row.get("listing_id") else None,
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
        )

    @classmethod
    async def list_conflict_integrations(
        cls, tenant_id: str | None, user_id: str
    ) -> list[CalendarIntegration]:
        """Integrations that take part in conflict checks: active and sync-enabled."""

        query = f"""
            SELECT {cls.INTEGRATION_COLUMNS}
            FROM calendar_integrations
            WHERE tenant_id IS NOT DISTINCT FROM %s
              AND user_id = %s
              AND sync_enabled = TRUE
              AND active = TRUE
        """

        rows = await fetch_all(query, (tenant_id, user_id))
        return [cls._row_to_integration(row) for row in rows]
