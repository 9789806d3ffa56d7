"""
Persistence for team members and the event types they host.

The availability_override column is free-form JSON, e.g.
    {"monday": {"start": "09:00", "end": "17:00"}, "sunday": null,
     "timezone": "Europe/Paris"}
It is parsed into OverrideWindow values here so services only ever see
typed schedules.
"""

import json
from datetime import time
from typing import Any

from app.db.helpers import fetch_all, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import (
    WEEKDAY_NAMES,
    OverrideWindow,
    TeamMember,
    TeamRole,
)

logger = get_logger(__name__)


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def parse_availability_override(
    raw: Any,
) -> tuple[dict[str, OverrideWindow | None] | None, str | None]:
    """
    Parse a stored override schedule into (weekday -> window, zone).

    A weekday mapped to null, or to an entry without both start and end, is
    closed. Entries that cannot be parsed are treated as closed as well.
    """
    if raw is None:
        return None, None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Unreadable availability override, ignoring")
            return None, None
    if not isinstance(raw, dict) or not raw:
        return None, None

    zone = raw.get("timezone")
    schedule: dict[str, OverrideWindow | None] = {}

    for key, entry in raw.items():
        if key == "timezone":
            continue

        day = key.lower()
        if day not in WEEKDAY_NAMES:
            logger.warning("Unknown weekday in availability override", key=key)
            continue

        if not isinstance(entry, dict) or not entry.get("start") or not entry.get("end"):
            schedule[day] = None
            continue

        try:
            window = OverrideWindow(_parse_clock(entry["start"]), _parse_clock(entry["end"]))
        except (TypeError, ValueError):
            logger.warning("Malformed override window, treating day as closed", day=day)
            schedule[day] = None
            continue

        schedule[day] = window if window.end > window.start else None

    return schedule, zone


class TeamRepository:
    """Tenant-scoped team member queries."""

    MEMBER_COLUMNS = """
        id, tenant_id, listing_id, user_id, role, event_type_ids,
        availability_override, round_robin_enabled, round_robin_weight,
        active, created_at, updated_at
    """

    @classmethod
    def _row_to_member(cls, row: dict | None) -> TeamMember | None:
        if not row:
            return None

        override, override_zone = parse_availability_override(row.get("availability_override"))

        return TeamMember(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            listing_id=str(row["listing_id"]),
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") else None,
            role=TeamRole(row.get("role") or TeamRole.MEMBER),
            event_type_ids=[str(e) for e in (row.get("event_type_ids") or [])],
            availability_override=override,
            override_timezone=override_zone,
            round_robin_enabled=bool(row.get("round_robin_enabled")),
            round_robin_weight=float(row.get("round_robin_weight") or 1),
            active=bool(row.get("active", True)),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @classmethod
    @with_db_retry(max_retries=2, base_delay=0.05)
    async def list_team_members(
        cls, tenant_id: str | None, listing_id: str, active_only: bool = True
    ) -> list[TeamMember]:
        """Members of a listing in creation order. Order is the round robin tie-break."""

        query = f"""
            SELECT {cls.MEMBER_COLUMNS}
            FROM team_members
            WHERE tenant_id IS NOT DISTINCT FROM %s
              AND listing_id = %s
              AND (%s = FALSE OR active = TRUE)
            ORDER BY created_at, id
        """

        rows = await fetch_all(query, (tenant_id, listing_id, active_only))
        members = []
        for row in rows:
            try:
                members.append(cls._row_to_member(row))
            except ValueError as e:
                # e.g. non-positive weight; the member cannot take part in scoring
                logger.warning("Skipping invalid team member row", member_id=str(row["id"]), error=str(e))
        return members

    @classmethod
    @with_db_retry(max_retries=2, base_delay=0.05)
    async def get_team_member(cls, tenant_id: str | None, member_id: str) -> TeamMember | None:
        query = f"""
            SELECT {cls.MEMBER_COLUMNS}
            FROM team_members
            WHERE tenant_id IS NOT DISTINCT FROM %s AND id = %s
        """
        row = await fetch_one(query, (tenant_id, member_id))
        return cls._row_to_member(row)

    @classmethod
    @with_db_retry(max_retries=2, base_delay=0.05)
    async def get_event_type_listing_id(cls, tenant_id: str | None, event_type_id: str) -> str | None:
        query = """
            SELECT listing_id
            FROM event_types
            WHERE tenant_id IS NOT DISTINCT FROM %s AND id = %s
        """
        row = await fetch_one(query, (tenant_id, event_type_id))
        if not row or not row.get("listing_id"):
            return None
        return str(row["listing_id"])
