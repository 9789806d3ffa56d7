"""
Timezone arithmetic backed by the IANA zone database.

Every wall-clock calculation in the scheduling core goes through this
module; other components never build offsets by hand.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time

import pytz

from app.services.scheduling.errors import InvalidTimezoneError

COMMON_TIMEZONES = (
    "UTC",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Asia/Dubai",
    "Australia/Sydney",
)


class TimezoneConverter:
    """Pure zone conversions. Unknown zones raise, they never fall back to UTC."""

    @staticmethod
    def get_zone(zone: str) -> pytz.BaseTzInfo:
        if not isinstance(zone, str) or not zone:
            raise InvalidTimezoneError(str(zone))
        try:
            return pytz.timezone(zone)
        except pytz.UnknownTimeZoneError as e:
            raise InvalidTimezoneError(zone) from e

    @classmethod
    def is_valid_zone(cls, zone: str) -> bool:
        try:
            cls.get_zone(zone)
        except InvalidTimezoneError:
            return False
        return True

    @classmethod
    def localize(cls, day: date, wall_time: time, zone: str) -> datetime:
        """
        Attach a zone to a wall-clock date and time.

        A time inside a DST gap is shifted forward past the gap; a time
        repeated by a DST fold resolves to its first occurrence.
        """
        tz = cls.get_zone(zone)
        naive = datetime.combine(day, wall_time.replace(tzinfo=None))
        try:
            return tz.localize(naive, is_dst=None)
        except pytz.NonExistentTimeError:
            return tz.normalize(tz.localize(naive, is_dst=False))
        except pytz.AmbiguousTimeError:
            return tz.localize(naive, is_dst=True)

    @classmethod
    def convert(cls, instant: datetime, from_zone: str, to_zone: str) -> datetime:
        """
        Convert an instant between zones.

        A naive instant is read as wall-clock time in from_zone; an aware
        instant keeps its own offset and from_zone is only validated.
        """
        cls.get_zone(from_zone)
        target = cls.get_zone(to_zone)

        if instant.tzinfo is None:
            instant = cls.localize(instant.date(), instant.time(), from_zone)

        return target.normalize(instant.astimezone(target))

    @classmethod
    def local_to_utc(cls, local: datetime, zone: str) -> datetime:
        return cls.convert(local, zone, "UTC")

    @classmethod
    def utc_to_local(cls, instant: datetime, zone: str) -> datetime:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        return cls.convert(instant, "UTC", zone)

    @classmethod
    def offset_of(cls, zone: str, at_instant: datetime | None = None) -> str:
        """Return the zone's UTC offset as ±HH:MM at the given instant (default now)."""
        tz = cls.get_zone(zone)
        if at_instant is None:
            at_instant = datetime.now(UTC)
        elif at_instant.tzinfo is None:
            at_instant = at_instant.replace(tzinfo=UTC)

        offset = tz.normalize(at_instant.astimezone(tz)).utcoffset()
        total_minutes = int(offset.total_seconds() // 60)
        sign = "+" if total_minutes >= 0 else "-"
        hours, minutes = divmod(abs(total_minutes), 60)
        return f"{sign}{hours:02d}:{minutes:02d}"

    @classmethod
    def is_dst(cls, instant: datetime, zone: str) -> bool:
        local = cls.utc_to_local(instant, zone)
        return bool(local.dst())

    @classmethod
    def format_in_timezone(
        cls, instant: datetime, zone: str, fmt: str = "%Y-%m-%d %H:%M:%S"
    ) -> str:
        return cls.utc_to_local(instant, zone).strftime(fmt)

    @classmethod
    def local_date(cls, instant: datetime, zone: str) -> date:
        return cls.utc_to_local(instant, zone).date()

    @classmethod
    def weekday_in_zone(cls, instant: datetime, zone: str) -> int:
        """ISO weekday (1=Monday ... 7=Sunday) of the instant as seen in zone."""
        return cls.utc_to_local(instant, zone).isoweekday()

    @classmethod
    def common_timezones(cls, at_instant: datetime | None = None) -> list[dict[str, str]]:
        return [
            {"timezone": zone, "offset": cls.offset_of(zone, at_instant)}
            for zone in COMMON_TIMEZONES
        ]
