# app/services/booking/calcom_provider.py
"""
Cal.com booking provider (REST API v2).

Bookings live in Cal.com; this provider maps its responses into the same
domain types the built-in provider returns. The API key comes from the
provider context's credentials.
"""

from datetime import UTC, date, datetime
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import AvailabilitySlot, Booking, BookingStatus
from app.services.booking.errors import BookingNotFoundError, BookingProviderError
from app.services.booking.provider import (
    BookingProvider,
    BookingProviderContext,
    BookingResult,
    CreateBookingRequest,
    HealthCheck,
    SyncResult,
)

logger = get_logger(__name__)

REQUEST_TIMEOUT = 15  # seconds
SLOTS_API_VERSION = "2024-09-04"

_STATUS_MAP = {
    "accepted": BookingStatus.CONFIRMED,
    "pending": BookingStatus.PENDING,
    "awaiting_host": BookingStatus.PENDING,
    "cancelled": BookingStatus.CANCELLED,
    "rejected": BookingStatus.CANCELLED,
}


def _parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CalComBookingProvider(BookingProvider):
    """BookingProvider over the Cal.com v2 API."""

    provider_type = "calcom"

    def __init__(
        self,
        base_url: str | None = None,
        api_version: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.CALCOM_API_BASE_URL).rstrip("/")
        self.api_version = api_version or settings.CALCOM_API_VERSION
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT))

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, context: BookingProviderContext, api_version: str | None = None) -> dict:
        api_key = context.credentials.get("api_key")
        if not api_key:
            raise BookingProviderError(
                "Cal.com API key missing from provider credentials",
                error_code="missing_credentials",
                provider=self.provider_type,
            )
        return {
            "Authorization": f"Bearer {api_key}",
            "cal-api-version": api_version or self.api_version,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        context: BookingProviderContext,
        *,
        api_version: str | None = None,
        **kwargs,
    ) -> Any:
        """Send a request and return the payload's "data" member."""
        headers = self._headers(context, api_version)
        try:
            response = await self._client.request(
                method, f"{self.base_url}{path}", headers=headers, **kwargs
            )
        except httpx.RequestError as e:
            logger.error("Cal.com request failed", path=path, error=str(e))
            raise BookingProviderError(
                f"Cal.com unreachable: {e}",
                error_code="provider_unavailable",
                recoverable=True,
                provider=self.provider_type,
            ) from e

        if response.status_code == 404:
            raise BookingNotFoundError(path)

        if not response.is_success:
            try:
                message = response.json().get("error", {}).get("message", response.text[:200])
            except ValueError:
                message = response.text[:200]
            logger.error("Cal.com API error", path=path, status_code=response.status_code, error=message)
            raise BookingProviderError(
                f"Cal.com API error (HTTP {response.status_code}): {message}",
                error_code=f"http_{response.status_code}",
                recoverable=response.status_code >= 500 or response.status_code == 429,
                provider=self.provider_type,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BookingProviderError(
                f"Invalid Cal.com response: {e}", provider=self.provider_type
            ) from e
        return payload.get("data")

    def _map_booking(self, data: dict, context: BookingProviderContext) -> Booking:
        uid = str(data.get("uid") or data["id"])
        cancelled = data.get("status") == "cancelled"
        return Booking(
            id=uid,
            start_time=_parse_instant(data["start"]),
            end_time=_parse_instant(data["end"]),
            status=_STATUS_MAP.get(data.get("status", ""), BookingStatus.PENDING),
            listing_id=context.listing_id,
            event_type_id=str(data["eventTypeId"]) if data.get("eventTypeId") else None,
            tenant_id=context.tenant_id,
            timezone=(data.get("attendees") or [{}])[0].get("timeZone", "UTC"),
            cancellation_reason=data.get("cancellationReason") if cancelled else None,
            external_provider=self.provider_type,
            external_booking_id=uid,
            created_at=_parse_instant(data["createdAt"]) if data.get("createdAt") else None,
        )

    async def create_booking(
        self, context: BookingProviderContext, request: CreateBookingRequest
    ) -> BookingResult:
        event_type_id = context.config.get("event_type_id", request.event_type_id)
        body = {
            "start": request.start_time.astimezone(UTC).isoformat().replace("+00:00", "Z"),
            "eventTypeId": int(event_type_id),
            "attendee": {
                "name": request.attendee_name or "Guest",
                "email": request.attendee_email,
                "timeZone": request.timezone,
            },
            "metadata": {
                "listing_id": str(request.listing_id or context.listing_id or ""),
                "team_member_id": str(request.team_member_id or ""),
            },
        }
        data = await self._request("POST", "/bookings", context, json=body)
        booking = self._map_booking(data, context)
        booking.team_member_id = request.team_member_id

        logger.info("Cal.com booking created", external_booking_id=booking.external_booking_id)
        return BookingResult(
            booking=booking, provider=self.provider_type, external_booking_id=booking.external_booking_id
        )

    async def cancel_booking(
        self,
        context: BookingProviderContext,
        booking_id: str,
        reason: str | None = None,
        cancelled_by: str | None = None,
    ) -> Booking:
        data = await self._request(
            "POST",
            f"/bookings/{booking_id}/cancel",
            context,
            json={"cancellationReason": reason or "Cancelled"},
        )
        booking = self._map_booking(data, context)
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = datetime.now(UTC)
        booking.cancelled_by = cancelled_by
        booking.cancellation_reason = reason
        logger.info("Cal.com booking cancelled", external_booking_id=booking_id)
        return booking

    async def update_booking(
        self, context: BookingProviderContext, booking_id: str, updates: dict[str, Any]
    ) -> Booking:
        """Cal.com supports rescheduling and confirmation; other fields are rejected."""
        fields = dict(updates)
        status = fields.pop("status", None)
        start = fields.pop("start_time", None)
        fields.pop("end_time", None)

        if fields:
            raise BookingProviderError(
                f"Cal.com cannot update fields: {sorted(fields)}",
                error_code="unsupported_update",
                provider=self.provider_type,
            )

        data = None
        if start is not None:
            data = await self._request(
                "POST",
                f"/bookings/{booking_id}/reschedule",
                context,
                json={"start": start.astimezone(UTC).isoformat().replace("+00:00", "Z")},
            )
            booking_id = str(data.get("uid") or booking_id)

        if status is not None:
            status = BookingStatus(status)
            if status == BookingStatus.CANCELLED:
                return await self.cancel_booking(context, booking_id)
            if status != BookingStatus.CONFIRMED:
                raise BookingProviderError(
                    f"Cal.com cannot set status {status.value}",
                    error_code="unsupported_update",
                    provider=self.provider_type,
                )
            data = await self._request("POST", f"/bookings/{booking_id}/confirm", context)

        if data is None:
            data = await self._request("GET", f"/bookings/{booking_id}", context)
        return self._map_booking(data, context)

    async def get_availability(
        self, context: BookingProviderContext, window_start: date, window_end: date
    ) -> list[AvailabilitySlot]:
        event_type_id = context.config.get("event_type_id")
        zone = context.config.get("timezone", "UTC")
        data = await self._request(
            "GET",
            "/slots",
            context,
            api_version=SLOTS_API_VERSION,
            params={
                "eventTypeId": event_type_id,
                "start": window_start.isoformat(),
                "end": window_end.isoformat(),
                "timeZone": zone,
            },
        )

        slots = []
        for day, entries in sorted((data or {}).items()):
            for entry in entries:
                starts_at = _parse_instant(entry["start"])
                ends_at = _parse_instant(entry["end"]) if entry.get("end") else None
                slots.append(
                    AvailabilitySlot(
                        date=date.fromisoformat(day),
                        start_time=starts_at.time().replace(tzinfo=None),
                        end_time=ends_at.time().replace(tzinfo=None) if ends_at else None,
                        timezone=zone,
                        starts_at=starts_at,
                        ends_at=ends_at,
                        listing_id=context.listing_id,
                        event_type_id=str(event_type_id) if event_type_id else None,
                        tenant_id=context.tenant_id,
                    )
                )
        return slots

    async def sync_bookings(self, context: BookingProviderContext) -> SyncResult:
        """Fetch remote bookings and report how many mapped cleanly."""
        try:
            data = await self._request("GET", "/bookings", context)
        except BookingProviderError as e:
            return SyncResult(synced=0, failed=0, errors=[str(e)])

        result = SyncResult()
        for item in data or []:
            try:
                self._map_booking(item, context)
                result.synced += 1
            except (KeyError, ValueError) as e:
                result.failed += 1
                result.errors.append(f"{item.get('uid', '?')}: {e}")

        logger.info("Cal.com bookings synced", synced=result.synced, failed=result.failed)
        return result

    async def health_check(self, context: BookingProviderContext) -> HealthCheck:
        started = datetime.now(UTC)
        try:
            await self._request("GET", "/me", context)
        except BookingProviderError as e:
            return HealthCheck(healthy=False, error=str(e))
        latency_ms = (datetime.now(UTC) - started).total_seconds() * 1000
        return HealthCheck(healthy=True, latency_ms=latency_ms)
