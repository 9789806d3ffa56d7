"""
Google Calendar API client used for free/busy lookups.
Low-level HTTP layer only: no token refresh, no event management.
"""

import asyncio
from datetime import datetime

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.scheduling_domain import TimeInterval

logger = get_logger(__name__)

CALENDAR_PRIMARY = "primary"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 0.5
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


def _parse_instant(value: str) -> datetime:
    # Google returns RFC 3339 with a trailing Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GoogleCalendarClient:
    """
    Free/busy client for the Google Calendar API.

    Constructed explicitly and passed to the conflict oracle; call close()
    on shutdown.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        backoff_factor: float = BACKOFF_FACTOR,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.GOOGLE_CALENDAR_API_BASE_URL).rstrip("/")
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self._client = client or self._create_client(timeout)

    def _create_client(self, timeout: float) -> httpx.AsyncClient:
        """Create async HTTP client for Calendar API."""
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=httpx.Timeout(timeout), limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= self.max_retries:
                    raise
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Calendar API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Validate a Calendar API response.

        Raises:
            GoogleCalendarError: If response contains errors
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Calendar API {operation} failed with non-JSON response",
                status_code=response.status_code,
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {})
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GoogleCalendarError(
            f"Calendar error: {error_message}",
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def query_busy(
        self,
        access_token: str,
        interval: TimeInterval,
        calendar_ids: list[str] | None = None,
    ) -> list[TimeInterval]:
        """
        Return busy periods overlapping the interval across the given calendars.

        A calendar reporting errors in the freeBusy payload makes the whole
        answer unreliable, so it raises instead of returning "free".

        Raises:
            GoogleCalendarError: API failure or per-calendar errors
            httpx.RequestError: network failure after retries
        """
        calendar_ids = calendar_ids or [CALENDAR_PRIMARY]
        url = f"{self.base_url}/freeBusy"
        query_data = {
            "timeMin": interval.start.isoformat(),
            "timeMax": interval.end.isoformat(),
            "items": [{"id": cal_id} for cal_id in calendar_ids],
        }

        response = await self._request_with_retry(
            "POST", url, headers=self._get_auth_headers(access_token), json=query_data
        )
        data = self._handle_api_response(response, "freebusy")

        busy: list[TimeInterval] = []
        for cal_id in calendar_ids:
            calendar = data.get("calendars", {}).get(cal_id, {})
            if calendar.get("errors"):
                raise GoogleCalendarError(
                    f"Calendar {cal_id} returned errors",
                    error_code="calendar_errors",
                    response_data=calendar,
                )
            for period in calendar.get("busy", []):
                start, end = _parse_instant(period["start"]), _parse_instant(period["end"])
                if end > start:
                    busy.append(TimeInterval(start, end))

        logger.debug(
            "Free/busy lookup completed",
            calendar_count=len(calendar_ids),
            busy_periods=len(busy),
        )
        return busy
